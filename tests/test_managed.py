"""
Test filename conventions, listing, placement and eviction.
"""

import os

import pytest

from zbmgen.images.managed import CopyFailed, EntryKind, ManagedDirectory, Slot


def touch(directory, *names):
    for name in names:
        (directory / name).write_text(name)


class TestListEntries:
    def test_split_sorted_oldest_first(self, image_dir):
        touch(image_dir, "vmlinuz-1.10", "vmlinuz-1.9", "vmlinuz-1.2")
        entries = ManagedDirectory(image_dir).list_entries("vmlinuz", EntryKind.SPLIT)
        assert [entry.version for entry in entries] == ["1.2", "1.9", "1.10"]

    def test_split_files_include_initramfs(self, image_dir):
        touch(image_dir, "vmlinuz-1.0")
        (entry,) = ManagedDirectory(image_dir).list_entries("vmlinuz", EntryKind.SPLIT)
        assert entry.files == (image_dir / "vmlinuz-1.0", image_dir / "initramfs-1.0.img")

    def test_kinds_are_separate(self, image_dir):
        touch(image_dir, "vmlinuz-1.0", "vmlinuz-1.0.EFI", "vmlinuz-2.0.EFI")
        images = ManagedDirectory(image_dir)

        split = images.list_entries("vmlinuz", EntryKind.SPLIT)
        unified = images.list_entries("vmlinuz", EntryKind.UNIFIED)

        assert [entry.name for entry in split] == ["vmlinuz-1.0"]
        assert [entry.name for entry in unified] == ["vmlinuz-1.0.EFI", "vmlinuz-2.0.EFI"]
        assert unified[0].version == "1.0"

    def test_requires_prefix_boundary(self, image_dir):
        touch(image_dir, "vmlinuz-1.0", "vmlinuzold-2.0", "initramfs-1.0.img")
        entries = ManagedDirectory(image_dir).list_entries("vmlinuz", EntryKind.SPLIT)
        assert [entry.name for entry in entries] == ["vmlinuz-1.0"]

    def test_ignores_staging_files_and_directories(self, image_dir):
        touch(image_dir, "vmlinuz-1.0", ".vmlinuz-2.0.abc.tmp")
        (image_dir / "vmlinuz-3.0").mkdir()
        entries = ManagedDirectory(image_dir).list_entries("vmlinuz", EntryKind.SPLIT)
        assert [entry.name for entry in entries] == ["vmlinuz-1.0"]

    def test_slots_recognised(self, image_dir):
        touch(image_dir, "vmlinuz-bootmenu", "vmlinuz-bootmenu-backup", "vmlinuz-5.0")
        entries = ManagedDirectory(image_dir).list_entries("vmlinuz", EntryKind.SPLIT)
        assert [(entry.name, entry.slot) for entry in entries] == [
            ("vmlinuz-bootmenu-backup", Slot.BACKUP),
            ("vmlinuz-5.0", None),
            ("vmlinuz-bootmenu", Slot.CURRENT),
        ]

    def test_unified_slots(self, image_dir):
        touch(image_dir, "zbm.EFI", "zbm-backup.EFI")
        entries = ManagedDirectory(image_dir).list_entries("zbm", EntryKind.UNIFIED)
        assert [entry.slot for entry in entries] == [Slot.BACKUP, Slot.CURRENT]

    def test_missing_directory(self, tmp_path):
        images = ManagedDirectory(tmp_path / "absent")
        assert images.list_entries("vmlinuz", EntryKind.SPLIT) == []


class TestPlace:
    def test_copies_and_preserves_times(self, tmp_path, image_dir):
        source = tmp_path / "src"
        source.write_text("new")
        os.utime(source, (1_000_000, 1_000_000))

        images = ManagedDirectory(image_dir)
        target = images.versioned_entry("vmlinuz", EntryKind.UNIFIED, "1.0")
        images.place(target, [source], preserve_times=True)

        assert target.path.read_text() == "new"
        assert target.path.stat().st_mtime == 1_000_000

    def test_without_time_preservation(self, tmp_path, image_dir):
        source = tmp_path / "src"
        source.write_text("new")
        os.utime(source, (1_000_000, 1_000_000))

        images = ManagedDirectory(image_dir)
        target = images.slot_entry("vmlinuz", EntryKind.UNIFIED, Slot.CURRENT)
        images.place(target, [source], preserve_times=False)

        assert target.path.stat().st_mtime != 1_000_000

    def test_creates_directory(self, tmp_path):
        source = tmp_path / "src"
        source.write_text("new")
        images = ManagedDirectory(tmp_path / "fresh" / "dir")
        target = images.versioned_entry("vmlinuz", EntryKind.UNIFIED, "1.0")
        images.place(target, [source])
        assert target.exists()

    def test_failed_copy_changes_nothing(self, tmp_path, image_dir):
        touch(image_dir, "vmlinuz-1.0", "initramfs-1.0.img")
        kernel = tmp_path / "kernel"
        kernel.write_text("new kernel")

        images = ManagedDirectory(image_dir)
        target = images.versioned_entry("vmlinuz", EntryKind.SPLIT, "1.0")

        with pytest.raises(CopyFailed) as excinfo:
            images.place(target, [kernel, tmp_path / "missing-initramfs"])

        assert excinfo.value.path == image_dir / "initramfs-1.0.img"
        assert sorted(p.name for p in image_dir.iterdir()) == ["initramfs-1.0.img", "vmlinuz-1.0"]
        assert (image_dir / "vmlinuz-1.0").read_text() == "vmlinuz-1.0"

    def test_failed_rename_reports_and_cleans_up(self, tmp_path, image_dir, monkeypatch):
        touch(image_dir, "vmlinuz-bootmenu", "initramfs-bootmenu.img")
        kernel = tmp_path / "kernel"
        kernel.write_text("new kernel")
        initramfs = tmp_path / "initramfs"
        initramfs.write_text("new initramfs")

        real_replace = os.replace

        def replace(src, dst):
            if str(dst).endswith(".img"):
                raise OSError(30, "Read-only file system")
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace)
        images = ManagedDirectory(image_dir)
        target = images.slot_entry("vmlinuz", EntryKind.SPLIT, Slot.CURRENT)

        with pytest.raises(CopyFailed) as excinfo:
            images.place(target, [kernel, initramfs])

        assert excinfo.value.path == image_dir / "initramfs-bootmenu.img"
        # One rename per file: the kernel went in before the failure
        assert (image_dir / "vmlinuz-bootmenu").read_text() == "new kernel"
        assert (image_dir / "initramfs-bootmenu.img").read_text() == "initramfs-bootmenu.img"
        assert sorted(p.name for p in image_dir.iterdir()) == [
            "initramfs-bootmenu.img",
            "vmlinuz-bootmenu",
        ]

    def test_source_count_must_match(self, tmp_path, image_dir):
        images = ManagedDirectory(image_dir)
        target = images.versioned_entry("vmlinuz", EntryKind.SPLIT, "1.0")
        with pytest.raises(ValueError):
            images.place(target, [tmp_path / "only-one"])


class TestEvict:
    def test_removes_both_files(self, image_dir):
        touch(image_dir, "vmlinuz-1.0", "initramfs-1.0.img")
        images = ManagedDirectory(image_dir)
        (entry,) = images.list_entries("vmlinuz", EntryKind.SPLIT)

        removed = images.evict(entry)

        assert removed == [image_dir / "vmlinuz-1.0", image_dir / "initramfs-1.0.img"]
        assert list(image_dir.iterdir()) == []

    def test_missing_companion_tolerated(self, image_dir, caplog):
        touch(image_dir, "vmlinuz-1.0")
        images = ManagedDirectory(image_dir)
        (entry,) = images.list_entries("vmlinuz", EntryKind.SPLIT)

        removed = images.evict(entry)

        assert removed == [image_dir / "vmlinuz-1.0"]
        assert "initramfs-1.0.img" in caplog.text
