"""
Managed image directories.

A managed directory holds the boot images this tool has placed. There is
no index file: the directory listing is the database, and every entry is
recognised purely from its filename. This module is the one place that
knows those naming conventions.

Split entries (kernel + initramfs):
    <prefix>-<version>              initramfs-<version>.img
    <prefix>-bootmenu               initramfs-bootmenu.img          (current)
    <prefix>-bootmenu-backup        initramfs-bootmenu-backup.img   (backup)

Unified entries (single EFI executable):
    <prefix>-<version>.EFI
    <prefix>.EFI                                                    (current)
    <prefix>-backup.EFI                                             (backup)
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Sequence

from zbmgen.versions import version_key

logger = logging.getLogger(__name__)


class CopyFailed(Exception):
    """
    Exception raised when an image cannot be written into a managed directory.

    Attributes:
        path: Destination that could not be written
        error: The underlying OS error
    """

    exit_status = 1

    def __init__(self, path: Path, error: OSError):
        super().__init__(f"Failed to copy to {path}: {error.strerror or error}")
        self.path = path
        self.error = error


class EntryKind(Enum):
    """The two kinds of boot image, pruned independently."""

    SPLIT = "split"
    UNIFIED = "unified"


class Slot(Enum):
    """Fixed-name positions used when images are not versioned."""

    CURRENT = "current"
    BACKUP = "backup"


EFI_SUFFIX = ".EFI"

# Version labels of the fixed split names
CURRENT_LABEL = "bootmenu"
BACKUP_LABEL = "bootmenu-backup"

# Ordering rank: backups sort oldest, current newest, history in between
_SLOT_RANK = {Slot.BACKUP: 0, None: 1, Slot.CURRENT: 2}


def initramfs_name(version: str) -> str:
    return f"initramfs-{version}.img"


def _is_efi(name: str) -> bool:
    return name.upper().endswith(EFI_SUFFIX)


@dataclass(frozen=True)
class ManagedEntry:
    """
    One boot image inside a managed directory.

    Attributes:
        name: Name of the primary file (kernel or EFI executable)
        version: Version label parsed from the name
        kind: Split or unified
        files: Every file making up the entry, primary first
        slot: CURRENT or BACKUP for fixed names, None for versioned ones
    """

    name: str
    version: str
    kind: EntryKind
    files: tuple[Path, ...]
    slot: Slot | None = None

    @property
    def path(self) -> Path:
        """Path of the primary file."""
        return self.files[0]

    @property
    def sort_key(self) -> tuple:
        return (_SLOT_RANK[self.slot], version_key(self.version))

    def exists(self) -> bool:
        return self.path.is_file()


class ManagedDirectory:
    """
    A directory of boot images, read by listing and filename matching.

    Usage:
        images = ManagedDirectory(Path("/boot/efi/EFI/zbm"))
        for entry in images.list_entries("vmlinuz", EntryKind.SPLIT):
            print(entry.version)
    """

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def __str__(self) -> str:
        return str(self._path)

    # -- naming --------------------------------------------------------

    def versioned_entry(self, prefix: str, kind: EntryKind, version: str) -> ManagedEntry:
        """Describe the entry a versioned placement of `version` would create."""
        if kind is EntryKind.UNIFIED:
            name = f"{prefix}-{version}{EFI_SUFFIX}"
            return ManagedEntry(name, version, kind, (self._path / name,))

        name = f"{prefix}-{version}"
        files = (self._path / name, self._path / initramfs_name(version))
        return ManagedEntry(name, version, kind, files)

    def slot_entry(self, prefix: str, kind: EntryKind, slot: Slot) -> ManagedEntry:
        """Describe the fixed-name entry for a singleton slot."""
        if kind is EntryKind.UNIFIED:
            if slot is Slot.CURRENT:
                name, version = f"{prefix}{EFI_SUFFIX}", ""
            else:
                name, version = f"{prefix}-backup{EFI_SUFFIX}", "backup"
            return ManagedEntry(name, version, kind, (self._path / name,), slot)

        version = CURRENT_LABEL if slot is Slot.CURRENT else BACKUP_LABEL
        name = f"{prefix}-{version}"
        files = (self._path / name, self._path / initramfs_name(version))
        return ManagedEntry(name, version, kind, files, slot)

    def _parse(self, prefix: str, kind: EntryKind, name: str) -> ManagedEntry | None:
        if kind is EntryKind.UNIFIED:
            if not name.endswith(EFI_SUFFIX):
                return None
            if name[: -len(EFI_SUFFIX)] == prefix:
                return self.slot_entry(prefix, kind, Slot.CURRENT)
            if not name.startswith(f"{prefix}-"):
                return None
            version = name[len(prefix) + 1 : -len(EFI_SUFFIX)]
            if not version:
                return None
            if version == "backup":
                return self.slot_entry(prefix, kind, Slot.BACKUP)
            return ManagedEntry(name, version, kind, (self._path / name,))

        # Split kernels: an exact "<prefix>-" boundary, never EFI files
        if _is_efi(name) or not name.startswith(f"{prefix}-"):
            return None
        version = name[len(prefix) + 1 :]
        if not version:
            return None
        if version == CURRENT_LABEL:
            return self.slot_entry(prefix, kind, Slot.CURRENT)
        if version == BACKUP_LABEL:
            return self.slot_entry(prefix, kind, Slot.BACKUP)
        return self.versioned_entry(prefix, kind, version)

    # -- reading -------------------------------------------------------

    def list_entries(self, prefix: str, kind: EntryKind) -> list[ManagedEntry]:
        """
        List the entries of one kind for a prefix, oldest first.

        The directory is read exactly once per call. A missing directory
        has no entries.

        Args:
            prefix: Filename prefix, e.g. "vmlinuz"
            kind: Which kind of entry to report

        Returns:
            Entries sorted oldest to newest by version
        """
        try:
            with os.scandir(self._path) as listing:
                names = sorted(item.name for item in listing if item.is_file())
        except FileNotFoundError:
            return []

        entries = []
        for name in names:
            entry = self._parse(prefix, kind, name)
            if entry is not None:
                entries.append(entry)

        entries.sort(key=lambda entry: entry.sort_key)
        logger.debug(
            f"{len(entries)} {kind.value} entries for '{prefix}' in {self._path}"
        )
        return entries

    # -- writing -------------------------------------------------------

    def place(
        self,
        target: ManagedEntry,
        sources: Sequence[Path],
        preserve_times: bool = True,
    ) -> None:
        """
        Copy source files into the directory under the target's names.

        All files are first copied to hidden temporary names next to their
        destinations; only when every copy succeeded are they renamed into
        place. If any copy fails, the temporaries are removed and the
        directory is left as it was.

        The renames themselves are one per file. A rename only fails when
        the directory itself breaks (read-only remount, I/O error), and if
        that happens after the first file went in, a kernel can be left
        next to the previous initramfs. No backup of the old files is kept
        to roll back with: on the FAT partitions these images usually live
        on that would mean copying every image twice.

        Args:
            target: Entry describing the destination names
            sources: One source file per file in target.files
            preserve_times: Carry the sources' access and modification times

        Raises:
            CopyFailed: If any file cannot be written
        """
        if len(sources) != len(target.files):
            raise ValueError(
                f"{target.name} needs {len(target.files)} file(s), got {len(sources)}"
            )

        staged: list[tuple[Path, Path]] = []
        try:
            for source, destination in zip(sources, target.files):
                staged.append((self._stage(source, destination, preserve_times), destination))

            for temporary, destination in staged:
                try:
                    os.replace(temporary, destination)
                except OSError as e:
                    raise CopyFailed(destination, e) from e
        finally:
            for temporary, _ in staged:
                if temporary.exists():
                    temporary.unlink()

    def _stage(self, source: Path, destination: Path, preserve_times: bool) -> Path:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(
                dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp"
            )
            os.close(fd)
        except OSError as e:
            raise CopyFailed(destination, e) from e

        temporary = Path(name)
        try:
            shutil.copyfile(source, temporary)
            if preserve_times:
                shutil.copystat(source, temporary)
            else:
                shutil.copymode(source, temporary)
        except OSError as e:
            temporary.unlink(missing_ok=True)
            raise CopyFailed(destination, e) from e
        return temporary

    def copy_entry(self, source: ManagedEntry, target: ManagedEntry) -> list[Path]:
        """
        Copy the files of one entry onto another entry's names, keeping
        timestamps. Files missing from the source are skipped.

        Returns:
            Destination paths written

        Raises:
            CopyFailed: If a present file cannot be copied
        """
        pairs = [
            (src, dst) for src, dst in zip(source.files, target.files) if src.is_file()
        ]
        if not pairs:
            return []
        partial = ManagedEntry(
            target.name, target.version, target.kind, tuple(dst for _, dst in pairs), target.slot
        )
        self.place(partial, [src for src, _ in pairs], preserve_times=True)
        return list(partial.files)

    def evict(self, entry: ManagedEntry) -> list[Path]:
        """
        Delete every file of an entry.

        A file that is already gone is logged and skipped, as is one that
        cannot be removed; eviction never aborts a run.

        Returns:
            Paths actually removed
        """
        removed = []
        for path in entry.files:
            try:
                path.unlink()
            except FileNotFoundError:
                logger.warning(f"{path} is already missing; skipping")
                continue
            except OSError as e:
                logger.error(f"Unable to remove {path}: {e}")
                continue
            removed.append(path)
        return removed
