"""
Syslinux boot menu generation.

The menu is regenerated from scratch on every run from whatever split
images survive in the managed directory: one stanza per image, newest
first, the newest marked as the default. Unified EFI images are booted
by the firmware directly and never appear here.

The bootloader resolves paths from the root of its own partition, so
image paths are written relative to the boot partition's mount point.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from zbmgen.images.managed import EntryKind, ManagedDirectory, initramfs_name

logger = logging.getLogger(__name__)


class MenuError(Exception):
    """Exception raised when the menu cannot be written."""

    exit_status = 1


@dataclass(frozen=True)
class MenuConfig:
    """
    Menu settings.

    Attributes:
        path: Where the menu file is written
        title: Menu title; also used in each entry's display label
        timeout: Delay before the default boots, in tenths of a second
    """

    path: Path
    title: str = "ZFSBootMenu"
    timeout: int = 50


@dataclass(frozen=True)
class MenuEntry:
    """
    One stanza of the menu.

    Attributes:
        label: Unique syslinux label
        display_label: Text shown to the user
        kernel_path: Kernel path relative to the boot partition root
        initramfs_path: Initramfs path relative to the boot partition root
        cmdline: Kernel command line
        default: Whether this is the default selection
    """

    label: str
    display_label: str
    kernel_path: str
    initramfs_path: str
    cmdline: str
    default: bool = False


def partition_path(path: Path, boot_root: Path) -> str:
    """
    Express an absolute path as seen from the boot partition's root.

        >>> partition_path(Path("/boot/efi/EFI/zbm"), Path("/boot/efi"))
        '/EFI/zbm'

    A path outside boot_root is returned unchanged.
    """
    try:
        relative = Path(path).relative_to(boot_root)
    except ValueError:
        logger.warning(f"{path} is not under {boot_root}; using it as is")
        return str(PurePosixPath(path))
    return str(PurePosixPath("/") / PurePosixPath(relative))


def generate_entries(
    directory: ManagedDirectory,
    prefix: str,
    boot_root: Path,
    cmdline: str,
    title: str = "ZFSBootMenu",
) -> list[MenuEntry]:
    """
    Build menu entries for the split images in a directory.

    Args:
        directory: Managed directory holding the images
        prefix: Kernel filename prefix
        boot_root: Mount point of the partition the bootloader reads
        cmdline: Kernel command line for every entry
        title: Display name embedded in each entry's label

    Returns:
        Entries newest first; the first one is the default
    """
    images = directory.list_entries(prefix, EntryKind.SPLIT)
    base = partition_path(directory.path, boot_root).rstrip("/")

    entries = []
    for index, image in enumerate(reversed(images)):
        entries.append(
            MenuEntry(
                label=f"{prefix}-{image.version}",
                display_label=f"{title} {image.version}",
                kernel_path=f"{base}/{image.name}",
                initramfs_path=f"{base}/{initramfs_name(image.version)}",
                cmdline=cmdline,
                default=index == 0,
            )
        )
    return entries


def render_syslinux(entries: list[MenuEntry], config: MenuConfig) -> str:
    """Render entries as a complete syslinux configuration file."""
    default = next((entry for entry in entries if entry.default), None)

    lines = [
        "UI menu.c32",
        "PROMPT 0",
        "",
        f"MENU TITLE {config.title}",
        f"TIMEOUT {config.timeout}",
        "",
    ]
    if default is not None:
        lines += [f"DEFAULT {default.label}", ""]

    for entry in entries:
        lines += [
            f"LABEL {entry.label}",
            f"MENU LABEL {entry.display_label}",
            f"KERNEL {entry.kernel_path}",
            f"INITRD {entry.initramfs_path}",
            f"APPEND {entry.cmdline}",
            "",
        ]

    return "\n".join(lines)


def write_menu(content: str, path: Path) -> None:
    """
    Replace a file's contents in one step.

    The content goes to a temporary file in the same directory, which is
    flushed to disk and renamed over the destination, so readers see
    either the old file or the new one.

    Raises:
        MenuError: If the file cannot be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise MenuError(f"Unable to write {path}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(name, 0o644)
        os.replace(name, path)
    except OSError as e:
        Path(name).unlink(missing_ok=True)
        raise MenuError(f"Unable to write {path}: {e}") from e
