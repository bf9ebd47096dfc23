"""
Kernel image discovery.

This module finds the kernel file to build boot images from. Kernels
live in a boot directory under names like "vmlinuz-5.10.0-1-amd64": a
prefix, a hyphen and a version. The locator can take an explicit file,
an explicit version (or "current" for the running kernel), or pick the
newest kernel it can find.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from zbmgen.versions import version_key

logger = logging.getLogger(__name__)


class KernelError(Exception):
    """Exception raised for kernel-related errors."""

    pass


class KernelNotFound(KernelError):
    """No kernel file matches the request."""

    pass


class UnparsableName(KernelError):
    """A kernel filename has no usable prefix or version."""

    pass


# Prefix order tried when a version is requested explicitly
VERSIONED_PREFIXES = ("vmlinuz", "linux", "vmlinux", "kernel")

# Prefix classes searched, in priority order, when picking the latest kernel
LATEST_PREFIXES = ("vmlinux", "vmlinuz", "linux", "kernel")

# Sentinel version meaning "whatever the running system booted"
CURRENT = "current"

# Prefix assumed when a version is forced onto a file whose name has none
DEFAULT_PREFIX = "vmlinuz"

_KERNEL_NAME = re.compile(r"([^\s-]+)(?:-(.+))?")


def running_kernel_version() -> str:
    """Return the release string of the running kernel."""
    return os.uname().release


def parse_kernel_name(name: str) -> tuple[str, str | None] | None:
    """
    Split a kernel filename into prefix and version.

    The prefix is the leading run of characters that are neither
    whitespace nor hyphens; everything after the first hyphen is the
    version.

        >>> parse_kernel_name("vmlinuz-5.10.0-1")
        ('vmlinuz', '5.10.0-1')
        >>> parse_kernel_name("vmlinuz")
        ('vmlinuz', None)

    Returns:
        (prefix, version) with version None when there is no suffix,
        or None if the name cannot be parsed at all
    """
    match = _KERNEL_NAME.fullmatch(name)
    if match is None:
        return None
    return match.group(1), match.group(2)


@dataclass(frozen=True)
class KernelRequest:
    """
    What the caller asked for.

    Attributes:
        path: Explicit kernel file, bypassing the search
        version: Explicit kernel version, or "current"
    """

    path: Path | None = None
    version: str | None = None


@dataclass(frozen=True)
class KernelRef:
    """
    A located kernel.

    Attributes:
        path: Path to the kernel file
        prefix: Filename prefix, e.g. "vmlinuz"
        version: Kernel version, e.g. "5.10.0-1"
    """

    path: Path
    prefix: str
    version: str

    @property
    def filename(self) -> str:
        """The "<prefix>-<version>" name this reference was built from."""
        return f"{self.prefix}-{self.version}"

    def __str__(self) -> str:
        return f"{self.path} (version {self.version})"


class KernelLocator:
    """
    Finds kernels in a boot directory.

    Lookup never modifies the filesystem.

    Usage:
        locator = KernelLocator(Path("/boot"))
        kernel = locator.locate(KernelRequest())            # newest
        kernel = locator.locate(KernelRequest(version="current"))
    """

    def __init__(
        self,
        boot_dir: Path,
        running_version: Callable[[], str] = running_kernel_version,
    ):
        """
        Create a locator.

        Args:
            boot_dir: Directory holding kernel images
            running_version: Returns the running kernel's version; used to
                resolve the "current" sentinel
        """
        self._boot_dir = Path(boot_dir)
        self._running_version = running_version

    def locate(self, request: KernelRequest) -> KernelRef:
        """
        Resolve a request to a concrete kernel.

        Raises:
            KernelNotFound: If no matching file exists
            UnparsableName: If the chosen file's name yields no prefix or
                version and none was given explicitly
        """
        if request.path is not None:
            return self._from_path(Path(request.path), request.version)

        if request.version:
            return self._by_version(self._resolve_version(request.version))

        return self._latest()

    def _resolve_version(self, version: str) -> str:
        if version == CURRENT:
            version = self._running_version()
            logger.debug(f"Running kernel is {version}")
        return version

    def _from_path(self, path: Path, version: str | None) -> KernelRef:
        if not path.is_file():
            raise KernelNotFound(f"Kernel file {path} does not exist")

        if version:
            version = self._resolve_version(version)

        parsed = parse_kernel_name(path.name)
        if parsed is None:
            if not version:
                raise UnparsableName(
                    f"Cannot derive a prefix from kernel name '{path.name}'"
                )
            return KernelRef(path=path, prefix=DEFAULT_PREFIX, version=version)

        prefix, parsed_version = parsed
        version = version or parsed_version
        if not version:
            raise UnparsableName(
                f"Kernel name '{path.name}' carries no version; specify one explicitly"
            )
        return KernelRef(path=path, prefix=prefix, version=version)

    def _by_version(self, version: str) -> KernelRef:
        for prefix in VERSIONED_PREFIXES:
            candidate = self._boot_dir / f"{prefix}-{version}"
            if candidate.is_file():
                return KernelRef(path=candidate, prefix=prefix, version=version)

        raise KernelNotFound(
            f"No kernel for version {version} in {self._boot_dir} "
            f"(tried {', '.join(VERSIONED_PREFIXES)})"
        )

    def _latest(self) -> KernelRef:
        # The first prefix class with any match wins outright, even if a
        # lower-priority class holds a higher version.
        for prefix in LATEST_PREFIXES:
            matches = [p for p in self._boot_dir.glob(f"{prefix}*") if p.is_file()]
            if not matches:
                continue

            chosen = max(matches, key=lambda p: version_key(p.name))
            logger.debug(
                f"{len(matches)} candidate(s) for {prefix}*, chose {chosen.name}"
            )
            return self._from_path(chosen, None)

        raise KernelNotFound(f"No kernel images found in {self._boot_dir}")
