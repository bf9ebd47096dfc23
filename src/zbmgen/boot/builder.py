"""
Boot image construction.

This module drives the external initramfs generator (dracut by default)
to produce either a split kernel + initramfs pair or a single unified
EFI executable. Everything is written into a scratch directory; nothing
here touches the managed image directories. Placement is a separate,
later step.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from zbmgen.process import CommandRunner, run_command

from .kernel import KernelRef

logger = logging.getLogger(__name__)


class BuildError(Exception):
    """Exception raised when an image cannot be built."""

    exit_status = 1
    output = ""


class MissingStub(BuildError):
    """The UEFI stub needed for a unified image does not exist."""

    pass


class BuildFailed(BuildError):
    """
    The builder exited with a nonzero status.

    Attributes:
        output: Everything the builder printed
        exit_status: The builder's exit status
    """

    def __init__(self, message: str, output: str, exit_status: int):
        super().__init__(message)
        self.output = output
        self.exit_status = exit_status


@dataclass(frozen=True)
class SplitArtifact:
    """
    A kernel and its initramfs, sitting in scratch space.

    Attributes:
        kernel_file: Copy of the kernel image
        initramfs_file: Generated initramfs
    """

    kernel_file: Path
    initramfs_file: Path

    @property
    def files(self) -> tuple[Path, ...]:
        return (self.kernel_file, self.initramfs_file)


@dataclass(frozen=True)
class UnifiedArtifact:
    """
    A unified EFI executable (stub + kernel + initramfs + cmdline),
    sitting in scratch space.
    """

    efi_file: Path

    @property
    def files(self) -> tuple[Path, ...]:
        return (self.efi_file,)


Artifact = SplitArtifact | UnifiedArtifact


class ImageBuilder:
    """
    Runs the external image builder.

    Every invocation forces a rebuild, runs quietly, and names the config
    directory and kernel version explicitly so the host's defaults never
    leak in.

    Usage:
        builder = ImageBuilder(Path("/etc/zfsbootmenu/dracut.conf.d"))
        with tempfile.TemporaryDirectory() as scratch:
            split = builder.build_split(Path(scratch), kernel)
    """

    def __init__(
        self,
        conf_dir: Path,
        command: str = "dracut",
        extra_flags: Sequence[str] = (),
        runner: CommandRunner = run_command,
    ):
        """
        Create a builder.

        Args:
            conf_dir: Configuration directory handed to the builder
            command: Builder executable
            extra_flags: Additional flags appended to every invocation
            runner: Executes the command; replaced in tests
        """
        self._conf_dir = Path(conf_dir)
        self._command = command
        self._extra_flags = tuple(extra_flags)
        self._runner = runner

    def _base_argv(self, version: str) -> list[str]:
        return [
            self._command,
            "--force",
            "--quiet",
            "--confdir",
            str(self._conf_dir),
            "--kver",
            version,
            *self._extra_flags,
        ]

    def _run(self, argv: list[str], what: str, expected: Path) -> None:
        result = self._runner(argv)
        if result.status != 0:
            raise BuildFailed(
                f"Failed to create {what} (builder exited with status {result.status})",
                output=result.output,
                exit_status=result.status,
            )
        if not expected.is_file():
            raise BuildFailed(
                f"Builder reported success but did not create {expected}",
                output=result.output,
                exit_status=1,
            )
        if result.output:
            logger.debug(f"{self._command} output:\n{result.output.rstrip()}")

    def build_split(self, scratch_dir: Path, kernel: KernelRef) -> SplitArtifact:
        """
        Build an initramfs for a kernel and stage both in scratch space.

        Args:
            scratch_dir: Directory to write into
            kernel: The kernel to build for

        Returns:
            SplitArtifact with both files inside scratch_dir

        Raises:
            BuildFailed: If the builder exits nonzero
        """
        scratch_dir = Path(scratch_dir)
        initramfs = scratch_dir / f"initramfs-{kernel.version}.img"
        staged_kernel = scratch_dir / kernel.filename

        argv = self._base_argv(kernel.version) + [str(initramfs)]
        self._run(argv, f"initramfs for {kernel.version}", initramfs)

        # Keep the source timestamps; they are what downstream ordering sees.
        try:
            shutil.copy2(kernel.path, staged_kernel)
        except OSError as e:
            raise BuildError(f"Cannot stage kernel {kernel.path}: {e}") from e
        logger.info(f"Built split image for {kernel.version} in {scratch_dir}")
        return SplitArtifact(kernel_file=staged_kernel, initramfs_file=initramfs)

    def build_unified(
        self,
        scratch_dir: Path,
        kernel: KernelRef,
        stub: Path,
        cmdline: str,
    ) -> UnifiedArtifact:
        """
        Build a unified EFI executable.

        Args:
            scratch_dir: Directory to write into
            kernel: The kernel to embed
            stub: UEFI stub the executable is built around
            cmdline: Kernel command line embedded in the image

        Returns:
            UnifiedArtifact inside scratch_dir

        Raises:
            MissingStub: If the stub does not exist; the builder is not run
            BuildFailed: If the builder exits nonzero
        """
        stub = Path(stub)
        if not stub.is_file():
            raise MissingStub(f"UEFI stub {stub} does not exist")

        efi_file = Path(scratch_dir) / f"{kernel.prefix}-{kernel.version}.EFI"
        argv = self._base_argv(kernel.version) + [
            "--uefi",
            "--uefi-stub",
            str(stub),
            "--kernel-image",
            str(kernel.path),
            "--kernel-cmdline",
            cmdline,
            str(efi_file),
        ]
        self._run(argv, f"unified EFI image for {kernel.version}", efi_file)
        logger.info(f"Built unified image for {kernel.version} in {scratch_dir}")
        return UnifiedArtifact(efi_file=efi_file)
