"""
Boot partition mounting.

When the images live on a separate boot partition that is not normally
mounted, we mount it for the duration of the run and unmount it again
afterwards. Only a mount we made ourselves is ever undone.

This module provides a context manager so the unmount happens exactly
once on every way out: normal return, an exception, or an interrupt.
"""

import atexit
import logging
import os
from pathlib import Path
from typing import Callable

from zbmgen.process import CommandRunner, run_command
from zbmgen.signals import blocked

logger = logging.getLogger(__name__)


class MountFailed(Exception):
    """
    Exception raised when the boot partition cannot be mounted.

    Attributes:
        output: What mount printed
        exit_status: mount's exit status
    """

    def __init__(self, message: str, output: str = "", exit_status: int = 1):
        super().__init__(message)
        self.output = output
        self.exit_status = exit_status


class BootPartition:
    """
    Mounts a boot partition for the lifetime of a block.

    Usage:
        with BootPartition(Path("/boot/efi")):
            # /boot/efi is mounted here
            ...
        # and unmounted here, if we mounted it

    With no mount point, or one that is already mounted, this does
    nothing at all.
    """

    def __init__(
        self,
        mount_point: Path | None,
        runner: CommandRunner = run_command,
        is_mounted: Callable[[str], bool] = os.path.ismount,
    ):
        """
        Create a mount manager.

        Args:
            mount_point: Directory to mount (must be listed in fstab), or None
            runner: Executes mount and umount; replaced in tests
            is_mounted: Tells whether a path is already a mount point
        """
        self._mount_point = Path(mount_point) if mount_point else None
        self._runner = runner
        self._is_mounted = is_mounted
        self._mounted_by_us = False

    @property
    def mounted_by_us(self) -> bool:
        return self._mounted_by_us

    def mount(self) -> None:
        """
        Mount the partition unless it is already mounted.

        Raises:
            MountFailed: If mount exits nonzero
        """
        if self._mount_point is None or self._mounted_by_us:
            return

        if self._is_mounted(str(self._mount_point)):
            logger.debug(f"{self._mount_point} is already mounted")
            return

        # An interrupt must not land between a successful mount and the
        # flag recording it
        with blocked():
            result = self._runner(["mount", str(self._mount_point)])
            if not result.ok:
                raise MountFailed(
                    f"Unable to mount {self._mount_point}",
                    output=result.output,
                    exit_status=result.status,
                )

            self._mounted_by_us = True

            # Register cleanup handler in case of unexpected exit
            atexit.register(self._cleanup)
            print(f"Mounted {self._mount_point}")

    def unmount(self) -> None:
        """
        Unmount the partition if this object mounted it.

        Safe to call any number of times. A failed unmount is logged and
        does not raise; by the time it runs the outcome is decided.
        Termination signals are held back until umount has finished.
        """
        if not self._mounted_by_us:
            return

        with blocked():
            # Cleared first so a re-entrant call (e.g. from atexit) is a no-op
            self._mounted_by_us = False
            atexit.unregister(self._cleanup)

            result = self._runner(["umount", str(self._mount_point)])
            if not result.ok:
                if result.output:
                    print(result.output.rstrip())
                logger.warning(
                    f"Unable to unmount {self._mount_point} (status {result.status})"
                )
                return
            print(f"Unmounted {self._mount_point}")

    def _cleanup(self) -> None:
        """Cleanup handler for atexit - unmounts the partition."""
        self.unmount()

    def __enter__(self) -> "BootPartition":
        try:
            self.mount()
        except BaseException:
            # __exit__ is not called when __enter__ raises
            self.unmount()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unmount()
