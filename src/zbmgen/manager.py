"""
Boot image refresh orchestration.

One run walks these steps in order, skipping the ones that are turned
off in the configuration:

1. Locate the kernel
2. Build the unified EFI image
3. Build the split kernel + initramfs image
4. Place the unified image (versioned or current/backup)
5. Place the split image
6. Regenerate the syslinux menu

All builds finish before anything is placed. The first failure ends the
run; in particular the menu is not regenerated after a failed step, so
the previous, consistent menu stays in place.
"""

import logging
import tempfile
from pathlib import Path
from typing import Callable

from zbmgen.boot.builder import BuildError, ImageBuilder, SplitArtifact, UnifiedArtifact
from zbmgen.boot.kernel import (
    DEFAULT_PREFIX,
    VERSIONED_PREFIXES,
    KernelError,
    KernelLocator,
    KernelRef,
    running_kernel_version,
)
from zbmgen.boot.menu import MenuError, generate_entries, render_syslinux, write_menu
from zbmgen.config import ConfigError, ImageConfig, RunContext
from zbmgen.images.managed import CopyFailed, EntryKind, ManagedDirectory
from zbmgen.images.retention import place_singleton, place_versioned
from zbmgen.mount import BootPartition, MountFailed
from zbmgen.process import CommandRunner, run_command
from zbmgen.signals import Interrupted, SignalTrap

logger = logging.getLogger(__name__)

# Everything that ends a run early
FATAL_ERRORS = (KernelError, BuildError, CopyFailed, MountFailed, MenuError, Interrupted)


class ImageManager:
    """
    Runs one boot image refresh.

    Usage:
        ctx = load_config(Path("/etc/zbmgen/config.ini"))
        status = ImageManager(ctx).run()
    """

    def __init__(
        self,
        ctx: RunContext,
        runner: CommandRunner = run_command,
        running_version: Callable[[], str] = running_kernel_version,
        builder: ImageBuilder | None = None,
    ):
        """
        Create a manager.

        Args:
            ctx: Resolved configuration for this run
            runner: Executes external commands (builder, mount, umount)
            running_version: Returns the running kernel's version
            builder: Image builder; built from ctx when not given
        """
        self._ctx = ctx
        self._runner = runner
        self._locator = KernelLocator(ctx.boot_dir, running_version=running_version)
        self._builder = builder or ImageBuilder(
            ctx.builder_conf_dir,
            command=ctx.builder_command,
            extra_flags=ctx.builder_flags,
            runner=runner,
        )

    def run(self) -> int:
        """
        Perform the refresh.

        Returns:
            0 on success, otherwise the failing step's exit status
        """
        if not self._ctx.manage_images:
            print("Image management is disabled; nothing to do")
            return 0

        try:
            self._ctx.check_images()
        except ConfigError as e:
            return self._report(e)

        return self._guarded(self._refresh)

    def regenerate_menu(self) -> int:
        """Rewrite the menu from the images already in place."""
        if self._ctx.menu is None:
            print("Syslinux menu generation is disabled; nothing to do")
            return 0

        try:
            self._ctx.check_menu()
        except ConfigError as e:
            return self._report(e)

        return self._guarded(self._write_menu)

    def _guarded(self, step: Callable[[], None]) -> int:
        try:
            with SignalTrap(), BootPartition(
                self._ctx.boot_mount_point, runner=self._runner
            ):
                step()
        except FATAL_ERRORS as e:
            return self._report(e)
        return 0

    def _report(self, e: Exception) -> int:
        output = getattr(e, "output", "")
        if output:
            print(output.rstrip())
        print(f"Error: {e}")
        return getattr(e, "exit_status", 1) or 1

    def locate_kernel(self) -> KernelRef:
        kernel = self._locator.locate(self._ctx.kernel_request)
        print(f"Found kernel: {kernel}")
        return kernel

    def _prefix(self, kernel: KernelRef) -> str:
        return self._ctx.prefix or kernel.prefix

    def _refresh(self) -> None:
        ctx = self._ctx
        kernel = self.locate_kernel()
        version = ctx.image_version(kernel.version)
        prefix = self._prefix(kernel)

        with tempfile.TemporaryDirectory(prefix="zbmgen.", dir=ctx.temp_dir) as scratch:
            scratch_dir = Path(scratch)

            unified = None
            if ctx.efi.enabled:
                unified = self._builder.build_unified(
                    scratch_dir, kernel, ctx.efi_stub, ctx.cmdline
                )
                print(f"Created unified EFI image for {kernel.version}")

            split = None
            if ctx.components.enabled:
                split = self._builder.build_split(scratch_dir, kernel)
                print(f"Created initramfs for {kernel.version}")

            if unified is not None:
                self._place(ctx.efi, prefix, unified, version)
            if split is not None:
                self._place(ctx.components, prefix, split, version)

        if ctx.menu is not None:
            self._write_menu(prefix)

    def _place(
        self,
        images: ImageConfig,
        prefix: str,
        artifact: SplitArtifact | UnifiedArtifact,
        version: str,
    ) -> None:
        directory = ManagedDirectory(images.image_dir)
        if images.versioned:
            place_versioned(directory, prefix, artifact, version, images.copies)
        else:
            place_singleton(directory, prefix, artifact)

    def _write_menu(self, prefix: str | None = None) -> None:
        ctx = self._ctx
        if prefix is None:
            prefix = ctx.prefix or self._menu_prefix()

        directory = ManagedDirectory(ctx.components.image_dir)
        entries = generate_entries(
            directory, prefix, ctx.boot_root, ctx.cmdline, title=ctx.menu.title
        )
        if not entries:
            logger.warning(f"No boot images for '{prefix}' in {directory}; menu not written")
            return

        write_menu(render_syslinux(entries, ctx.menu), ctx.menu.path)
        print(f"Wrote syslinux config to {ctx.menu.path}")

    def _menu_prefix(self) -> str:
        """
        Pick the prefix of the split images already in place.

        Kernel prefixes are tried in locator priority order; the managed
        directory alone decides, so no kernel needs to be present.
        """
        directory = ManagedDirectory(self._ctx.components.image_dir)
        for prefix in VERSIONED_PREFIXES:
            if directory.list_entries(prefix, EntryKind.SPLIT):
                return prefix
        return DEFAULT_PREFIX
