"""
Boot image support.

This package finds kernels, builds boot images from them and writes the
syslinux menu that lists them.
"""

from .kernel import KernelError, KernelLocator, KernelNotFound, KernelRef, KernelRequest, UnparsableName
from .builder import BuildError, BuildFailed, ImageBuilder, MissingStub, SplitArtifact, UnifiedArtifact
from .menu import MenuConfig, MenuEntry, MenuError, generate_entries, render_syslinux, write_menu

__all__ = [
    # Kernel discovery
    "KernelError",
    "KernelLocator",
    "KernelNotFound",
    "KernelRef",
    "KernelRequest",
    "UnparsableName",
    # Image building
    "BuildError",
    "BuildFailed",
    "ImageBuilder",
    "MissingStub",
    "SplitArtifact",
    "UnifiedArtifact",
    # Menu
    "MenuConfig",
    "MenuEntry",
    "MenuError",
    "generate_entries",
    "render_syslinux",
    "write_menu",
]
