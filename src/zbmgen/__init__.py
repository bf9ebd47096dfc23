"""
zbmgen - boot image lifecycle manager.

Builds kernel/initramfs pairs and unified EFI executables for a boot-menu
environment, keeps a bounded history of them on the boot partition and
writes a syslinux menu listing what survives.
"""

__version__ = "0.1.0"
