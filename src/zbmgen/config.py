"""
Run configuration.

Settings come from an INI file and, on top of that, command-line
overrides. Both are folded once into an immutable RunContext that is
handed to every step of a run.
"""

import configparser
import dataclasses
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path

from zbmgen.boot.kernel import KernelRequest
from zbmgen.boot.menu import MenuConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("/etc/zbmgen/config.ini")

# Placeholder in the display version replaced by the kernel version
KERNEL_PLACEHOLDER = "%{kernel}"

# Appended to every image version: some menu parsers truncate a trailing ".0"
VERSION_SUFFIX = "_1"


class ConfigError(Exception):
    """Exception raised for unusable configuration."""

    exit_status = 1
    output = ""


class ConfigMissing(ConfigError):
    """The configuration file does not exist."""

    pass


@dataclass(frozen=True)
class ImageConfig:
    """
    Settings for one kind of boot image.

    Attributes:
        enabled: Whether this kind is built at all
        image_dir: Managed directory the images are placed in, if configured
        versioned: Keep a version history instead of current + backup
        copies: Most versioned images to keep
    """

    enabled: bool
    image_dir: Path | None = None
    versioned: bool = True
    copies: int = 3


@dataclass(frozen=True)
class RunContext:
    """Everything a run needs, resolved up front."""

    manage_images: bool
    boot_dir: Path
    cmdline: str
    builder_conf_dir: Path
    components: ImageConfig
    efi: ImageConfig
    efi_stub: Path
    kernel_path: Path | None = None
    kernel_version: str | None = None
    prefix: str | None = None
    builder_command: str = "dracut"
    builder_flags: tuple[str, ...] = ()
    boot_mount_point: Path | None = None
    temp_dir: Path | None = None
    release: str = KERNEL_PLACEHOLDER
    menu: MenuConfig | None = None

    @property
    def kernel_request(self) -> KernelRequest:
        return KernelRequest(path=self.kernel_path, version=self.kernel_version)

    @property
    def boot_root(self) -> Path:
        """Root the bootloader resolves menu paths from."""
        return self.boot_mount_point or Path("/")

    def image_version(self, kernel_version: str) -> str:
        """
        Version label used in image filenames.

            >>> ctx.image_version("5.10.0")   # with release "%{kernel}"
            '5.10.0_1'
        """
        return self.release.replace(KERNEL_PLACEHOLDER, kernel_version) + VERSION_SUFFIX

    def check_images(self) -> None:
        """
        Check the settings needed to place images and write the menu.

        Parsing accepts a partial configuration so that a disabled run or
        a kernel lookup never trips over image settings it does not use.

        Raises:
            ConfigError: If an enabled image kind lacks a usable directory
                or copy count
        """
        for section, images in (("Components", self.components), ("EFI", self.efi)):
            if not images.enabled:
                continue
            if images.image_dir is None:
                raise ConfigError(
                    f"[{section}] ImageDir is required when {section} is enabled"
                )
            if images.copies < 1:
                raise ConfigError(
                    f"[{section}] Copies must be at least 1, got {images.copies}"
                )
        self.check_menu()

    def check_menu(self) -> None:
        """Raises ConfigError if the menu is enabled but has no images to list."""
        if self.menu is not None and self.components.image_dir is None:
            raise ConfigError("[Components] ImageDir is required for the syslinux menu")

    def with_overrides(self, **overrides) -> "RunContext":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)


def _get_bool(parser, section: str, key: str, default: bool) -> bool:
    try:
        return parser.getboolean(section, key, fallback=default)
    except ValueError as e:
        raise ConfigError(f"[{section}] {key}: {e}") from e


def _get_int(parser, section: str, key: str, default: int) -> int:
    try:
        return parser.getint(section, key, fallback=default)
    except ValueError as e:
        raise ConfigError(f"[{section}] {key}: expected an integer") from e


def _get_path(parser, section: str, key: str, default: str | None = None) -> Path | None:
    value = parser.get(section, key, fallback=default)
    return Path(value) if value else None


def _image_config(parser, section: str, enabled: bool) -> ImageConfig:
    return ImageConfig(
        enabled=_get_bool(parser, section, "Enabled", enabled),
        image_dir=_get_path(parser, section, "ImageDir"),
        versioned=_get_bool(parser, section, "Versioned", True),
        copies=_get_int(parser, section, "Copies", 3),
    )


def parse_config(text: str) -> RunContext:
    """
    Build a RunContext from INI text.

    Raises:
        ConfigError: If a value is malformed or a required one is missing
    """
    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read_string(text)
    except configparser.Error as e:
        raise ConfigError(f"Malformed configuration: {e}") from e

    menu = None
    if _get_bool(parser, "Syslinux", "Enabled", False):
        menu_path = _get_path(parser, "Syslinux", "Config")
        if menu_path is None:
            raise ConfigError("[Syslinux] Config is required when Syslinux is enabled")
        menu = MenuConfig(
            path=menu_path,
            title=parser.get("Syslinux", "Title", fallback="ZFSBootMenu"),
            timeout=_get_int(parser, "Syslinux", "Timeout", 50),
        )

    return RunContext(
        manage_images=_get_bool(parser, "Global", "ManageImages", False),
        boot_dir=_get_path(parser, "Kernel", "BootDir", "/boot"),
        cmdline=parser.get("Kernel", "CommandLine", fallback="ro quiet loglevel=0"),
        builder_conf_dir=_get_path(
            parser, "Global", "DracutConfDir", "/etc/zfsbootmenu/dracut.conf.d"
        ),
        components=_image_config(parser, "Components", True),
        efi=_image_config(parser, "EFI", False),
        efi_stub=_get_path(
            parser, "EFI", "Stub", "/usr/lib/systemd/boot/efi/linuxx64.efi.stub"
        ),
        kernel_path=_get_path(parser, "Kernel", "Path"),
        kernel_version=parser.get("Kernel", "Version", fallback=None) or None,
        prefix=parser.get("Kernel", "Prefix", fallback=None) or None,
        builder_command=parser.get("Global", "BuilderCommand", fallback="dracut"),
        builder_flags=tuple(shlex.split(parser.get("Global", "BuilderFlags", fallback=""))),
        boot_mount_point=_get_path(parser, "Global", "BootMountPoint"),
        temp_dir=_get_path(parser, "Global", "TempDir"),
        release=parser.get("Global", "Version", fallback=KERNEL_PLACEHOLDER) or KERNEL_PLACEHOLDER,
        menu=menu,
    )


def load_config(path: Path = DEFAULT_CONFIG) -> RunContext:
    """
    Read a configuration file.

    Raises:
        ConfigMissing: If the file does not exist
        ConfigError: If it cannot be read or parsed
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigMissing(f"Configuration file {path} not found") from e
    except OSError as e:
        raise ConfigError(f"Unable to read {path}: {e}") from e

    logger.debug(f"Loaded configuration from {path}")
    return parse_config(text)
