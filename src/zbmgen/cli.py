"""
Command-line interface for zbmgen.

This module defines all CLI commands using the Typer library.
"""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from zbmgen import __version__
from zbmgen.config import DEFAULT_CONFIG

app = typer.Typer(
    name="zbmgen",
    help="zbmgen - build and rotate boot-menu kernel images",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"zbmgen {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    debug: Annotated[
        bool,
        typer.Option("--debug", "-d", help="Log debugging detail"),
    ] = False,
) -> None:
    """zbmgen - build and rotate boot-menu kernel images."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
    )


ConfigOption = Annotated[
    Path, typer.Option("--config", "-c", help="Configuration file")
]
KernelOption = Annotated[
    Optional[Path], typer.Option("--kernel", "-k", help="Kernel file to build from")
]
KverOption = Annotated[
    Optional[str],
    typer.Option("--kver", "-K", help="Kernel version to build from, or 'current'"),
]
PrefixOption = Annotated[
    Optional[str], typer.Option("--prefix", "-p", help="Output filename prefix")
]
BootDirOption = Annotated[
    Optional[Path], typer.Option("--bootdir", "-b", help="Directory to search for kernels")
]
ConfDirOption = Annotated[
    Optional[Path], typer.Option("--confd", "-C", help="Builder configuration directory")
]
CmdlineOption = Annotated[
    Optional[str], typer.Option("--cmdline", "-l", help="Kernel command line")
]
ReleaseOption = Annotated[
    Optional[str],
    typer.Option("--release", "-r", help="Display version; %{kernel} is the kernel version"),
]


def _load_context(config: Path, **overrides):
    """Read the configuration file and apply command-line overrides."""
    from zbmgen.config import ConfigError, load_config

    try:
        ctx = load_config(config)
    except ConfigError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=e.exit_status) from e

    return ctx.with_overrides(**overrides)


@app.command("generate")
def generate(
    config: ConfigOption = DEFAULT_CONFIG,
    kernel: KernelOption = None,
    kver: KverOption = None,
    prefix: PrefixOption = None,
    bootdir: BootDirOption = None,
    confd: ConfDirOption = None,
    cmdline: CmdlineOption = None,
    release: ReleaseOption = None,
) -> None:
    """
    Build boot images and rotate them into place.

    Locates a kernel, builds the enabled image kinds, places them in
    their managed directories (pruning old versions) and rewrites the
    syslinux menu if one is configured.

    Example:
        zbmgen generate
        zbmgen generate --kver current --release 2.0
    """
    from zbmgen.manager import ImageManager

    ctx = _load_context(
        config,
        kernel_path=kernel,
        kernel_version=kver,
        prefix=prefix,
        boot_dir=bootdir,
        builder_conf_dir=confd,
        cmdline=cmdline,
        release=release,
    )

    status = ImageManager(ctx).run()
    if status != 0:
        raise typer.Exit(code=status)


@app.command("locate")
def locate(
    config: ConfigOption = DEFAULT_CONFIG,
    kernel: KernelOption = None,
    kver: KverOption = None,
    bootdir: BootDirOption = None,
    release: ReleaseOption = None,
) -> None:
    """
    Show which kernel would be used, without building anything.
    """
    from zbmgen.boot.kernel import KernelError, KernelLocator

    ctx = _load_context(
        config,
        kernel_path=kernel,
        kernel_version=kver,
        boot_dir=bootdir,
        release=release,
    )

    try:
        ref = KernelLocator(ctx.boot_dir).locate(ctx.kernel_request)
    except KernelError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1) from e

    print(f"Kernel:        {ref.path}")
    print(f"Prefix:        {ctx.prefix or ref.prefix}")
    print(f"Version:       {ref.version}")
    print(f"Image version: {ctx.image_version(ref.version)}")


@app.command("menu")
def menu(
    config: ConfigOption = DEFAULT_CONFIG,
    prefix: PrefixOption = None,
    cmdline: CmdlineOption = None,
) -> None:
    """
    Rewrite the syslinux menu from the images already in place.
    """
    from zbmgen.manager import ImageManager

    ctx = _load_context(config, prefix=prefix, cmdline=cmdline)

    status = ImageManager(ctx).regenerate_menu()
    if status != 0:
        raise typer.Exit(code=status)


if __name__ == "__main__":
    app()
