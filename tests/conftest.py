from pathlib import Path

import pytest

from zbmgen.process import CommandResult


class FakeRunner:
    """
    Fake command runner for testing.

    Records every command. Commands exit with the status configured for
    their program (0 by default); a successful builder run writes its
    output file the way dracut would.
    """

    def __init__(self, statuses: dict[str, int] | None = None, output: str = ""):
        self.statuses = statuses or {}
        self.output = output
        self.calls: list[list[str]] = []

    def __call__(self, argv) -> CommandResult:
        argv = list(argv)
        self.calls.append(argv)
        status = self.statuses.get(argv[0], 0)
        if status == 0 and argv[0] == "dracut":
            kver = argv[argv.index("--kver") + 1]
            Path(argv[-1]).write_text(f"image for {kver}\n")
        return CommandResult(output=self.output, status=status)

    @property
    def programs(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def boot_dir(tmp_path) -> Path:
    path = tmp_path / "boot"
    path.mkdir()
    return path


@pytest.fixture
def image_dir(tmp_path) -> Path:
    path = tmp_path / "efi" / "EFI" / "zbm"
    path.mkdir(parents=True)
    return path
