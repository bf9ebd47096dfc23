"""
External command execution.

The builder, mount and umount are all run the same way: synchronously,
with stdout and stderr merged into one captured text so it can be shown
to the operator verbatim when something goes wrong.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

# Status reported when the executable itself cannot be started,
# matching what a shell returns for "command not found".
STATUS_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """
    Outcome of one external command.

    Attributes:
        output: Combined stdout and stderr text
        status: Process exit status
    """

    output: str
    status: int

    @property
    def ok(self) -> bool:
        return self.status == 0


CommandRunner = Callable[[Sequence[str]], CommandResult]


def run_command(argv: Sequence[str]) -> CommandResult:
    """
    Run a command to completion and capture its output.

    No timeout is applied; a stuck command blocks the caller.

    Args:
        argv: Program and arguments

    Returns:
        CommandResult with the merged output and exit status
    """
    logger.debug(f"Running: {' '.join(argv)}")
    try:
        proc = subprocess.run(
            list(argv),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
    except FileNotFoundError as e:
        return CommandResult(output=f"{e}\n", status=STATUS_NOT_FOUND)
    except PermissionError as e:
        return CommandResult(output=f"{e}\n", status=126)

    logger.debug(f"{argv[0]} exited with status {proc.returncode}")
    return CommandResult(output=proc.stdout or "", status=proc.returncode)
