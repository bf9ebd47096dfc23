"""
Interrupt handling.

SIGINT and SIGTERM are turned into an ordinary exception for the
duration of a run, so the usual `with` blocks unwind and release what
they hold (scratch space, a boot partition we mounted) before exit.
"""

import logging
import signal
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class Interrupted(Exception):
    """
    Raised when the run receives a termination signal.

    Attributes:
        signum: The signal received
        exit_status: Shell-style status, 128 + signum
    """

    output = ""

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by {signal.Signals(signum).name}")
        self.signum = signum
        self.exit_status = 128 + signum


TRAPPED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SignalTrap:
    """
    Converts termination signals into Interrupted while active.

    Usage:
        with SignalTrap():
            long_running_work()

    The previous handlers are restored on exit.
    """

    SIGNALS = TRAPPED_SIGNALS

    def __init__(self):
        self._previous: dict[int, object] = {}

    def _handle(self, signum, frame):
        logger.debug(f"Caught signal {signum}")
        raise Interrupted(signum)

    def __enter__(self) -> "SignalTrap":
        for signum in self.SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()


@contextmanager
def blocked(signums=TRAPPED_SIGNALS):
    """
    Hold back termination signals for the duration of a block.

    A signal that arrives meanwhile stays pending and is delivered when
    the block ends. The mask is inherited by child processes, so a
    terminal interrupt cannot kill a mount or umount half way through.
    """
    previous = signal.pthread_sigmask(signal.SIG_BLOCK, signums)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)
