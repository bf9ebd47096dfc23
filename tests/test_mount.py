"""
Test boot partition mounting and interrupt handling.
"""

import os
import signal
from pathlib import Path

import pytest

from conftest import FakeRunner
from zbmgen.mount import BootPartition, MountFailed
from zbmgen.process import CommandResult
from zbmgen.signals import Interrupted, SignalTrap, blocked


def not_mounted(path):
    return False


class TestBootPartition:
    def test_mounts_and_unmounts(self, runner):
        with BootPartition(Path("/boot/efi"), runner=runner, is_mounted=not_mounted) as boot:
            assert boot.mounted_by_us
            assert runner.calls == [["mount", "/boot/efi"]]

        assert runner.calls == [["mount", "/boot/efi"], ["umount", "/boot/efi"]]
        assert not boot.mounted_by_us

    def test_already_mounted_left_alone(self, runner):
        with BootPartition(Path("/boot/efi"), runner=runner, is_mounted=lambda path: True):
            pass
        assert runner.calls == []

    def test_no_mount_point(self, runner):
        with BootPartition(None, runner=runner):
            pass
        assert runner.calls == []

    def test_unmount_runs_once(self, runner):
        boot = BootPartition(Path("/boot/efi"), runner=runner, is_mounted=not_mounted)
        boot.mount()
        boot.unmount()
        boot.unmount()
        boot._cleanup()
        assert runner.programs == ["mount", "umount"]

    def test_unmounts_on_error(self, runner):
        with pytest.raises(RuntimeError):
            with BootPartition(Path("/boot/efi"), runner=runner, is_mounted=not_mounted):
                raise RuntimeError("build failed")
        assert runner.programs == ["mount", "umount"]

    def test_mount_failure(self):
        runner = FakeRunner(statuses={"mount": 32}, output="mount: /boot/efi: can't find in /etc/fstab.")
        with pytest.raises(MountFailed) as excinfo:
            with BootPartition(Path("/boot/efi"), runner=runner, is_mounted=not_mounted):
                pass
        assert excinfo.value.exit_status == 32
        assert "fstab" in excinfo.value.output
        assert runner.programs == ["mount"]

    def test_unmount_failure_is_logged(self, caplog):
        runner = FakeRunner(statuses={"umount": 1}, output="target is busy")
        with BootPartition(Path("/boot/efi"), runner=runner, is_mounted=not_mounted):
            pass
        assert "Unable to unmount" in caplog.text


class TestSignalTrap:
    def test_signal_becomes_exception(self):
        with pytest.raises(Interrupted) as excinfo:
            with SignalTrap():
                os.kill(os.getpid(), signal.SIGTERM)
        assert excinfo.value.exit_status == 128 + signal.SIGTERM

    def test_restores_handlers(self):
        before = signal.getsignal(signal.SIGTERM)
        with SignalTrap():
            assert signal.getsignal(signal.SIGTERM) != before
        assert signal.getsignal(signal.SIGTERM) == before

    def test_unmounts_when_interrupted(self, runner):
        with pytest.raises(Interrupted):
            with SignalTrap(), BootPartition(
                Path("/boot/efi"), runner=runner, is_mounted=not_mounted
            ):
                os.kill(os.getpid(), signal.SIGINT)
        assert runner.programs == ["mount", "umount"]

    def test_signal_during_umount_waits_for_it(self):
        finished = []

        def interrupting_runner(argv):
            if argv[0] == "umount":
                os.kill(os.getpid(), signal.SIGINT)
                finished.append(argv)
            return CommandResult(output="", status=0)

        with pytest.raises(Interrupted):
            with SignalTrap():
                with BootPartition(
                    Path("/boot/efi"), runner=interrupting_runner, is_mounted=not_mounted
                ) as boot:
                    pass

        assert finished == [["umount", "/boot/efi"]]
        assert not boot.mounted_by_us

    def test_signal_during_mount_still_unmounts(self):
        calls = []

        def interrupting_runner(argv):
            calls.append(argv[0])
            if argv[0] == "mount":
                os.kill(os.getpid(), signal.SIGTERM)
            return CommandResult(output="", status=0)

        with pytest.raises(Interrupted):
            with SignalTrap():
                with BootPartition(
                    Path("/boot/efi"), runner=interrupting_runner, is_mounted=not_mounted
                ):
                    pytest.fail("body must not run after an interrupted mount")

        assert calls == ["mount", "umount"]


class TestBlocked:
    def test_signal_delivered_after_block(self):
        delivered = []
        with SignalTrap():
            with pytest.raises(Interrupted):
                with blocked():
                    os.kill(os.getpid(), signal.SIGTERM)
                    delivered.append("still running")
        assert delivered == ["still running"]

    def test_mask_restored(self):
        before = signal.pthread_sigmask(signal.SIG_BLOCK, [])
        with blocked():
            assert signal.SIGINT in signal.pthread_sigmask(signal.SIG_BLOCK, [])
        assert signal.pthread_sigmask(signal.SIG_BLOCK, []) == before
