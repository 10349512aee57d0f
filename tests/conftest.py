"""Shared test fixtures — fake processes and recording collaborators."""

from __future__ import annotations

import io
import threading

import pytest

from procwarden.destroyer import ProcessDestroyer
from procwarden.launcher import CommandLauncher
from procwarden.streams import ExecuteStreamHandler


class FakeStream(io.BytesIO):
    """BytesIO that remembers its contents and can fail on close."""

    def __init__(self, data: bytes = b"", close_error: OSError | None = None):
        super().__init__(data)
        self.close_error = close_error
        self.close_calls = 0
        self.final = b""

    def close(self):
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error
        if not self.closed:
            self.final = self.getvalue()
        super().close()


class FakeProcess:
    """Stands in for subprocess.Popen. No OS process behind it."""

    def __init__(
        self,
        exit_value: int = 0,
        stdout: bytes = b"",
        stderr: bytes = b"",
        hang: bool = False,
        interrupt_wait: bool = False,
        release: threading.Event | None = None,
    ):
        self.pid = 4242
        self.stdin = FakeStream()
        self.stdout = FakeStream(stdout)
        self.stderr = FakeStream(stderr)
        self.returncode: int | None = None
        self.kill_calls = 0
        self.wait_calls = 0
        self._exit_value = exit_value
        self._hang = hang
        self._interrupt_wait = interrupt_wait
        self._release = release
        self._killed = threading.Event()

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self.wait_calls += 1
        if self._interrupt_wait:
            self._interrupt_wait = False
            raise KeyboardInterrupt
        if self._release is not None:
            self._release.wait(5)
        if self._hang:
            self._killed.wait(10)
        if self.returncode is None:
            self.returncode = self._exit_value
        return self.returncode

    def kill(self):
        self.kill_calls += 1
        if self.returncode is None:
            self.returncode = -9
        self._killed.set()


class FakeLauncher(CommandLauncher):
    """Hands out a prepared process, or raises a prepared error."""

    def __init__(self, process: FakeProcess | None = None, error: Exception | None = None):
        self.process = process or FakeProcess()
        self.error = error
        self.calls: list[tuple] = []

    def launch(self, command, environment, working_directory):
        self.calls.append((command, environment, working_directory))
        if self.error is not None:
            raise self.error
        return self.process


class RecordingDestroyer(ProcessDestroyer):
    def __init__(self):
        self.processes: set = set()
        self.events: list[tuple[str, object]] = []

    def add(self, process):
        self.events.append(("add", process))
        self.processes.add(process)
        return True

    def remove(self, process):
        self.events.append(("remove", process))
        if process in self.processes:
            self.processes.discard(process)
            return True
        return False

    def __len__(self):
        return len(self.processes)


class RecordingStreamHandler(ExecuteStreamHandler):
    """Records the calls made by the executor without pumping anything."""

    def __init__(self, wiring_error: Exception | None = None, stop_error: Exception | None = None):
        self.calls: list[str] = []
        self.wiring_error = wiring_error
        self.stop_error = stop_error

    def set_process_input_stream(self, stream):
        self.calls.append("input")

    def set_process_output_stream(self, stream):
        self.calls.append("output")
        if self.wiring_error is not None:
            raise self.wiring_error

    def set_process_error_stream(self, stream):
        self.calls.append("error")

    def start(self):
        self.calls.append("start")

    def stop(self):
        self.calls.append("stop")
        if self.stop_error is not None:
            raise self.stop_error


@pytest.fixture
def fake_process():
    return FakeProcess()


@pytest.fixture
def destroyer():
    return RecordingDestroyer()


@pytest.fixture
def stream_handler():
    return RecordingStreamHandler()
