"""Result handlers for asynchronous execution.

Callbacks run on the executor's worker thread, never on the thread that
called ``execute``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from procwarden.exceptions import ExecuteError


class ExecuteResultHandler(ABC):
    """Receives the single outcome of an asynchronous execution."""

    @abstractmethod
    def on_process_complete(self, exit_value: int) -> None:
        ...

    @abstractmethod
    def on_process_failed(self, error: ExecuteError) -> None:
        ...


class DefaultExecuteResultHandler(ExecuteResultHandler):
    """Stores the outcome and lets other threads wait for it."""

    def __init__(self) -> None:
        self._done = threading.Event()
        self._exit_value: int | None = None
        self._exception: ExecuteError | None = None

    def on_process_complete(self, exit_value: int) -> None:
        self._exit_value = exit_value
        self._exception = None
        self._done.set()

    def on_process_failed(self, error: ExecuteError) -> None:
        self._exit_value = error.exit_value
        self._exception = error
        self._done.set()

    @property
    def has_result(self) -> bool:
        return self._done.is_set()

    @property
    def exit_value(self) -> int:
        if not self.has_result:
            raise RuntimeError("The process has not exited yet therefore no result is available")
        return self._exit_value

    @property
    def exception(self) -> ExecuteError | None:
        if not self.has_result:
            raise RuntimeError("The process has not exited yet therefore no result is available")
        return self._exception

    def wait_for(self, timeout_s: float | None = None) -> bool:
        """Block until a result is available. False on timeout."""
        return self._done.wait(timeout_s)
