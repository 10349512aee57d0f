"""Watchdog — kills a process that runs longer than allowed.

One watchdog observes one process at a time. The clock starts when the
executor hands the process over with ``start()``; ``stop()`` disarms it.
A kill is observed by the executor as an ordinary process exit.

Usage:
    watchdog = ExecuteWatchdog(timeout_s=30)
    executor = DefaultExecutor(watchdog=watchdog)
    try:
        executor.execute(["make", "test"])
    except ExecuteError:
        if watchdog.killed_process():
            print("timed out")
"""

from __future__ import annotations

import logging
import subprocess
import threading

from procwarden.exceptions import WatchdogError
from procwarden.launcher import destroy_process

_logger = logging.getLogger(__name__)


class ExecuteWatchdog:
    """Destroys a process once its timeout has elapsed."""

    INFINITE_TIMEOUT: float | None = None

    def __init__(self, timeout_s: float | None = INFINITE_TIMEOUT) -> None:
        if timeout_s is not None and timeout_s <= 0:
            raise ValueError("timeout_s must be positive, or None for no timeout")
        self._timeout_s = timeout_s
        self._cond = threading.Condition()
        self._process: subprocess.Popen | None = None
        self._watch = False
        self._killed = False
        self._caught: Exception | None = None
        self._process_started = False
        self._stopped = threading.Event()
        self._timer: threading.Thread | None = None

    @property
    def timeout_s(self) -> float | None:
        return self._timeout_s

    @property
    def process_started(self) -> bool:
        return self._process_started

    def set_process_not_started(self) -> None:
        with self._cond:
            self._process_started = False

    def start(self, process: subprocess.Popen) -> None:
        """Watch ``process``; the timeout counts from now."""
        with self._cond:
            if self._process is not None:
                raise RuntimeError("Watchdog is already watching a process")
            self._caught = None
            self._killed = False
            self._watch = True
            self._process = process
            self._process_started = True
            self._stopped = threading.Event()
            self._cond.notify_all()

            if self._timeout_s is None:
                return
            self._timer = threading.Thread(
                target=self._run,
                args=(self._stopped,),
                name="procwarden-watchdog",
                daemon=True,
            )
            self._timer.start()

    def stop(self) -> None:
        """Disarm the watchdog. Safe to call after it has fired."""
        with self._cond:
            self._stopped.set()
            self._cleanup()

    def check_exception(self) -> None:
        """Raise if terminating the process went wrong."""
        if self._caught is not None:
            raise WatchdogError(f"Watchdog failed to destroy the process: {self._caught}") from self._caught

    def is_watching(self) -> bool:
        self._ensure_started()
        return self._watch

    def killed_process(self) -> bool:
        """Whether the last watched process was killed by this watchdog."""
        return self._killed

    def destroy_process(self) -> None:
        """Kill the watched process now, as if the timeout had elapsed."""
        self._ensure_started()
        self._timeout_occurred()

    def _run(self, stopped: threading.Event) -> None:
        if stopped.wait(self._timeout_s):
            return
        self._timeout_occurred(stopped)

    def _timeout_occurred(self, stopped: threading.Event | None = None) -> None:
        with self._cond:
            # A timer that lost the race with stop() must not touch a later process
            if stopped is not None and stopped.is_set():
                return
            try:
                process = self._process
                if self._watch and process is not None and process.poll() is None:
                    _logger.info("Process %s exceeded its timeout of %ss, killing it", process.pid, self._timeout_s)
                    self._killed = True
                    destroy_process(process)
            except Exception as e:
                self._caught = e
                _logger.warning("Watchdog could not destroy the process: %s", e)
            finally:
                self._cleanup()

    def _ensure_started(self) -> None:
        with self._cond:
            while not self._process_started:
                self._cond.wait()

    def _cleanup(self) -> None:
        self._watch = False
        self._process = None
