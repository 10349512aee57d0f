"""Process destroyers — kill orphaned children when the interpreter exits.

The executor registers every live process with its destroyer before
waiting on it and unregisters it afterwards, so the registry only ever
holds processes that are still being supervised.
"""

from __future__ import annotations

import atexit
import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from functools import lru_cache

from procwarden.launcher import destroy_process

_logger = logging.getLogger(__name__)


class ProcessDestroyer(ABC):
    """A set of processes to destroy on abnormal termination."""

    @abstractmethod
    def add(self, process: subprocess.Popen) -> bool:
        """Track ``process``. Returns False if it was not added."""
        ...

    @abstractmethod
    def remove(self, process: subprocess.Popen) -> bool:
        """Stop tracking ``process``. Returns False if it was not tracked."""
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...


class ShutdownHookProcessDestroyer(ProcessDestroyer):
    """Destroys all tracked processes from an ``atexit`` hook.

    The hook is only registered while at least one process is tracked.
    """

    def __init__(self) -> None:
        self._processes: set[subprocess.Popen] = set()
        self._lock = threading.Lock()
        self._hook_registered = False
        self._running = False

    @property
    def is_added_as_shutdown_hook(self) -> bool:
        return self._hook_registered

    def add(self, process: subprocess.Popen) -> bool:
        with self._lock:
            if self._running:
                return False
            if not self._processes:
                self._add_shutdown_hook()
            self._processes.add(process)
            return True

    def remove(self, process: subprocess.Popen) -> bool:
        with self._lock:
            if process not in self._processes:
                return False
            self._processes.discard(process)
            if not self._processes:
                self._remove_shutdown_hook()
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)

    def __contains__(self, process: object) -> bool:
        with self._lock:
            return process in self._processes

    def run(self) -> None:
        """Destroy every tracked process."""
        with self._lock:
            self._running = True
            processes = list(self._processes)
        try:
            for process in processes:
                try:
                    destroy_process(process)
                except OSError as e:
                    _logger.warning("Could not destroy process %s: %s", getattr(process, "pid", "?"), e)
        finally:
            with self._lock:
                self._running = False

    def _add_shutdown_hook(self) -> None:
        if not self._hook_registered:
            atexit.register(self.run)
            self._hook_registered = True

    def _remove_shutdown_hook(self) -> None:
        if self._hook_registered and not self._running:
            atexit.unregister(self.run)
            self._hook_registered = False


@lru_cache(maxsize=1)
def default_destroyer() -> ShutdownHookProcessDestroyer:
    """The process-wide destroyer, created on first use."""
    return ShutdownHookProcessDestroyer()
