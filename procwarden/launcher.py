"""Process launching — turns a CommandLine into a live OS process.

The launcher is the only place that knows how processes are created.
Everything above it works against the returned handle: ``stdin``,
``stdout``, ``stderr``, ``pid``, ``poll()``, ``wait()`` and ``kill()``.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from procwarden.command import CommandLine
from procwarden.exceptions import LaunchError, WorkingDirectoryError
from procwarden.types import Environment

_logger = logging.getLogger(__name__)


class CommandLauncher(ABC):
    """Creates processes for the executor."""

    @abstractmethod
    def launch(
        self,
        command: CommandLine,
        environment: Environment | None,
        working_directory: Path | None,
    ) -> subprocess.Popen:
        """Start a process with piped stdin, stdout and stderr."""
        ...

    def is_failure(self, exit_value: int) -> bool:
        """Platform convention for failure: anything but zero."""
        return exit_value != 0


class SubprocessLauncher(CommandLauncher):
    """Launches processes with subprocess.Popen."""

    def launch(
        self,
        command: CommandLine,
        environment: Environment | None,
        working_directory: Path | None,
    ) -> subprocess.Popen:
        # The directory may have vanished since the executor checked it
        if working_directory is not None and not Path(working_directory).exists():
            raise WorkingDirectoryError(f"{working_directory} doesn't exist.")

        argv = command.to_strings()
        try:
            # Unbuffered pipes: closing a raw pipe does not wait for a pumper
            # blocked in read(), as a buffered reader's close() would.
            process = subprocess.Popen(
                argv,
                bufsize=0,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=working_directory,
                env=dict(environment) if environment is not None else None,
            )
        except OSError as e:
            raise LaunchError(f"Cannot run program {argv[0]!r}: {e}") from e

        _logger.debug("Launched %s as pid %d", command, process.pid)
        return process


def destroy_process(process: subprocess.Popen) -> None:
    """Forcibly kill a process. Safe to call repeatedly and concurrently."""
    if process.poll() is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass  # exited between poll() and kill()
