"""DefaultExecutor — runs one external process to a single outcome.

The executor coordinates the collaborators around a process:
  - a stream handler that pumps stdin/stdout/stderr
  - an optional watchdog that kills the process after a timeout
  - an optional destroyer that kills it if the interpreter exits
and guarantees that pipes are closed, pumping threads are joined and the
destroyer registration is undone on every exit path.

Usage:
    from procwarden.executor import DefaultExecutor, ExecutorConfig

    executor = DefaultExecutor.from_config(ExecutorConfig(timeout_s=10))
    exit_value = executor.execute(["git", "status"])

    handler = DefaultExecuteResultHandler()
    executor.execute(["make"], handler=handler)  # returns once launched
    handler.wait_for()
"""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from pydantic import BaseModel

from procwarden.command import CommandLine
from procwarden.config import ProcwardenSettings, settings
from procwarden.destroyer import ProcessDestroyer, default_destroyer
from procwarden.exceptions import ExecuteError, WorkingDirectoryError
from procwarden.launcher import CommandLauncher, SubprocessLauncher, destroy_process
from procwarden.results import ExecuteResultHandler
from procwarden.streams import ExecuteStreamHandler, PumpStreamHandler
from procwarden.types import INVALID_EXIT_VALUE, Environment, ExitValues
from procwarden.watchdog import ExecuteWatchdog

_logger = logging.getLogger(__name__)


class ExecutorConfig(BaseModel):
    """Configuration for a DefaultExecutor."""

    working_directory: Path | None = Path(".")
    exit_values: list[int] | None = []
    timeout_s: float | None = None
    stream_stop_timeout_s: float | None = None
    destroy_on_exit: bool = False

    @classmethod
    def from_settings(cls, source: ProcwardenSettings | None = None) -> ExecutorConfig:
        source = source or settings
        return cls(
            working_directory=source.working_directory,
            timeout_s=source.timeout_s,
            stream_stop_timeout_s=source.stream_stop_timeout_s,
            destroy_on_exit=source.destroy_on_exit,
        )


class _FirstError:
    """Holds the first cleanup error of one execution; later ones are logged."""

    __slots__ = ("error",)

    def __init__(self) -> None:
        self.error: Exception | None = None

    def record(self, error: Exception) -> None:
        if self.error is None:
            self.error = error
        else:
            _logger.warning("Discarding cleanup error after an earlier one: %s", error)


class DefaultExecutor:
    """Executes a command, synchronously or on a worker thread."""

    def __init__(
        self,
        stream_handler: ExecuteStreamHandler | None = None,
        watchdog: ExecuteWatchdog | None = None,
        process_destroyer: ProcessDestroyer | None = None,
        working_directory: Path | str | None = ".",
        launcher: CommandLauncher | None = None,
    ) -> None:
        self._stream_handler = stream_handler or PumpStreamHandler()
        self._watchdog = watchdog
        self._process_destroyer = process_destroyer
        self._working_directory = Path(working_directory) if working_directory is not None else None
        self._launcher = launcher or SubprocessLauncher()
        self._exit_values: list[int] | None = []
        self._executor_thread: threading.Thread | None = None

    @classmethod
    def from_config(
        cls,
        config: ExecutorConfig,
        destroyer: ProcessDestroyer | None = None,
        launcher: CommandLauncher | None = None,
    ) -> DefaultExecutor:
        """Build an executor with the collaborators ``config`` asks for."""
        if destroyer is None and config.destroy_on_exit:
            destroyer = default_destroyer()
        executor = cls(
            stream_handler=PumpStreamHandler(stop_timeout_s=config.stream_stop_timeout_s),
            watchdog=ExecuteWatchdog(config.timeout_s) if config.timeout_s is not None else None,
            process_destroyer=destroyer,
            working_directory=config.working_directory,
            launcher=launcher,
        )
        executor.set_exit_values(config.exit_values)
        return executor

    # ── Collaborators ──────────────────────────────────────────────

    @property
    def stream_handler(self) -> ExecuteStreamHandler:
        return self._stream_handler

    @stream_handler.setter
    def stream_handler(self, handler: ExecuteStreamHandler) -> None:
        self._stream_handler = handler

    @property
    def watchdog(self) -> ExecuteWatchdog | None:
        return self._watchdog

    @watchdog.setter
    def watchdog(self, watchdog: ExecuteWatchdog | None) -> None:
        self._watchdog = watchdog

    @property
    def process_destroyer(self) -> ProcessDestroyer | None:
        return self._process_destroyer

    @process_destroyer.setter
    def process_destroyer(self, destroyer: ProcessDestroyer | None) -> None:
        self._process_destroyer = destroyer

    @property
    def working_directory(self) -> Path | None:
        return self._working_directory

    @working_directory.setter
    def working_directory(self, directory: Path | str | None) -> None:
        self._working_directory = Path(directory) if directory is not None else None

    @property
    def launcher(self) -> CommandLauncher:
        return self._launcher

    @property
    def executor_thread(self) -> threading.Thread | None:
        """The worker of the most recent asynchronous execution."""
        return self._executor_thread

    # ── Exit value policy ──────────────────────────────────────────

    @property
    def exit_values(self) -> list[int] | None:
        return list(self._exit_values) if self._exit_values is not None else None

    def set_exit_value(self, value: int) -> None:
        self.set_exit_values([value])

    def set_exit_values(self, values: ExitValues | None) -> None:
        """Exit values counted as success.

        ``None`` treats every exit value as success; an empty sequence
        defers to the launcher's convention.
        """
        self._exit_values = list(values) if values is not None else None

    def is_failure(self, exit_value: int) -> bool:
        if self._exit_values is None:
            return False
        if not self._exit_values:
            return self._launcher.is_failure(exit_value)
        return exit_value not in self._exit_values

    # ── Execution ──────────────────────────────────────────────────

    def execute(
        self,
        command: CommandLine | str | Sequence[str],
        environment: Environment | None = None,
        handler: ExecuteResultHandler | None = None,
    ) -> int | None:
        """Run ``command`` and return its exit value.

        With a ``handler`` the process runs on a worker thread instead:
        this call returns as soon as the launch has been attempted and the
        outcome is reported to the handler.
        """
        command = CommandLine.coerce(command)
        self._check_working_directory()

        if handler is None:
            return self._execute_internal(command, environment, self._working_directory, self._stream_handler)

        if self._watchdog is not None:
            self._watchdog.set_process_not_started()

        started = threading.Event()
        working_directory = self._working_directory
        streams = self._stream_handler

        def run() -> None:
            exit_value = INVALID_EXIT_VALUE
            try:
                exit_value = self._execute_internal(command, environment, working_directory, streams, started)
            except ExecuteError as e:
                handler.on_process_failed(e)
            except Exception as e:
                handler.on_process_failed(ExecuteError("Execution failed", exit_value, e))
            else:
                handler.on_process_complete(exit_value)

        self._executor_thread = self._create_thread(run, "procwarden-executor")
        self._executor_thread.start()

        # Returns once the worker has tried to launch the process
        started.wait()
        return None

    def launch(
        self,
        command: CommandLine,
        environment: Environment | None,
        working_directory: Path | None,
    ) -> subprocess.Popen:
        if working_directory is not None and not working_directory.exists():
            raise WorkingDirectoryError(f"{working_directory} doesn't exist.")
        return self._launcher.launch(command, environment, working_directory)

    def _create_thread(self, target: Callable[[], None], name: str) -> threading.Thread:
        return threading.Thread(target=target, name=name)

    def _check_working_directory(self) -> None:
        if self._working_directory is not None and not self._working_directory.exists():
            raise WorkingDirectoryError(f"{self._working_directory} doesn't exist.")

    def _execute_internal(
        self,
        command: CommandLine,
        environment: Environment | None,
        working_directory: Path | None,
        streams: ExecuteStreamHandler,
        started: threading.Event | None = None,
    ) -> int:
        first_error = _FirstError()

        try:
            process = self.launch(command, environment, working_directory)
        finally:
            if started is not None:
                started.set()

        try:
            streams.set_process_input_stream(process.stdin)
            streams.set_process_output_stream(process.stdout)
            streams.set_process_error_stream(process.stderr)
        except Exception:
            destroy_process(process)
            self._close_process_streams(process, _FirstError())
            raise

        streams.start()

        destroyer = self._process_destroyer
        watchdog = self._watchdog
        try:
            watching = False
            exit_value: int | None = None
            try:
                if destroyer is not None:
                    destroyer.add(process)
                if watchdog is not None:
                    watchdog.start(process)
                    watching = True

                exit_value = self._wait_for(process)
                _logger.debug("Process %s exited with %s", process.pid, exit_value)
            finally:
                if exit_value is None:
                    # Never got to a normal exit: the process must not outlive the call
                    destroy_process(process)
                    process.wait()

                # A watchdog that refused this process may be busy with another one
                if watching:
                    watchdog.stop()

                try:
                    streams.stop()
                except Exception as e:
                    first_error.record(e)

                self._close_process_streams(process, first_error)

            if first_error.error is not None:
                raise first_error.error

            if watchdog is not None:
                watchdog.check_exception()

            if self.is_failure(exit_value):
                raise ExecuteError(f"Process exited with an error: {exit_value}", exit_value)
            return exit_value
        finally:
            if destroyer is not None:
                destroyer.remove(process)

    def _wait_for(self, process: subprocess.Popen) -> int:
        try:
            return process.wait()
        except KeyboardInterrupt:
            # Interruption means cancel: kill the child, then reap it
            _logger.warning("Interrupted while waiting for process %s, destroying it", process.pid)
            destroy_process(process)
            return process.wait()

    @staticmethod
    def _close_process_streams(process: subprocess.Popen, first_error: _FirstError) -> None:
        for stream in (process.stdout, process.stdin, process.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError as e:
                first_error.record(e)
