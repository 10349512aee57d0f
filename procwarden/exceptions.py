"""Custom exception hierarchy for procwarden."""

from __future__ import annotations


class ProcwardenError(Exception):
    """Base for all procwarden errors."""


class WorkingDirectoryError(ProcwardenError):
    """The working directory does not exist."""


class LaunchError(ProcwardenError):
    """The process could not be created."""


class StreamError(ProcwardenError):
    """Pumping the process streams failed."""


class WatchdogError(ProcwardenError):
    """The watchdog failed while terminating a process."""


class ExecuteError(ProcwardenError):
    """A process failed, carrying its exit value."""

    def __init__(self, message: str, exit_value: int, cause: BaseException | None = None):
        super().__init__(message)
        self.exit_value = exit_value
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        text = f"{self.args[0]} (Exit value: {self.exit_value})"
        if self.__cause__ is not None:
            text += f" caused by {self.__cause__!r}"
        return text
