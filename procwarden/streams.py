"""Stream handling — connects a child's stdin/stdout/stderr to the caller.

A stream handler is given the three process streams before ``start()``.
``start()`` begins pumping in background threads and returns at once;
``stop()`` blocks until the pumping is over. Pumping output continuously
matters: a child that fills its pipe buffer blocks forever otherwise.

Usage:
    out = io.BytesIO()
    handler = PumpStreamHandler(out=out, err=LoggingSink(logger))
    executor = DefaultExecutor(stream_handler=handler)
"""

from __future__ import annotations

import logging
import sys
import threading
from abc import ABC, abstractmethod
from typing import IO, Any

from procwarden.config import settings
from procwarden.exceptions import StreamError

_logger = logging.getLogger(__name__)


class ExecuteStreamHandler(ABC):
    """Binds the standard streams of a process to sinks and sources."""

    @abstractmethod
    def set_process_input_stream(self, stream: IO[bytes] | None) -> None:
        """The stream the child reads from (its stdin)."""
        ...

    @abstractmethod
    def set_process_output_stream(self, stream: IO[bytes] | None) -> None:
        """The stream the child writes its stdout to."""
        ...

    @abstractmethod
    def set_process_error_stream(self, stream: IO[bytes] | None) -> None:
        """The stream the child writes its stderr to."""
        ...

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        """Block until pumping has finished. May raise StreamError."""
        ...


class StreamPumper:
    """Copies one stream to another on a background thread until EOF."""

    def __init__(
        self,
        source: IO[bytes],
        sink: IO[bytes],
        name: str,
        close_when_exhausted: bool = False,
        buffer_size: int | None = None,
    ) -> None:
        self._source = source
        self._sink = sink
        self._close_when_exhausted = close_when_exhausted
        self._buffer_size = buffer_size or settings.pump_buffer_size
        self.error: BaseException | None = None
        self.thread = threading.Thread(target=self.run, name=name, daemon=True)

    def start(self) -> None:
        self.thread.start()

    def join(self, timeout_s: float | None = None) -> bool:
        """Wait for the pumper. Returns False if it is still running."""
        self.thread.join(timeout_s)
        return not self.thread.is_alive()

    def run(self) -> None:
        read = getattr(self._source, "read1", self._source.read)
        try:
            while True:
                chunk = read(self._buffer_size)
                if not chunk:
                    break
                self._write_all(chunk)
            self._sink.flush()
        except (OSError, ValueError) as e:
            # ValueError: the other end was closed under us
            self.error = e
            _logger.debug("Pumping on %s stopped: %s", self.thread.name, e)
        finally:
            if self._close_when_exhausted:
                try:
                    self._sink.close()
                except (OSError, ValueError) as e:
                    _logger.debug("Closing sink of %s failed: %s", self.thread.name, e)

    def _write_all(self, chunk: bytes) -> None:
        # Raw pipes may accept only part of a chunk
        view = memoryview(chunk)
        while view:
            written = self._sink.write(view)
            if not written:
                break
            view = view[written:]


class PumpStreamHandler(ExecuteStreamHandler):
    """Copies stdout and stderr of the child to the given sinks.

    Sinks default to this process's own stdout and stderr. When ``input``
    is given it is pumped into the child's stdin, which is closed once the
    input is exhausted; without it the child's stdin is closed immediately.
    """

    def __init__(
        self,
        out: IO[bytes] | None = None,
        err: IO[bytes] | None = None,
        input: IO[bytes] | None = None,
        stop_timeout_s: float | None = None,
    ) -> None:
        self._out = out if out is not None else _std_sink(sys.stdout)
        self._err = err if err is not None else _std_sink(sys.stderr)
        self._input = input
        self._stop_timeout_s = stop_timeout_s
        self._output_pumper: StreamPumper | None = None
        self._error_pumper: StreamPumper | None = None
        self._input_pumper: StreamPumper | None = None

    @property
    def out(self) -> IO[bytes]:
        return self._out

    @property
    def err(self) -> IO[bytes]:
        return self._err

    @property
    def stop_timeout_s(self) -> float | None:
        return self._stop_timeout_s

    def set_process_output_stream(self, stream: IO[bytes] | None) -> None:
        self._output_pumper = None
        if stream is not None:
            self._output_pumper = StreamPumper(stream, self._out, name="procwarden-stdout")

    def set_process_error_stream(self, stream: IO[bytes] | None) -> None:
        self._error_pumper = None
        if stream is not None:
            self._error_pumper = StreamPumper(stream, self._err, name="procwarden-stderr")

    def set_process_input_stream(self, stream: IO[bytes] | None) -> None:
        self._input_pumper = None
        if stream is None:
            return
        if self._input is not None:
            self._input_pumper = StreamPumper(
                self._input, stream, name="procwarden-stdin", close_when_exhausted=True,
            )
            return
        try:
            stream.close()
        except OSError as e:
            _logger.debug("Closing the process input stream failed: %s", e)

    def start(self) -> None:
        for pumper in self._pumpers():
            pumper.start()

    def stop(self) -> None:
        errors: list[str] = []
        for pumper in (self._output_pumper, self._error_pumper):
            if pumper is None:
                continue
            if not pumper.join(self._stop_timeout_s):
                errors.append(f"The stop timeout of {self._stop_timeout_s}s was exceeded for {pumper.thread.name}")

        # The input pumper may block on a source that never ends; it dies
        # with the child's stdin, so it is not waited for.
        if self._input_pumper is not None and self._input_pumper.thread.is_alive():
            _logger.debug("Input pumper still running at stop")

        for sink in (self._out, self._err):
            try:
                sink.flush()
            except (OSError, ValueError) as e:
                errors.append(f"Flushing {sink!r} failed: {e}")

        failed = next(
            (p.error for p in self._pumpers() if p.error is not None),
            None,
        )
        if errors:
            raise StreamError("; ".join(errors))
        if failed is not None:
            raise StreamError(f"Pumping process streams failed: {failed}") from failed

    def _pumpers(self) -> list[StreamPumper]:
        return [p for p in (self._output_pumper, self._error_pumper, self._input_pumper) if p is not None]


class LoggingSink:
    """A binary sink that logs every complete line it receives.

    Trailing partial output is logged on ``flush()`` or ``close()``.
    """

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO, encoding: str = "utf-8") -> None:
        self._logger = logger or _logger
        self._level = level
        self._encoding = encoding
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self.closed = False

    def write(self, data: bytes) -> int:
        with self._lock:
            self._buffer.extend(data)
            while True:
                newline = self._buffer.find(b"\n")
                if newline < 0:
                    break
                line = bytes(self._buffer[:newline])
                del self._buffer[:newline + 1]
                self._log(line)
        return len(data)

    def flush(self) -> None:
        with self._lock:
            if self._buffer:
                line = bytes(self._buffer)
                self._buffer.clear()
                self._log(line)

    def close(self) -> None:
        self.flush()
        self.closed = True

    def _log(self, line: bytes) -> None:
        text = line.decode(self._encoding, errors="replace").rstrip("\r")
        self._logger.log(self._level, "%s", text)


def _std_sink(stream: Any) -> IO[bytes]:
    # Text streams expose their binary layer as .buffer
    return getattr(stream, "buffer", stream)
