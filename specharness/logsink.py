"""Per-level log files opened on demand.

Each :class:`LogLevel` owns at most one append-mode handle, opened on the
first write at that level. :class:`LogSinkHandler` bridges records from the
standard :mod:`logging` tree into the sink.
"""

from __future__ import annotations

import enum
import logging
import typing as typ

if typ.TYPE_CHECKING:
    import types
    from pathlib import Path

_logger = logging.getLogger(__name__)


class LogLevel(enum.Enum):
    """The closed set of levels the sink writes."""

    ERROR = "error"
    FATAL = "fatal"
    INFO = "info"
    DEBUG = "debug"

    @property
    def filename(self) -> str:
        """Return the file name used for this level."""
        return f"{self.value}.log"

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> LogLevel:
        """Map a standard logging record onto a sink level."""
        if record.levelno >= logging.CRITICAL:
            return cls.FATAL
        if record.levelno >= logging.ERROR:
            return cls.ERROR
        if record.levelno >= logging.INFO:
            return cls.INFO
        return cls.DEBUG


ECHO_LEVELS = frozenset({LogLevel.ERROR, LogLevel.FATAL})


class LogSink:
    """Registry of lazily opened, append-only log files keyed by level."""

    def __init__(
        self,
        directory: Path,
        *,
        echo: typ.IO[str] | None = None,
    ) -> None:
        """Create the log directory and touch one file per level."""
        self.directory = directory
        self._echo = echo
        self._handles: dict[LogLevel, typ.IO[str]] = {}
        self._closed = False
        directory.mkdir(parents=True, exist_ok=True)
        for level in LogLevel:
            self.path_for(level).touch()

    def path_for(self, level: LogLevel) -> Path:
        """Return the file backing ``level``."""
        return self.directory / level.filename

    @property
    def open_levels(self) -> frozenset[LogLevel]:
        """Return the levels that currently hold an open handle."""
        return frozenset(self._handles)

    def handle_for(self, level: LogLevel) -> typ.IO[str]:
        """Return the handle for ``level``, opening it on first use."""
        if self._closed:
            msg = f"log sink at {self.directory} is closed"
            raise ValueError(msg)
        handle = self._handles.get(level)
        if handle is None:
            handle = self.path_for(level).open("a", encoding="utf-8")
            self._handles[level] = handle
        return handle

    def write(self, level: LogLevel | str, message: str) -> None:
        """Append ``message`` as one line to the file for ``level``."""
        resolved = LogLevel(level)
        self.handle_for(resolved).write(f"{message}\n")
        if self._echo is not None and resolved in ECHO_LEVELS:
            self._echo.write(f"{message}\n")

    def error(self, message: str) -> None:
        """Write an error line."""
        self.write(LogLevel.ERROR, message)

    def fatal(self, message: str) -> None:
        """Write a fatal line."""
        self.write(LogLevel.FATAL, message)

    def info(self, message: str) -> None:
        """Write an informational line."""
        self.write(LogLevel.INFO, message)

    def debug(self, message: str) -> None:
        """Write a debug line."""
        self.write(LogLevel.DEBUG, message)

    def flush(self) -> None:
        """Flush every open handle."""
        for handle in self._handles.values():
            handle.flush()
        if self._echo is not None:
            self._echo.flush()

    def close(self) -> None:
        """Flush and close every open handle."""
        if self._closed:
            return
        self.flush()
        for handle in self._handles.values():
            handle.close()
        self._handles.clear()
        self._closed = True

    def __enter__(self) -> LogSink:
        """Return the sink for use in a ``with`` block."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        """Release every handle on scope exit."""
        self.close()


class LogSinkHandler(logging.Handler):
    """Route standard logging records into a :class:`LogSink`."""

    def __init__(self, sink: LogSink, level: int = logging.DEBUG) -> None:
        """Bind the handler to ``sink``."""
        super().__init__(level)
        self.sink = sink
        self.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )

    def emit(self, record: logging.LogRecord) -> None:
        """Write the formatted record to the matching level file."""
        # Sink write failures propagate instead of going through handleError.
        self.sink.write(LogLevel.from_record(record), self.format(record))


def attach_sink(sink: LogSink, logger_name: str = "specharness") -> LogSinkHandler:
    """Attach a handler for ``sink`` to ``logger_name`` and return it."""
    handler = LogSinkHandler(sink)
    target = logging.getLogger(logger_name)
    target.addHandler(handler)
    if target.level == logging.NOTSET or target.level > logging.DEBUG:
        target.setLevel(logging.DEBUG)
    _logger.debug("log sink attached at %s", sink.directory)
    return handler


def detach_sink(handler: LogSinkHandler, logger_name: str = "specharness") -> None:
    """Remove ``handler`` from ``logger_name`` and close its sink."""
    logging.getLogger(logger_name).removeHandler(handler)
    handler.sink.close()
