"""Levelled logging to stdout and to a log file rotated every UTC hour."""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from enum import IntEnum
from typing import IO, Callable, Optional

MAX_MESSAGE_LEN = 2047
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class LogLevel(IntEnum):
    """Minimum severity that a log writes."""

    DEBUG = 0
    INFO = 1
    ERROR = 2

    @classmethod
    def from_string(cls, text: str) -> "LogLevel":
        """Map "debug" and "error" to their levels; anything else is INFO."""
        if text == "debug":
            return cls.DEBUG
        if text == "error":
            return cls.ERROR
        return cls.INFO


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HourlyLog:
    """Writes log lines to a stream and to a file whose name is a strftime pattern.

    The file is reopened whenever the hour of the clock changes.
    """

    def __init__(
        self,
        level: LogLevel,
        path_format: str,
        clock: Optional[Callable[[], datetime]] = None,
        stream: Optional[IO[str]] = None,
    ) -> None:
        self.level = LogLevel(level)
        self.path_format = path_format
        self._clock = clock or _utc_now
        self._stream = stream
        self._file: Optional[IO[str]] = None
        self._hour: Optional[int] = None
        self._open(self._clock())

    def _open(self, moment: datetime) -> None:
        path = moment.strftime(self.path_format)
        if self._file is not None:
            self._file.close()
            self._file = None
        self._file = open(path, "a", encoding="utf-8")
        self._hour = moment.hour

    def rotate(self) -> None:
        """Reopen the log file if the hour has changed since it was opened."""
        moment = self._clock()
        if moment.hour == self._hour:
            return
        try:
            self._open(moment)
        except OSError as exc:
            print(f"failed to open log file: {exc.filename}", file=sys.stderr)

    def close(self) -> None:
        """Close the log file; later lines still go to the stream."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "HourlyLog":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _write(self, label: str, message: str, args: tuple) -> None:
        self.rotate()
        moment = self._clock()
        text = message % args if args else message
        line = f"[{label}] {moment.strftime(TIMESTAMP_FORMAT)} {text[:MAX_MESSAGE_LEN]}\n"
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(line)
        stream.flush()
        if self._file is not None:
            self._file.write(line)
            self._file.flush()

    def debug(self, message: str, *args) -> None:
        if self.level > LogLevel.DEBUG:
            return
        self._write("DEBUG", message, args)

    def info(self, message: str, *args) -> None:
        if self.level > LogLevel.INFO:
            return
        self._write("INFO", message, args)

    def error(self, message: str, *args) -> None:
        self._write("ERROR", message, args)