"""
Run-scoped event log.

Every session appends to one shared EventLog. Appends are serialised behind a
lock; the orchestrator flushes the whole log to a single file once all sessions
have terminated. Each event is also mirrored to the `orderwindow.events` logger
so the console shows it immediately.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable
from zoneinfo import ZoneInfo

from orderwindow.domain.models import EventLevel, LogEvent

EVENTS_LOGGER_NAME = "orderwindow.events"

_LEVEL_MAP = {
    EventLevel.INFO: logging.INFO,
    EventLevel.SUCCESS: logging.INFO,
    EventLevel.ERROR: logging.ERROR,
}

_ANSI_RESET = "\033[0m"
_ANSI_COLOURS = {
    EventLevel.INFO: "\033[36m",  # cyan
    EventLevel.SUCCESS: "\033[32m",  # green
    EventLevel.ERROR: "\033[31m",  # red
}


class ColorFormatter(logging.Formatter):
    """Colour console lines by event level (falls back to the log level)."""

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, *, use_colour: bool = True) -> None:
        super().__init__(fmt, datefmt)
        self.use_colour = use_colour

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        if not self.use_colour:
            return msg
        level = getattr(record, "event_level", None)
        if level is None:
            level = EventLevel.ERROR if record.levelno >= logging.ERROR else None
        colour = _ANSI_COLOURS.get(level) if level is not None else None
        return f"{colour}{msg}{_ANSI_RESET}" if colour else msg


class EventLog:
    def __init__(
        self,
        tz: ZoneInfo,
        *,
        now: Callable[[], datetime] | None = None,
        mirror: logging.Logger | None = None,
    ) -> None:
        self.tz = tz
        self._now = now or (lambda: datetime.now(tz=self.tz))
        self._mirror = mirror if mirror is not None else logging.getLogger(EVENTS_LOGGER_NAME)
        self._events: list[LogEvent] = []
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._flushed_path: Path | None = None
        self._flushed = False

    def record(self, level: EventLevel | str, account_key: str | None, message: str) -> LogEvent:
        level = EventLevel(level)
        with self._lock:
            event = LogEvent(timestamp=self._now(), level=level, account_key=account_key, message=message)
            self._events.append(event)
        self._mirror.log(_LEVEL_MAP[level], event.format(), extra={"event_level": level})
        return event

    def info(self, account_key: str | None, message: str) -> LogEvent:
        return self.record(EventLevel.INFO, account_key, message)

    def success(self, account_key: str | None, message: str) -> LogEvent:
        return self.record(EventLevel.SUCCESS, account_key, message)

    def error(self, account_key: str | None, message: str) -> LogEvent:
        return self.record(EventLevel.ERROR, account_key, message)

    def events(self) -> list[LogEvent]:
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def render(self) -> str:
        return "\n".join(e.format() for e in self.events())

    @property
    def flushed(self) -> bool:
        return self._flushed

    def flush(self, log_dir: str | Path, *, failed: bool = False) -> Path | None:
        """
        Write all events to one new file under `log_dir`.

        Only the first call writes; later calls (from other exit paths) return
        the path of that first write.
        """
        with self._flush_lock:
            if self._flushed:
                return self._flushed_path
            self._flushed = True

            directory = Path(log_dir)
            directory.mkdir(parents=True, exist_ok=True)
            blob = self.render()

            stamp = datetime.now(tz=self.tz).strftime("%Y%m%d-%H%M%S-%f")
            suffix = "-error" if failed else ""
            base = f"trade-{stamp}-{os.getpid()}{suffix}"
            attempt = 0
            while True:
                name = f"{base}.log" if attempt == 0 else f"{base}-{attempt}.log"
                path = directory / name
                try:
                    with path.open("x", encoding="utf-8") as f:
                        f.write(blob)
                    break
                except FileExistsError:
                    attempt += 1

            self._flushed_path = path
            logging.getLogger(__name__).info("Saved %d event(s) to %s", len(self), path)
            return path
