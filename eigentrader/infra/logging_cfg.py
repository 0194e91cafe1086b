"""
Logging for the trading agent.

Every component logs one JSON object per line through the `eigentrader`
logger (`log.info(dumps({"event": ..., ...}))`). This module wires that logger:
a rich console for operators, a JSON-lines file fed from a writer thread, a
per-event cooldown for messages that can fire every tick, and masking of
credentials that might end up inside provider error bodies.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
import threading
import time
from typing import Dict, Iterable, Optional, Set

from rich.logging import RichHandler

from eigentrader.core.json_utils import dumps, loads

LOGGER_NAME = "eigentrader"

# Events that can repeat on every poll or retry; only the first per key is shown.
NOISY_EVENTS = frozenset({
    "grant_status_unavailable",
    "registry_submit_failed",
    "stream_chunk_invalid",
    "price_lookup_failed",
})

MASK = "***"


def _event_of(record: logging.LogRecord) -> Optional[dict]:
    msg = record.getMessage()
    if not msg.startswith("{"):
        return None
    try:
        data = loads(msg)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class JsonFormatter(logging.Formatter):
    """
    One JSON line per record. Structured messages are merged into the line
    instead of being nested as an escaped string.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": round(record.created, 3),
            "level": record.levelname,
            "logger": record.name,
        }
        event = _event_of(record)
        if event is None:
            line["msg"] = record.getMessage()
        else:
            line.update(event)
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return dumps(line)


class RedactingFilter(logging.Filter):
    """Replaces known secret values (API keys, private keys) in the rendered message."""

    def __init__(self, secrets: Iterable[Optional[str]] = ()):
        super().__init__()
        self._secrets = [s for s in secrets if s and len(s) >= 8]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        msg = record.getMessage()
        masked = msg
        for secret in self._secrets:
            masked = masked.replace(secret, MASK)
        if masked != msg:
            record.msg, record.args = masked, None
        return True


class ThrottledFilter(logging.Filter):
    """
    Drops repeats of a noisy event inside `cooldown_sec`. Repeats are keyed by
    the event name plus its `key` field, so different inferences or endpoints
    are throttled independently.
    """

    def __init__(self, cooldown_sec: float = 30.0, events: Optional[Set[str]] = None, clock=time.monotonic):
        super().__init__()
        self._cooldown = cooldown_sec
        self._events = set(NOISY_EVENTS if events is None else events)
        self._clock = clock
        self._last: Dict[str, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        data = _event_of(record)
        if data is None or data.get("event") not in self._events:
            return True
        key = f"{data['event']}:{data.get('key', '')}"
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < self._cooldown:
            return False
        self._last[key] = now
        return True


class AsyncQueueHandler(logging.Handler):
    """
    Hands records to a writer thread so file I/O never runs on the event loop.
    A full queue drops the record and counts it.
    """

    def __init__(self, target: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self._target = target
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._stopping = threading.Event()
        self.dropped = 0
        self._writer = threading.Thread(target=self._drain, daemon=True, name="eigentrader-log-writer")
        self._writer.start()
        atexit.register(self.close)

    def emit(self, record: logging.LogRecord) -> None:
        if self._stopping.is_set():
            return
        # args are rendered now; the writer thread must not touch live objects
        record.msg, record.args = record.getMessage(), None
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1

    def _drain(self) -> None:
        while not (self._stopping.is_set() and self._queue.empty()):
            try:
                record = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._target.handle(record)
            except Exception:
                self._target.handleError(record)

    def close(self) -> None:
        if self._stopping.is_set():
            return
        self._stopping.set()
        self._writer.join(timeout=2.0)
        if self.dropped:
            sys.stderr.write(f"[eigentrader] {self.dropped} log records dropped (queue full)\n")
        self._target.close()
        super().close()


def build_logger(
    name: str = LOGGER_NAME,
    level: int = logging.INFO,
    file_path: Optional[str] = "eigentrader.log",
    async_file: bool = True,
    throttle: bool = True,
) -> logging.Logger:
    """
    Configure the process logger once; later calls only adjust the level.

    Args:
        name: Logger name
        level: Minimum log level
        file_path: JSON-lines log file, None for console only
        async_file: Write the file from a background thread
        throttle: Suppress repeats of NOISY_EVENTS on the console
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        set_level(logger, level)
        return logger

    console = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
    console.setFormatter(logging.Formatter("%(message)s"))
    if throttle:
        console.addFilter(ThrottledFilter())
    logger.addHandler(console)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(AsyncQueueHandler(file_handler) if async_file else file_handler)

    logger.propagate = False
    set_level(logger, level)
    return logger


def set_level(logger: logging.Logger, level) -> None:
    """Apply a level (int or name such as "DEBUG") to the logger and its handlers."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def redact_secrets(logger: logging.Logger, secrets: Iterable[Optional[str]]) -> None:
    """Mask the given secret values in everything the logger's handlers emit."""
    redactor = RedactingFilter(secrets)
    for handler in logger.handlers:
        handler.addFilter(redactor)
