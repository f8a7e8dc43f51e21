from __future__ import annotations

import threading
import time
from collections import deque

from ...contracts.training import LogEntry, LogLevel


class RunLog:
    """Bounded, append-ordered run log; the oldest entries are evicted first."""

    def __init__(self: RunLog, capacity: int = 20) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=max(1, int(capacity)))
        self._lock = threading.Lock()

    @property
    def capacity(self: RunLog) -> int:
        return self._entries.maxlen or 0

    def append(self: RunLog, message: str, level: LogLevel = "info") -> LogEntry:
        entry = LogEntry(ts=time.time(), message=message, level=level)
        with self._lock:
            self._entries.append(entry)
        return entry

    def clear(self: RunLog) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self: RunLog) -> tuple[LogEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self: RunLog) -> int:
        with self._lock:
            return len(self._entries)
