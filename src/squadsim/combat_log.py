from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from squadsim.events.bus import EVENT_UI_LOG, EventBus

logger = logging.getLogger(__name__)

LOG_DAMAGE = "damage"
LOG_CRIT = "crit"
LOG_BUFF = "buff"
LOG_SKILL = "skill"
LOG_RELOAD = "reload"
LOG_SYSTEM = "system"
LOG_KINDS = (LOG_DAMAGE, LOG_CRIT, LOG_BUFF, LOG_SKILL, LOG_RELOAD, LOG_SYSTEM)


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One timestamped combat log line. ``time`` is simulation seconds."""

    time: float
    message: str
    kind: str = LOG_SYSTEM
    level: str = "info"


class CombatLog:
    """In-memory combat log for one run.

    - Keeps a finite history (capacity), dropping the oldest entries first.
    - Publishes every entry on the bus as ``ui.log`` for presentation layers.
    """

    def __init__(self, event_bus: EventBus | None = None, capacity: int = 10000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.event_bus = event_bus
        self._capacity = capacity
        self._entries: List[LogEntry] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    def add(self, time: float, message: str, kind: str = LOG_SYSTEM, level: str = "info") -> LogEntry:
        if kind not in LOG_KINDS:
            raise ValueError(f"unknown log kind {kind!r}")
        entry = LogEntry(time=time, message=message, kind=kind, level=level)
        self._entries.append(entry)
        if len(self._entries) > self._capacity:
            del self._entries[0 : len(self._entries) - self._capacity]
        if self.event_bus is not None:
            self.event_bus.emit(EVENT_UI_LOG, entry=entry)
        return entry

    def entries(self, kind: str | None = None) -> List[LogEntry]:
        if kind is None:
            return list(self._entries)
        return [entry for entry in self._entries if entry.kind == kind]

    def get_recent(self, n: int) -> List[LogEntry]:
        if n <= 0:
            return []
        return self._entries[-n:]

    def clear(self) -> None:
        logger.debug("Clearing combat log entries (count=%d)", len(self._entries))
        self._entries.clear()

    def format(self) -> str:
        return "\n".join(f"[{entry.time:7.3f}s] {entry.message}" for entry in self._entries)

    def __len__(self) -> int:
        return len(self._entries)
