"""Record bus traffic, save it as JSON, and replay or analyse it later.

A recorder subscribes at priority 0, so it sees each event before any
system reacts to it. Payloads are kept as published. They are converted to
JSON only when saved. Dataclass values become mappings and anything else
unknown becomes its ``str``.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field, is_dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

import numpy as np

from squadsim.errors import RecordingError
from squadsim.events.bus import (
    EVENT_AMMO_CHANGE,
    EVENT_BATTLE_START,
    EVENT_BUFF_APPLIED,
    EVENT_BUFF_REMOVED,
    EVENT_BURST_USE,
    EVENT_DAMAGE,
    EVENT_FULL_BURST,
    EVENT_FULL_BURST_END,
    EVENT_HEAL,
    EVENT_LAST_BULLET,
    EVENT_RELOAD_START,
    EVENT_SKILL_ACTIVATE,
    EVENT_SKILL_TRIGGER,
    EventBus,
)

logger = logging.getLogger(__name__)

# Ticks, attack requests and mediator traffic are left out by default.
DEFAULT_RECORDED_EVENTS = (
    EVENT_BATTLE_START,
    EVENT_DAMAGE,
    EVENT_LAST_BULLET,
    EVENT_RELOAD_START,
    EVENT_AMMO_CHANGE,
    EVENT_HEAL,
    EVENT_SKILL_TRIGGER,
    EVENT_SKILL_ACTIVATE,
    EVENT_BUFF_APPLIED,
    EVENT_BUFF_REMOVED,
    EVENT_BURST_USE,
    EVENT_FULL_BURST,
    EVENT_FULL_BURST_END,
)


@dataclass(frozen=True, slots=True)
class RecordedEvent:
    sequence: int
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def time(self) -> float | None:
        return self.payload.get("time")


@dataclass(slots=True)
class Recording:
    name: str
    events: List[RecordedEvent] = field(default_factory=list)
    dropped: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "dropped": self.dropped,
            "metadata": self.metadata,
            "events": [
                {"sequence": event.sequence, "name": event.name, "payload": event.payload} for event in self.events
            ],
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Recording":
        try:
            events = [
                RecordedEvent(int(item["sequence"]), str(item["name"]), dict(item.get("payload") or {}))
                for item in raw["events"]
            ]
            return cls(
                name=str(raw["name"]),
                events=events,
                dropped=int(raw.get("dropped", 0)),
                metadata=dict(raw.get("metadata") or {}),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise RecordingError(f"malformed recording: {exc}") from exc


def _encode(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


class EventRecorder:
    """Captures bus traffic for the given event names.

    ``include`` limits recording to the listed names, ``exclude`` drops
    names even when included. Events past ``max_events`` are counted in
    ``dropped`` instead of kept. Recording starts on construction unless
    ``start=False``.
    """

    def __init__(
        self,
        event_bus: EventBus,
        names: Iterable[str] = DEFAULT_RECORDED_EVENTS,
        *,
        name: str = "recording",
        include: Iterable[str] | None = None,
        exclude: Iterable[str] | None = None,
        max_events: int = 10000,
        start: bool = True,
    ):
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self.event_bus = event_bus
        self.name = name
        self.watched = tuple(names)
        self.include = set(include) if include is not None else None
        self.exclude = set(exclude or ())
        self.max_events = max_events
        self.events: List[RecordedEvent] = []
        self.dropped = 0
        self._unsubscribers: List[Callable[[], None]] = []
        self._active = False
        if start:
            self.start()

    @property
    def recording(self) -> bool:
        return self._active

    def start(self) -> None:
        if self.recording:
            raise RuntimeError(f"recorder '{self.name}' is already recording")
        self._active = True
        for event_name in self.watched:
            if self._wanted(event_name):
                self._unsubscribers.append(
                    self.event_bus.subscribe(event_name, self._handler_for(event_name), priority=0)
                )
        logger.debug("Recorder %s watching %d event types", self.name, len(self._unsubscribers))

    def stop(self) -> Recording:
        """Disconnect from the bus and return what was captured so far."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._active = False
        if self.dropped:
            logger.info("Event recorder dropped %d events past its limit of %d", self.dropped, self.max_events)
        return self.snapshot()

    def _wanted(self, name: str) -> bool:
        if self.include is not None and name not in self.include:
            return False
        return name not in self.exclude

    def _handler_for(self, name: str):
        def record(sender, **payload):
            if len(self.events) >= self.max_events:
                self.dropped += 1
                return
            self.events.append(RecordedEvent(len(self.events), name, dict(payload)))

        return record

    def snapshot(self) -> Recording:
        return Recording(
            name=self.name,
            events=list(self.events),
            dropped=self.dropped,
            metadata={
                "include": sorted(self.include) if self.include is not None else None,
                "exclude": sorted(self.exclude),
                "max_events": self.max_events,
            },
        )

    def of_type(self, name: str) -> List[RecordedEvent]:
        return [event for event in self.events if event.name == name]

    def names(self) -> List[str]:
        return [event.name for event in self.events]

    def clear(self) -> None:
        self.events.clear()
        self.dropped = 0


def save_recordings(path: Path | str, recordings: Sequence[Recording]) -> None:
    document = {"recordings": [recording.to_dict() for recording in recordings]}
    try:
        Path(path).write_text(json.dumps(document, indent=2, default=_encode), encoding="utf-8")
    except OSError as exc:
        raise RecordingError(f"cannot write recordings to {path}: {exc}") from exc
    logger.info("Saved %d recordings to %s", len(recordings), path)


def load_recordings(path: Path | str) -> List[Recording]:
    """Read a file written by ``save_recordings`` or a single exported recording."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise RecordingError(f"cannot read recordings from {path}: {exc}") from exc
    if isinstance(raw, Mapping) and "recordings" in raw:
        items = raw["recordings"]
        if not isinstance(items, list):
            raise RecordingError("'recordings' must be a list")
        return [Recording.from_dict(item) for item in items]
    if isinstance(raw, Mapping):
        return [Recording.from_dict(raw)]
    raise RecordingError(f"{path} does not hold a recording")


def replay(
    recording: Recording,
    event_bus: EventBus,
    *,
    start: int = 0,
    end: int | None = None,
    before: Callable[[RecordedEvent], None] | None = None,
    after: Callable[[RecordedEvent], None] | None = None,
) -> int:
    """Publish ``recording.events[start:end]`` on ``event_bus`` in order.

    Replay is immediate; recorded simulation times travel in the payloads.
    Returns the number of events published.
    """
    published = 0
    for event in recording.events[start:end]:
        if before is not None:
            before(event)
        event_bus.emit(event.name, **event.payload)
        if after is not None:
            after(event)
        published += 1
    return published


def analyze(recording: Recording) -> Dict[str, Any]:
    """Per-type counts and intervals plus a per-second timeline of simulated time."""
    times = np.asarray([event.time for event in recording.events if event.time is not None], dtype=float)
    duration = float(times.max() - times.min()) if times.size else 0.0
    event_types: Dict[str, Dict[str, float]] = {}
    for event_name in dict.fromkeys(event.name for event in recording.events):
        matching = [event for event in recording.events if event.name == event_name]
        stamps = np.asarray([event.time for event in matching if event.time is not None], dtype=float)
        event_types[event_name] = {
            "count": len(matching),
            "average_interval": float(np.diff(stamps).mean()) if stamps.size > 1 else 0.0,
        }
    timeline: List[Dict[str, int]] = []
    if times.size:
        buckets = np.bincount(np.floor(times).astype(int), minlength=int(math.floor(times.max())) + 1)
        timeline = [{"second": second, "events": int(count)} for second, count in enumerate(buckets)]
    return {
        "name": recording.name,
        "total_events": len(recording.events),
        "dropped": recording.dropped,
        "duration": duration,
        "events_per_second": len(times) / duration if duration > 0 else 0.0,
        "event_types": event_types,
        "timeline": timeline,
    }
