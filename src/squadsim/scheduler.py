from __future__ import annotations

import heapq
import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from squadsim.errors import SchedulingError

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5
PAST_EPSILON = 0.001


@dataclass(frozen=True, slots=True)
class ScheduledEvent:
    """A pending simulation event. Ordered by ``(time, priority, id)``."""

    id: int
    time: float
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY


@dataclass(slots=True)
class _Repeat:
    repeat_id: int
    interval: float
    event_type: str
    payload: Dict[str, Any]
    priority: int
    count: int | None
    start: float = 0.0
    fired: int = 0
    pending_event: int | None = None


class EventScheduler:
    """Time-ordered queue of future events.

    ``now`` is the processing reference: while an event is being handled it
    is that event's timestamp, otherwise the cursor left by the last
    advance. Requests to schedule before ``now`` are moved to
    ``now + PAST_EPSILON``; each correction is logged and counted in
    ``anomalies``.
    """

    def __init__(self, horizon: float = math.inf):
        self.horizon = horizon
        self.current_time = 0.0
        self.processing_time: float | None = None
        self.anomalies = 0
        self._queue: List[Tuple[float, int, int, ScheduledEvent]] = []
        self._live: Dict[int, ScheduledEvent] = {}
        self._repeating: Dict[int, _Repeat] = {}
        self._ids = itertools.count(1)
        self._repeat_ids = itertools.count(1)

    @property
    def now(self) -> float:
        if self.processing_time is not None:
            return self.processing_time
        return self.current_time

    def schedule(
        self,
        time: float,
        event_type: str,
        payload: Dict[str, Any] | None = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> int:
        if not math.isfinite(time):
            raise SchedulingError(f"cannot schedule '{event_type}' at non-finite time {time!r}")
        if time < 0:
            raise SchedulingError(f"cannot schedule '{event_type}' at negative time {time!r}")
        reference = self.now
        if time < reference:
            corrected = reference + PAST_EPSILON
            self.anomalies += 1
            logger.warning(
                "Event '%s' scheduled in the past (%.4f < %.4f); moved to %.4f",
                event_type,
                time,
                reference,
                corrected,
            )
            time = corrected
        event = ScheduledEvent(
            id=next(self._ids),
            time=time,
            type=event_type,
            payload=dict(payload or {}),
            priority=priority,
        )
        heapq.heappush(self._queue, (event.time, event.priority, event.id, event))
        self._live[event.id] = event
        return event.id

    def schedule_repeating(
        self,
        start: float,
        interval: float,
        event_type: str,
        payload: Dict[str, Any] | None = None,
        *,
        count: int | None = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> int:
        """Schedule ``event_type`` every ``interval`` seconds starting at ``start``.

        Repetition stops after ``count`` occurrences or once the next
        occurrence would fall past ``horizon``. Returns a repeat id usable
        with ``cancel_repeating``.
        """
        if not math.isfinite(interval) or interval <= 0:
            raise SchedulingError(f"repeating interval must be positive and finite, got {interval!r}")
        if count is not None and count <= 0:
            raise SchedulingError(f"repeating count must be positive, got {count!r}")
        repeat = _Repeat(
            repeat_id=next(self._repeat_ids),
            interval=interval,
            event_type=event_type,
            payload=dict(payload or {}),
            priority=priority,
            count=count,
            start=start,
        )
        self._repeating[repeat.repeat_id] = repeat
        self._schedule_occurrence(repeat, start)
        return repeat.repeat_id

    def cancel(self, event_id: int) -> bool:
        """Drop a pending event. Returns False when it already fired or never existed."""
        return self._live.pop(event_id, None) is not None

    def cancel_repeating(self, repeat_id: int) -> bool:
        repeat = self._repeating.pop(repeat_id, None)
        if repeat is None:
            return False
        if repeat.pending_event is not None:
            self.cancel(repeat.pending_event)
        return True

    def advance(self, until: float) -> List[ScheduledEvent]:
        """Pop every event due by ``until`` in queue order."""
        released: List[ScheduledEvent] = []
        while True:
            event = self._pop_due(until)
            if event is None:
                break
            self.processing_time = event.time
            self.current_time = max(self.current_time, event.time)
            self._continue_repeat(event)
            released.append(event)
        self.processing_time = None
        self.current_time = max(self.current_time, until)
        return released

    def process_until(self, until: float, dispatch: Callable[[ScheduledEvent], None]) -> int:
        """Pop and dispatch due events one at a time.

        Unlike ``advance``, events scheduled by ``dispatch`` that fall inside
        the window are handled in the same pass.
        """
        processed = 0
        try:
            while True:
                event = self._pop_due(until)
                if event is None:
                    break
                self.processing_time = event.time
                self.current_time = max(self.current_time, event.time)
                self._continue_repeat(event)
                dispatch(event)
                processed += 1
        finally:
            self.processing_time = None
            self.current_time = max(self.current_time, until)
        return processed

    def peek_time(self) -> float | None:
        self._discard_cancelled()
        if not self._queue:
            return None
        return self._queue[0][0]

    def event_time(self, event_id: int) -> float | None:
        event = self._live.get(event_id)
        return event.time if event is not None else None

    def pending_count(self) -> int:
        return len(self._live)

    def progress(self, duration: float) -> float:
        if duration <= 0:
            return 1.0
        return min(1.0, self.current_time / duration)

    def reset(self) -> None:
        self._queue.clear()
        self._live.clear()
        self._repeating.clear()
        self.current_time = 0.0
        self.processing_time = None
        self.anomalies = 0

    def _pop_due(self, until: float) -> ScheduledEvent | None:
        self._discard_cancelled()
        if not self._queue or self._queue[0][0] > until:
            return None
        event = heapq.heappop(self._queue)[3]
        del self._live[event.id]
        return event

    def _discard_cancelled(self) -> None:
        while self._queue and self._queue[0][2] not in self._live:
            heapq.heappop(self._queue)

    def _schedule_occurrence(self, repeat: _Repeat, at: float) -> None:
        if at > self.horizon:
            self._repeating.pop(repeat.repeat_id, None)
            return
        payload = dict(repeat.payload)
        payload["repeating_id"] = repeat.repeat_id
        repeat.pending_event = self.schedule(at, repeat.event_type, payload, repeat.priority)

    def _continue_repeat(self, event: ScheduledEvent) -> None:
        repeat = self._repeating.get(event.payload.get("repeating_id"))
        if repeat is None or repeat.pending_event != event.id:
            return
        repeat.fired += 1
        repeat.pending_event = None
        if repeat.count is not None and repeat.fired >= repeat.count:
            del self._repeating[repeat.repeat_id]
            return
        self._schedule_occurrence(repeat, repeat.start + repeat.fired * repeat.interval)
