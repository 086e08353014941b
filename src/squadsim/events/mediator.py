"""Request/response layer on top of the event bus.

Systems that need each other's data ask through the mediator instead of
holding references to one another. The skill system needs damage numbers
and stack counts while the combat system needs buff totals; routing those
questions through named requests keeps the systems free of import cycles.

Dispatch is synchronous, so a response normally arrives while the request
event is still being published. A request that gets no answer, or whose
answer arrives after the wall-clock deadline, is rejected with a
``MediatorError`` subclass; callers use ``request_or`` when a fallback value
is acceptable.
"""
from __future__ import annotations

import itertools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple

from squadsim.errors import MediatorError, NoHandlerError, RequestTimeoutError
from squadsim.events.bus import EVENT_MEDIATOR_REQUEST, EVENT_MEDIATOR_RESPONSE, EventBus

logger = logging.getLogger(__name__)

REQUEST_GET_TOTAL_BUFFS = "GET_TOTAL_BUFFS"  # data: character_id -> dict of totals
REQUEST_GET_BUFF_STACKS = "GET_BUFF_STACKS"  # data: target_id, buff_id -> int
REQUEST_CALCULATE_INSTANT_DAMAGE = "CALCULATE_INSTANT_DAMAGE"  # data: character_id, multiplier -> int
REQUEST_GET_SQUAD_STATE = "GET_SQUAD_STATE"  # data: none -> members, burst_users, full_burst, full_burst_count, burst_gauge, max_ammo

DEFAULT_TIMEOUT = 5.0
DEFAULT_CACHE_TIME = 1.0

RequestHandler = Callable[[Mapping[str, Any]], Any]


@dataclass(slots=True)
class _PendingRequest:
    request_id: int
    request_type: str
    deadline: float
    done: bool = False
    result: Any = None
    error: MediatorError | None = None
    answered_at: float = 0.0


class Mediator:
    def __init__(self, event_bus: EventBus, *, clock: Callable[[], float] = time.monotonic):
        self.event_bus = event_bus
        self._clock = clock
        self._handlers: Dict[str, List[RequestHandler]] = {}
        self._pending: Dict[int, _PendingRequest] = {}
        self._cache: Dict[Tuple[str, str], Tuple[float, Any]] = {}
        self._ids = itertools.count(1)
        self.destroyed = False
        self._unsubscribers = [
            self.event_bus.subscribe(EVENT_MEDIATOR_REQUEST, self.on_request),
            self.event_bus.subscribe(EVENT_MEDIATOR_RESPONSE, self.on_response),
        ]

    def register_handler(self, request_type: str, handler: RequestHandler) -> Callable[[], None]:
        handlers = self._handlers.setdefault(request_type, [])
        if handler not in handlers:
            handlers.append(handler)

        def unregister() -> None:
            self.remove_handler(request_type, handler)

        return unregister

    def remove_handler(self, request_type: str, handler: RequestHandler) -> None:
        handlers = self._handlers.get(request_type)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[request_type]

    def request(
        self,
        request_type: str,
        data: Mapping[str, Any] | None = None,
        *,
        use_cache: bool = False,
        cache_time: float = DEFAULT_CACHE_TIME,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Any:
        if self.destroyed:
            raise MediatorError(request_type, "mediator destroyed")
        data = dict(data or {})
        cache_key = (request_type, _serialize(data))
        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None and self._clock() - cached[0] < cache_time:
                return cached[1]

        request_id = next(self._ids)
        pending = _PendingRequest(request_id, request_type, deadline=self._clock() + timeout)
        self._pending[request_id] = pending
        try:
            self.event_bus.emit(
                EVENT_MEDIATOR_REQUEST,
                request_id=request_id,
                request_type=request_type,
                data=data,
            )
        finally:
            self._pending.pop(request_id, None)

        if not pending.done or pending.answered_at > pending.deadline:
            logger.warning("Request %s #%d timed out after %.1fs", request_type, request_id, timeout)
            raise RequestTimeoutError(request_type, f"no response within {timeout}s")
        if pending.error is not None:
            raise pending.error
        if use_cache:
            self._cache[cache_key] = (self._clock(), pending.result)
        return pending.result

    def request_or(self, request_type: str, data: Mapping[str, Any] | None, default: Any, **options) -> Any:
        """Issue a request and return ``default`` when it is rejected."""
        try:
            return self.request(request_type, data, **options)
        except MediatorError as exc:
            logger.warning("Falling back for %s: %s", request_type, exc)
            return default

    def request_chain(
        self,
        steps: Iterable[Tuple[str, Mapping[str, Any] | Callable[[Any], Mapping[str, Any]]]],
    ) -> List[Any]:
        """Run requests in order; a callable step builds its data from the previous result."""
        results: List[Any] = []
        previous: Any = None
        for request_type, data in steps:
            if callable(data):
                data = data(previous)
            previous = self.request(request_type, data)
            results.append(previous)
        return results

    def on_request(self, sender, **payload):
        request_id = payload.get("request_id")
        request_type = payload.get("request_type")
        if request_id is None or request_type is None:
            return
        data = payload.get("data") or {}
        handlers = list(self._handlers.get(request_type, ()))
        if not handlers:
            self.event_bus.emit(
                EVENT_MEDIATOR_RESPONSE,
                request_id=request_id,
                result=None,
                error=NoHandlerError(request_type, "no handler registered"),
            )
            return
        for handler in handlers:
            try:
                result = handler(data)
            except Exception:
                logger.exception("Request handler %r failed for %s", handler, request_type)
                continue
            if result is not None:
                self.event_bus.emit(EVENT_MEDIATOR_RESPONSE, request_id=request_id, result=result, error=None)
                return
        self.event_bus.emit(
            EVENT_MEDIATOR_RESPONSE,
            request_id=request_id,
            result=None,
            error=NoHandlerError(request_type, "no handler produced a result"),
        )

    def on_response(self, sender, **payload):
        pending = self._pending.get(payload.get("request_id"))
        if pending is None:
            logger.debug("Dropping response for unknown request %s", payload.get("request_id"))
            return
        pending.done = True
        pending.result = payload.get("result")
        pending.error = payload.get("error")
        pending.answered_at = self._clock()

    def clear_cache(self) -> None:
        self._cache.clear()

    def invalidate_cache(self, request_type: str) -> None:
        for key in [key for key in self._cache if key[0] == request_type]:
            del self._cache[key]

    def destroy(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._handlers.clear()
        self._pending.clear()
        self._cache.clear()
        self.destroyed = True


def _serialize(data: Mapping[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, default=str)
