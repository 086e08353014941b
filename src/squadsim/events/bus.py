from __future__ import annotations

import itertools
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict

from blinker import Signal

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5


class _Subscription:
    """Receiver connected to a blinker signal; carries ordering metadata."""

    __slots__ = ("fn", "priority", "order", "once")

    def __init__(self, fn: Callable, priority: int, order: int, once: bool):
        self.fn = fn
        self.priority = priority
        self.order = order
        self.once = once

    def __call__(self, sender, **payload):
        return self.fn(sender, **payload)


@dataclass(slots=True)
class BusMetrics:
    total_events: int = 0
    processed_events: int = 0
    failed_events: int = 0
    event_counts: Counter = field(default_factory=Counter)


class EventBus:
    """Synchronous event bus leveraging blinker Signal objects.

    Each event name maps to one signal. Receivers run in ascending priority
    order; equal priorities keep subscription order. A failing handler is
    logged and does not stop the remaining handlers.
    """

    def __init__(self):
        self._signals: Dict[str, Signal] = {}
        self._order = itertools.count()
        self.metrics = BusMetrics()
        self.destroyed = False

    def subscribe(
        self,
        name: str,
        fn: Callable,
        *,
        priority: int = DEFAULT_PRIORITY,
        once: bool = False,
    ) -> Callable[[], None]:
        """Connect ``fn`` to ``name`` and return a callable that disconnects it."""
        sig = self._signals.setdefault(name, Signal(name))
        subscription = _Subscription(fn, priority, next(self._order), once)
        sig.connect(subscription, weak=False)

        def unsubscribe() -> None:
            sig.disconnect(subscription)

        return unsubscribe

    def emit(self, name: str, **payload) -> None:
        if self.destroyed:
            logger.warning("Ignoring '%s' published on a destroyed bus", name)
            return
        self.metrics.total_events += 1
        self.metrics.event_counts[name] += 1
        sig = self._signals.get(name)
        if sig is None or not sig.receivers:
            return
        ordered = sorted(sig.receivers.values(), key=lambda sub: (sub.priority, sub.order))
        for subscription in ordered:
            if subscription.once:
                sig.disconnect(subscription)
            try:
                subscription(self, **payload)
            except Exception:
                self.metrics.failed_events += 1
                logger.exception("Handler %r failed while processing '%s'", subscription.fn, name)
        self.metrics.processed_events += 1

    publish = emit

    def has_handlers(self, name: str) -> bool:
        sig = self._signals.get(name)
        return bool(sig is not None and sig.receivers)

    def clear(self, name: str | None = None) -> None:
        if name is None:
            for signal_name in list(self._signals):
                self.clear(signal_name)
            self.metrics = BusMetrics()
            return
        sig = self._signals.pop(name, None)
        if sig is not None:
            for subscription in list(sig.receivers.values()):
                sig.disconnect(subscription)

    def destroy(self) -> None:
        self.clear()
        self.destroyed = True


# ==== Combat ====
EVENT_ATTACK = "combat.attack"  # payload: character_id, time
EVENT_DAMAGE = "combat.damage"  # payload: character_id, damage, kind, pellets, crits, core_hits, time
EVENT_RELOAD = "combat.reload"  # payload: character_id, time
EVENT_AMMO_CHANGE = "combat.ammo_change"  # payload: character_id, change_type(reload|charge), amount, time
EVENT_LAST_BULLET = "combat.last_bullet"  # payload: character_id, time
EVENT_FULL_CHARGE = "combat.full_charge"  # payload: character_id, time
EVENT_HEAL = "combat.heal"  # payload: source_id, target_id, amount, time
EVENT_BATTLE_START = "combat.battle_start"  # payload: time
EVENT_SKILL_HIT = "combat.skill_hit"  # payload: character_id, multiplier, hit, time
EVENT_SHOT_FIRED = "combat.shot"  # payload: character_id, damage, pellets, crits, core_hits, ammo_left, time
EVENT_RELOAD_START = "combat.reload_start"  # payload: character_id, reload_time, time

# ==== Skills ====
EVENT_SKILL_TRIGGER = "skill.trigger"  # payload: character_id, skill_slot, trigger_id, time
EVENT_SKILL_ACTIVATE = "skill.activate"  # payload: character_id, skill_slot, skill_id, trigger_id, time
EVENT_REPLACE_ATTACK = "skill.replace_attack"  # payload: character_id, pellets_per_shot, penetration, shots
EVENT_AMMO_CHARGE = "skill.ammo_charge"  # payload: target_id, amount, time
EVENT_BURST_CHARGE = "skill.burst_charge"  # payload: source_id, amount, time
EVENT_BURST_COOLDOWN_REDUCE = "skill.burst_cooldown_reduce"  # payload: source_id, amount, time

# ==== Buffs ====
EVENT_BUFF_APPLY = "buff.apply"  # payload: buff_id, target_id, source_id, stats, duration, stackable, max_stacks
EVENT_BUFF_APPLIED = "buff.applied"  # payload: buff_entity, target_id, buff_id, stacks, refreshed
EVENT_BUFF_REMOVE = "buff.remove"  # payload: target_id, buff_key | buff_id, reason
EVENT_BUFF_REMOVED = "buff.removed"  # payload: target_id, buff_id, source_id, reason
EVENT_BUFF_TRANSFORM = "buff.transform"  # payload: target_id, from_buff_id, to_buff_id, new_stats
EVENT_BUFF_DECREMENT_SHOT = "buff.decrement_shot"  # payload: character_id

# ==== Burst ====
EVENT_BURST_READY = "burst.ready"  # payload: time
EVENT_BURST_USE = "burst.use"  # payload: character_id, position, time
EVENT_FULL_BURST = "burst.full"  # payload: users, time
EVENT_FULL_BURST_END = "burst.full_end"  # payload: time

# ==== System ====
EVENT_TICK = "system.tick"  # payload: time
EVENT_SYSTEM_START = "system.start"  # payload: run_index
EVENT_SYSTEM_STOP = "system.stop"  # payload: reason

# ==== Output ====
EVENT_UI_UPDATE = "ui.update"  # payload: snapshot (StatsSnapshot)
EVENT_UI_LOG = "ui.log"  # payload: entry (LogEntry)
EVENT_RUN_COMPLETE = "run.complete"  # payload: run_index, summary (RunSummary)
EVENT_SIMULATION_COMPLETE = "simulation.complete"  # payload: summaries, aggregate

# ==== Mediator ====
EVENT_MEDIATOR_REQUEST = "mediator.request"  # payload: request_id, request_type, data
EVENT_MEDIATOR_RESPONSE = "mediator.response"  # payload: request_id, result, error
