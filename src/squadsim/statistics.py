"""Run statistics: live snapshots, per-run summaries and batch aggregates."""
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Sequence

import numpy as np

from squadsim.components.combat_state import CombatState
from squadsim.events.bus import EVENT_TICK, EVENT_UI_UPDATE, EventBus
from squadsim.world import member_components

logger = logging.getLogger(__name__)

# Publishes after every other tick subscriber has updated state.
STATS_PRIORITY = 9


def _percent(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return part / whole * 100


@dataclass(frozen=True, slots=True)
class StatsSnapshot:
    elapsed: float
    total_damage: int
    dps: int
    shots: int
    core_hit_rate: float
    crit_rate: float
    reload_count: int


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Result of one run for the target member. Rates are percent of pellets."""

    character_id: str
    duration: float
    dps: int
    total_damage: int
    shots: int
    core_hit_rate: float
    crit_rate: float
    reload_count: int
    skill1_count: int
    skill_damage: int
    anomalies: int = 0

    def to_dict(self) -> Dict[str, float | int | str]:
        return asdict(self)


def snapshot(state: CombatState, elapsed: float) -> StatsSnapshot:
    dps = math.floor(state.total_damage / elapsed) if elapsed > 0 else 0
    return StatsSnapshot(
        elapsed=elapsed,
        total_damage=state.total_damage,
        dps=dps,
        shots=state.shots_fired,
        core_hit_rate=_percent(state.core_hits, state.total_pellets),
        crit_rate=_percent(state.crit_hits, state.total_pellets),
        reload_count=state.reload_count,
    )


def summarize_run(character_id: str, state: CombatState, duration: float, anomalies: int = 0) -> RunSummary:
    return RunSummary(
        character_id=character_id,
        duration=duration,
        dps=math.floor(state.total_damage / duration) if duration > 0 else 0,
        total_damage=state.total_damage,
        shots=state.shots_fired,
        core_hit_rate=_percent(state.core_hits, state.total_pellets),
        crit_rate=_percent(state.crit_hits, state.total_pellets),
        reload_count=state.reload_count,
        skill1_count=state.skill1_count,
        skill_damage=state.skill_damage,
        anomalies=anomalies,
    )


def summarize(values: Iterable[float]) -> Dict[str, float]:
    """Mean, min, max and population standard deviation of ``values``."""
    data = np.asarray(list(values), dtype=float)
    if data.size == 0:
        return {"mean": 0.0, "min": 0.0, "max": 0.0, "std": 0.0}
    return {
        "mean": float(data.mean()),
        "min": float(data.min()),
        "max": float(data.max()),
        "std": float(data.std()),
    }


def aggregate(summaries: Sequence[RunSummary]) -> Dict[str, Dict[str, float]]:
    return {
        "dps": summarize(summary.dps for summary in summaries),
        "total_damage": summarize(summary.total_damage for summary in summaries),
        "shots": summarize(summary.shots for summary in summaries),
        "crit_rate": summarize(summary.crit_rate for summary in summaries),
        "core_hit_rate": summarize(summary.core_hit_rate for summary in summaries),
    }


class StatsSystem:
    """Publishes a ``StatsSnapshot`` of the target member on every tick."""

    def __init__(self, event_bus: EventBus, target_id: str):
        self.event_bus = event_bus
        self.target_id = target_id
        self.latest: StatsSnapshot | None = None
        self.event_bus.subscribe(EVENT_TICK, self.on_tick, priority=STATS_PRIORITY)

    def on_tick(self, sender, **payload):
        found = member_components(self.target_id)
        if found is None:
            return
        self.latest = snapshot(found[2], payload.get("time", 0.0))
        self.event_bus.emit(EVENT_UI_UPDATE, snapshot=self.latest)
