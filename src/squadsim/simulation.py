"""
simulation.py

One run of the squad simulation, and batches of runs.
----------------------------------------------------------
A `Simulation` owns its esper world, event bus, mediator, scheduler and
systems. Nothing is shared between runs except the seeded RNG held by the
context, so repeated runs continue one reproducible random stream.

The loop advances simulated time one frame at a time. Between frames it
checks the running flag (set by `stop()`) and, when pacing is on, sleeps so
that simulated time runs `speed` times faster than wall time.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List

import esper

from squadsim.combat_log import LOG_SYSTEM, CombatLog
from squadsim.components.battle_state import BattleState
from squadsim.components.combat_state import CombatState
from squadsim.constants import TICK_INTERVAL
from squadsim.context import SimulationContext
from squadsim.events.bus import (
    EVENT_RUN_COMPLETE,
    EVENT_SIMULATION_COMPLETE,
    EVENT_SYSTEM_START,
    EVENT_SYSTEM_STOP,
    EVENT_TICK,
    EventBus,
)
from squadsim.event_recorder import EventRecorder, Recording
from squadsim.events.mediator import Mediator
from squadsim.scheduler import EventScheduler, ScheduledEvent
from squadsim.statistics import RunSummary, StatsSystem, aggregate, summarize_run
from squadsim.systems.buff_system import BuffSystem
from squadsim.systems.combat_system import CombatSystem
from squadsim.systems.skill_system import SkillSystem
from squadsim.world import activate_world, create_world, member_components, release_world

logger = logging.getLogger(__name__)

TICK_PRIORITY = 9
DEFAULT_FRAME_STEP = 1.0


class Simulation:
    def __init__(
        self,
        context: SimulationContext,
        *,
        run_index: int = 0,
        pacing: bool = False,
        frame_step: float = DEFAULT_FRAME_STEP,
        sleep: Callable[[float], None] = time.sleep,
        record_events: Iterable[str] | None = None,
    ):
        if frame_step <= 0:
            raise ValueError("frame_step must be positive")
        self.context = context
        self.config = context.config
        self.run_index = run_index
        self.pacing = pacing
        self.frame_step = frame_step
        self._sleep = sleep
        self.running = False
        self.finished = False
        self.closed = False

        self.world_name = create_world()
        self.event_bus = EventBus()
        self.scheduler = EventScheduler(horizon=self.config.duration)
        self.mediator = Mediator(self.event_bus)
        self.combat_log = CombatLog(self.event_bus)
        self.buff_system = BuffSystem(self.event_bus, self.mediator, clock=lambda: self.scheduler.now)
        self.combat_system = CombatSystem(
            self.event_bus,
            self.mediator,
            self.scheduler,
            self.config.damage_settings(),
            context.rng,
            self.combat_log,
        )
        self.skill_system = SkillSystem(self.event_bus, self.mediator, self.scheduler)
        self.target_id = context.target_id
        self.stats_system = StatsSystem(self.event_bus, self.target_id) if self.target_id else None
        self.recorder = (
            EventRecorder(self.event_bus, record_events, name=f"run-{run_index}") if record_events is not None else None
        )
        self.recording: Recording | None = None
        self._setup_squad()

    def _setup_squad(self) -> None:
        esper.create_entity(BattleState(target_id=self.target_id))
        if self.target_id is not None:
            self.buff_system.set_static_buffs(self.target_id, self.config.static_buffs())
        for slot, definition in self.context.squad():
            self.combat_system.add_member(definition, slot)
            self.skill_system.register_character(definition.id, definition)
        logger.debug("Run %d squad ready in world %s", self.run_index, self.world_name)

    def _dispatch(self, event: ScheduledEvent) -> None:
        payload = dict(event.payload)
        payload["time"] = event.time
        self.event_bus.emit(event.type, **payload)

    def run(self) -> RunSummary:
        if self.closed:
            raise RuntimeError("simulation already closed")
        if self.finished:
            return self.summary()
        activate_world(self.world_name)
        duration = self.config.duration
        self.running = True
        self.combat_system.start()
        self.scheduler.schedule_repeating(TICK_INTERVAL, TICK_INTERVAL, EVENT_TICK, priority=TICK_PRIORITY)
        self.event_bus.emit(EVENT_SYSTEM_START, run_index=self.run_index)
        logger.info("Run %d started: %.0fs, target %s", self.run_index, duration, self.target_id)

        while self.running and self.scheduler.current_time < duration:
            frame_end = min(duration, self.scheduler.current_time + self.frame_step)
            self.scheduler.process_until(frame_end, self._dispatch)
            if self.pacing and self.running:
                self._sleep(self.frame_step / self.config.speed)

        reason = "completed" if self.running else "stopped"
        self.running = False
        self.finished = True
        if self.scheduler.anomalies:
            logger.warning("Run %d corrected %d past-time schedules", self.run_index, self.scheduler.anomalies)
        self.combat_log.add(self.scheduler.current_time, f"Run {reason} at {self.scheduler.current_time:.1f}s", LOG_SYSTEM)
        self.event_bus.emit(EVENT_SYSTEM_STOP, reason=reason)
        if self.recorder is not None:
            self.recording = self.recorder.stop()
        summary = self.summary()
        logger.info("Run %d %s: %s DPS", self.run_index, reason, f"{summary.dps:,}")
        return summary

    def stop(self) -> None:
        """Ask the loop to halt at the next frame boundary."""
        self.running = False

    def summary(self) -> RunSummary:
        activate_world(self.world_name)
        elapsed = min(self.scheduler.current_time, self.config.duration)
        found = member_components(self.target_id) if self.target_id else None
        state = found[2] if found is not None else CombatState(current_ammo=0, max_ammo=0)
        return summarize_run(self.target_id or "", state, elapsed, self.scheduler.anomalies)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.running = False
        self.mediator.destroy()
        self.event_bus.destroy()
        release_world(self.world_name)

    def __enter__(self) -> "Simulation":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass(slots=True)
class BatchResult:
    summaries: List[RunSummary] = field(default_factory=list)
    aggregate: Dict[str, Dict[str, float]] = field(default_factory=dict)
    recordings: List[Recording] = field(default_factory=list)
    stopped: bool = False


class BatchRunner:
    """Runs ``config.run_count`` fresh simulations in sequence.

    ``event_bus`` receives ``run.complete`` after each run and
    ``simulation.complete`` at the end. Each hook in ``on_setup`` is called
    with every new ``Simulation`` before it runs, which is how callers attach
    to a run's own bus.
    With ``record_events`` each run records those events and the recordings
    are returned in the result.
    """

    def __init__(
        self,
        context: SimulationContext,
        event_bus: EventBus | None = None,
        *,
        pacing: bool = False,
        on_setup: Iterable[Callable[[Simulation], None]] = (),
        record_events: Iterable[str] | None = None,
    ):
        self.context = context
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.pacing = pacing
        self.on_setup = list(on_setup)
        self.record_events = tuple(record_events) if record_events is not None else None
        self.current: Simulation | None = None
        self._stopped = False

    def run(self) -> BatchResult:
        result = BatchResult()
        for run_index in range(self.context.config.run_count):
            if self._stopped:
                break
            simulation = Simulation(
                self.context, run_index=run_index, pacing=self.pacing, record_events=self.record_events
            )
            self.current = simulation
            try:
                for hook in self.on_setup:
                    hook(simulation)
                summary = simulation.run()
            finally:
                simulation.close()
                self.current = None
            result.summaries.append(summary)
            if simulation.recording is not None:
                result.recordings.append(simulation.recording)
            self.event_bus.emit(EVENT_RUN_COMPLETE, run_index=run_index, summary=summary)
        result.aggregate = aggregate(result.summaries)
        result.stopped = self._stopped
        self.event_bus.emit(EVENT_SIMULATION_COMPLETE, summaries=list(result.summaries), aggregate=result.aggregate)
        return result

    def stop(self) -> None:
        self._stopped = True
        if self.current is not None:
            self.current.stop()
