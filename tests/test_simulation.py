import esper
import pytest

from squadsim.combat_log import LOG_DAMAGE, LOG_RELOAD, LOG_SYSTEM
from squadsim.config import SimulationConfig, SquadConfig
from squadsim.context import SimulationContext
from squadsim.events.bus import (
    EVENT_BURST_USE,
    EVENT_DAMAGE,
    EVENT_FULL_BURST,
    EVENT_RELOAD_START,
    EVENT_RUN_COMPLETE,
    EVENT_SHOT_FIRED,
    EVENT_SIMULATION_COMPLETE,
    EVENT_SYSTEM_STOP,
    EVENT_TICK,
    EVENT_UI_LOG,
    EventBus,
)
from squadsim.simulation import BatchRunner, Simulation

from conftest import StubRandom, make_definition

SHOT = 121254


def _context(members, *, definitions=None, target_index=0, **overrides):
    overrides.setdefault("duration", 10.0)
    overrides.setdefault("cube", None)
    squad = SquadConfig(members=list(members) + [None] * (5 - len(members)), target_index=target_index)
    config = SimulationConfig(squad=squad, **overrides).validate()
    if definitions is None:
        definitions = {"rifle": make_definition("rifle")}
    return SimulationContext(definitions=definitions, config=config, rng=StubRandom([0.99]))


def _listen(simulation, name):
    events = []
    simulation.event_bus.subscribe(name, lambda sender, **payload: events.append(payload))
    return events


def test_single_member_fires_magazine_then_reloads():
    simulation = Simulation(_context(["rifle"]))
    reloads = _listen(simulation, EVENT_RELOAD_START)
    shots = _listen(simulation, EVENT_SHOT_FIRED)

    summary = simulation.run()
    simulation.close()

    assert [shot["time"] for shot in shots] == pytest.approx([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    assert [reload["time"] for reload in reloads] == pytest.approx([6.0])
    assert summary.shots == 6
    assert summary.total_damage == 6 * SHOT
    assert summary.dps == (6 * SHOT) // 10
    assert summary.reload_count == 1
    assert summary.crit_rate == 0.0


def test_full_burst_through_a_run():
    definitions = {
        f"m{position}": make_definition(f"m{position}", ammo=500, burst_position=position) for position in (1, 2, 3)
    }
    simulation = Simulation(_context(["m1", "m2", "m3"], definitions=definitions, duration=12.0))
    uses = _listen(simulation, EVENT_BURST_USE)
    full = _listen(simulation, EVENT_FULL_BURST)

    simulation.run()
    simulation.close()

    assert [use["character_id"] for use in uses] == ["m1", "m2", "m3"]
    assert [event["time"] for event in full] == pytest.approx([5.286])


def test_stop_halts_at_the_next_frame():
    simulation = Simulation(_context(["rifle"], duration=60.0))
    stops = _listen(simulation, EVENT_SYSTEM_STOP)

    def halt(sender, **payload):
        if payload["time"] >= 2.0:
            simulation.stop()

    simulation.event_bus.subscribe(EVENT_TICK, halt)

    summary = simulation.run()
    simulation.close()

    assert stops == [{"reason": "stopped"}]
    assert summary.duration <= 3.0
    assert simulation.finished


def test_runs_do_not_share_entities():
    context = _context(["rifle"])

    with Simulation(context) as first:
        first_summary = first.run()
    with Simulation(context, run_index=1) as second:
        second_summary = second.run()

    assert first_summary.shots == second_summary.shots == 6
    assert first.world_name != second.world_name


def test_close_releases_the_world():
    simulation = Simulation(_context(["rifle"]))
    simulation.run()

    simulation.close()

    with pytest.raises(KeyError):
        esper.delete_world(simulation.world_name)
    with pytest.raises(RuntimeError):
        simulation.run()


def test_pacing_sleeps_per_frame():
    naps = []
    simulation = Simulation(_context(["rifle"], duration=3.0, speed=60.0), pacing=True, sleep=naps.append)

    simulation.run()
    simulation.close()

    assert naps == pytest.approx([1.0 / 60.0] * 3)


def test_missing_definition_is_skipped():
    simulation = Simulation(_context(["rifle", "ghost"]))

    summary = simulation.run()
    simulation.close()

    assert summary.character_id == "rifle"
    assert summary.shots == 6


def test_batch_runner_reports_each_run_and_the_aggregate():
    bus = EventBus()
    completed = []
    finished = []
    bus.subscribe(EVENT_RUN_COMPLETE, lambda sender, **payload: completed.append(payload["run_index"]))
    bus.subscribe(EVENT_SIMULATION_COMPLETE, lambda sender, **payload: finished.append(payload["aggregate"]))
    seen = []

    result = BatchRunner(_context(["rifle"], run_count=3), bus, on_setup=[seen.append]).run()

    assert completed == [0, 1, 2]
    assert len(result.summaries) == 3
    assert len(seen) == 3
    assert result.aggregate["dps"]["std"] == 0.0
    assert finished == [result.aggregate]
    assert not result.stopped


def test_batch_runner_stop_skips_remaining_runs():
    context = _context(["rifle"], run_count=5)
    runner = BatchRunner(context)
    runner.on_setup.append(lambda simulation: runner.stop() if simulation.run_index == 1 else None)

    result = runner.run()

    assert len(result.summaries) == 2
    assert result.stopped


def test_bundled_squad_produces_damage():
    config = SimulationConfig(
        duration=30.0,
        seed=11,
        squad=SquadConfig(members=["crown", "helm", "dorothy", "siren", None], target_index=2),
    )
    context = SimulationContext.create(config)

    with Simulation(context) as simulation:
        summary = simulation.run()

    assert summary.character_id == "dorothy"
    assert summary.shots > 0
    assert summary.dps > 0


def test_combat_log_entries_reach_the_bus():
    simulation = Simulation(_context(["rifle"]))
    logged = _listen(simulation, EVENT_UI_LOG)

    simulation.run()
    simulation.close()

    kinds = [payload["entry"].kind for payload in logged]
    assert simulation.combat_system.log is simulation.combat_log
    assert kinds.count(LOG_DAMAGE) == 6
    assert kinds.count(LOG_RELOAD) == 1
    assert kinds[-1] == LOG_SYSTEM
    assert len(simulation.combat_log) == len(logged)


def test_recorded_run_keeps_combat_events():
    simulation = Simulation(_context(["rifle"]), record_events=[EVENT_DAMAGE, EVENT_RELOAD_START])

    simulation.run()
    simulation.close()

    recording = simulation.recording
    assert recording.name == "run-0"
    assert [event.name for event in recording.events] == [EVENT_DAMAGE] * 6 + [EVENT_RELOAD_START]
    assert not simulation.recorder.recording


def test_batch_runner_collects_recordings():
    result = BatchRunner(_context(["rifle"], run_count=2), record_events=[EVENT_DAMAGE]).run()

    assert [recording.name for recording in result.recordings] == ["run-0", "run-1"]
    assert all(len(recording.events) == 6 for recording in result.recordings)


def test_batch_without_recording_has_no_recordings():
    result = BatchRunner(_context(["rifle"])).run()

    assert result.recordings == []
