import pytest

from squadsim.components.combat_state import CombatState
from squadsim.events.bus import EVENT_TICK, EVENT_UI_UPDATE
from squadsim.statistics import StatsSystem, aggregate, summarize, summarize_run
from squadsim.world import spawn_member


def _state(**values):
    state = CombatState(current_ammo=0, max_ammo=6)
    for name, value in values.items():
        setattr(state, name, value)
    return state


def test_summarize_reports_population_statistics():
    result = summarize([10, 20, 30, 40])

    assert result["mean"] == 25.0
    assert result["min"] == 10.0
    assert result["max"] == 40.0
    assert result["std"] == pytest.approx(11.1803398875)


def test_summarize_empty_is_all_zero():
    assert summarize([]) == {"mean": 0.0, "min": 0.0, "max": 0.0, "std": 0.0}


def test_run_summary_rates_are_percent_of_pellets():
    state = _state(total_damage=1001, shots_fired=4, total_pellets=40, crit_hits=6, core_hits=10, skill_damage=1)

    summary = summarize_run("scatter", state, 10.0, anomalies=2)

    assert summary.dps == 100
    assert summary.crit_rate == pytest.approx(15.0)
    assert summary.core_hit_rate == pytest.approx(25.0)
    assert summary.to_dict()["anomalies"] == 2


def test_run_summary_without_pellets_or_time():
    summary = summarize_run("idle", _state(), 0.0)

    assert (summary.dps, summary.crit_rate, summary.core_hit_rate) == (0, 0.0, 0.0)


def test_aggregate_covers_each_headline_figure():
    runs = [
        summarize_run("a", _state(total_damage=100, shots_fired=1, total_pellets=1), 1.0),
        summarize_run("a", _state(total_damage=300, shots_fired=3, total_pellets=1, crit_hits=1), 1.0),
    ]

    result = aggregate(runs)

    assert set(result) == {"dps", "total_damage", "shots", "crit_rate", "core_hit_rate"}
    assert result["dps"]["mean"] == 200.0
    assert result["crit_rate"]["max"] == 100.0


def test_stats_system_publishes_snapshots(bus, definition_factory, record):
    updates = record(EVENT_UI_UPDATE)
    spawn_member(definition_factory("rifle"), 0, 6)
    system = StatsSystem(bus, "rifle")

    bus.emit(EVENT_TICK, time=0.5)

    assert len(updates) == 1
    assert updates[0]["snapshot"].elapsed == 0.5
    assert system.latest.dps == 0


def test_stats_system_ignores_missing_target(bus, record):
    updates = record(EVENT_UI_UPDATE)
    StatsSystem(bus, "ghost")

    bus.emit(EVENT_TICK, time=1.0)

    assert updates == []
