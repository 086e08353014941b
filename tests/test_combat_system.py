import esper
import pytest

from squadsim.combat_log import LOG_RELOAD, CombatLog
from squadsim.components.battle_state import BattleState
from squadsim.components.burst_cooldown import BurstCooldown
from squadsim.damage import DamageSettings, round_half_up
from squadsim.effects.definitions import BuffDuration, StatModifier
from squadsim.events.bus import (
    EVENT_AMMO_CHARGE,
    EVENT_ATTACK,
    EVENT_BURST_CHARGE,
    EVENT_BURST_COOLDOWN_REDUCE,
    EVENT_BURST_USE,
    EVENT_DAMAGE,
    EVENT_FULL_BURST,
    EVENT_FULL_BURST_END,
    EVENT_FULL_CHARGE,
    EVENT_LAST_BULLET,
    EVENT_RELOAD,
    EVENT_RELOAD_START,
    EVENT_SHOT_FIRED,
    EVENT_UI_LOG,
)
from squadsim.events.mediator import REQUEST_CALCULATE_INSTANT_DAMAGE, REQUEST_GET_SQUAD_STATE
from squadsim.systems.buff_system import BuffSystem
from squadsim.systems.combat_system import CombatSystem
from squadsim.world import find_member, member_components

BASE_SHOT = round_half_up((100000.0 - 6070.0) * (1.1 + 0.1909))


@pytest.fixture
def battle():
    state = BattleState()
    esper.create_entity(state)
    return state


@pytest.fixture
def combat(bus, mediator, scheduler, never_rng, battle):
    buffs = BuffSystem(bus, mediator, clock=lambda: scheduler.now)
    system = CombatSystem(bus, mediator, scheduler, DamageSettings(), never_rng, CombatLog(bus))
    return system, buffs


def _run(scheduler, bus, until):
    def dispatch(event):
        payload = dict(event.payload)
        payload["time"] = event.time
        bus.emit(event.type, **payload)

    scheduler.process_until(until, dispatch)


def test_member_fires_magazine_then_reloads(bus, scheduler, combat, definition_factory, record):
    system, _buffs = combat
    damage = record(EVENT_DAMAGE)
    reloads = record(EVENT_RELOAD_START)
    last_bullets = record(EVENT_LAST_BULLET)
    system.add_member(definition_factory("rifle", ammo=6, interval=1.0, reload_time=20.0), 0)
    system.start()

    _run(scheduler, bus, 10.0)

    state = member_components("rifle")[2]
    assert state.shots_fired == 6
    assert [d["time"] for d in damage] == pytest.approx([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    assert {d["damage"] for d in damage} == {BASE_SHOT}
    assert [r["time"] for r in reloads] == pytest.approx([6.0])
    assert state.reload_count == 1
    assert state.reloading
    assert state.total_damage == 6 * BASE_SHOT
    assert [b["time"] for b in last_bullets] == pytest.approx([6.0])


def test_reload_refills_and_resumes_attacking(bus, scheduler, combat, definition_factory, record):
    system, _buffs = combat
    shots = record(EVENT_SHOT_FIRED)
    system.add_member(definition_factory("rifle", ammo=2, interval=1.0, reload_time=1.5), 0)
    system.start()

    _run(scheduler, bus, 4.0)

    assert [s["time"] for s in shots] == pytest.approx([1.0, 2.0, 3.5])
    state = member_components("rifle")[2]
    assert state.current_ammo == 1
    assert not state.reloading


def test_attack_on_empty_magazine_never_resolves_a_shot(bus, scheduler, combat, definition_factory, record):
    system, _buffs = combat
    damage = record(EVENT_DAMAGE)
    system.add_member(definition_factory("rifle"), 0)
    state = member_components("rifle")[2]
    state.current_ammo = 0

    bus.emit(EVENT_ATTACK, character_id="rifle", time=0.0)

    assert damage == []
    assert [event.type for event in scheduler.advance(0.0)] == [EVENT_RELOAD]


def test_attack_during_reload_is_ignored(bus, combat, definition_factory, record):
    system, _buffs = combat
    shots = record(EVENT_SHOT_FIRED)
    system.add_member(definition_factory("rifle"), 0)
    member_components("rifle")[2].reloading = True

    bus.emit(EVENT_ATTACK, character_id="rifle", time=0.0)

    assert shots == []


def test_attack_for_unknown_character_is_dropped(bus, combat, record):
    shots = record(EVENT_SHOT_FIRED)

    bus.emit(EVENT_ATTACK, character_id="ghost", time=0.0)

    assert shots == []


def test_attack_speed_shortens_interval(bus, scheduler, combat, definition_factory, record):
    system, buffs = combat
    shots = record(EVENT_SHOT_FIRED)
    system.add_member(definition_factory("rifle", ammo=10), 0)
    buffs.apply("haste", "rifle", "rifle", {"attackSpeed": StatModifier(1.0)}, BuffDuration())
    system.start()

    _run(scheduler, bus, 2.0)

    assert [s["time"] for s in shots] == pytest.approx([1.0, 1.5, 2.0])


def test_enemy_received_damage_adds_to_every_attacker(bus, scheduler, combat, definition_factory, record):
    system, buffs = combat
    damage = record(EVENT_DAMAGE)
    system.add_member(definition_factory("rifle"), 0)
    buffs.apply("mark", "enemy", "rifle", {"receivedDamage": StatModifier(0.5)}, BuffDuration())

    bus.emit(EVENT_ATTACK, character_id="rifle", time=0.0)

    assert damage[0]["damage"] == round_half_up((100000.0 - 6070.0) * (1.1 + 0.1909) * 1.5)


def test_max_ammo_includes_collection_and_buffs(combat, definition_factory):
    system, buffs = combat
    buffs.set_static_buffs("gunner", {"maxAmmo": 0.5})

    system.add_member(definition_factory("gunner", weapon_class="MG", ammo=100), 0)

    assert member_components("gunner")[2].max_ammo == 165


def test_charge_weapon_reports_full_charge(bus, combat, definition_factory, record):
    system, _buffs = combat
    charged = record(EVENT_FULL_CHARGE)
    system.add_member(definition_factory("lance", charge_multiplier=2.5), 0)

    bus.emit(EVENT_ATTACK, character_id="lance", time=0.0)

    assert [c["character_id"] for c in charged] == ["lance"]


def test_counters_track_shots_pellets_and_bullets(bus, combat, battle, definition_factory):
    system, _buffs = combat
    system.add_member(definition_factory("scatter", weapon_class="SG", pellets=10, ammo=9), 0)

    bus.emit(EVENT_ATTACK, character_id="scatter", time=0.0)

    state = member_components("scatter")[2]
    assert state.counters == {"attackCount": 1, "pelletsHit": 10}
    assert state.total_pellets == 10
    assert battle.counters["bulletsConsumed"] == 1
    assert state.current_ammo == 8


def test_ammo_charge_is_capped_at_max(bus, combat, definition_factory):
    system, _buffs = combat
    system.add_member(definition_factory("rifle", ammo=6), 0)
    state = member_components("rifle")[2]

    state.current_ammo = 1
    bus.emit(EVENT_AMMO_CHARGE, target_id="rifle", amount=0.5, time=0.0)
    assert state.current_ammo == 4

    bus.emit(EVENT_AMMO_CHARGE, target_id="rifle", amount=0.5, time=0.0)
    assert state.current_ammo == 6


def test_full_burst_window_timing(bus, mediator, scheduler, combat, battle, definition_factory):
    system, _buffs = combat
    order = []
    for name in (EVENT_BURST_USE, EVENT_FULL_BURST, EVENT_FULL_BURST_END):
        bus.subscribe(name, lambda sender, _name=name, **payload: order.append((_name, payload["time"])))
    for slot, position in enumerate((1, 2, 3)):
        system.add_member(definition_factory(f"m{position}", ammo=500, burst_position=position), slot)
    system.start()

    _run(scheduler, bus, 5.2)
    assert not battle.full_burst

    _run(scheduler, bus, 5.29)
    assert battle.full_burst
    assert [name for name, _time in order] == [EVENT_BURST_USE] * 3 + [EVENT_FULL_BURST]
    assert [time for _name, time in order] == pytest.approx([5.0, 5.143, 5.286, 5.286])
    assert battle.burst_users == ["m1", "m2", "m3"]
    assert mediator.request(REQUEST_GET_SQUAD_STATE)["full_burst_count"] == 1

    _run(scheduler, bus, 15.28)
    assert battle.full_burst

    _run(scheduler, bus, 15.29)
    assert not battle.full_burst
    assert order[-1][0] == EVENT_FULL_BURST_END
    assert order[-1][1] == pytest.approx(5.0 + 0.143 * 2 + 10.0)


def test_incomplete_formation_has_no_full_burst(bus, scheduler, combat, battle, definition_factory, record):
    system, _buffs = combat
    full = record(EVENT_FULL_BURST)
    uses = record(EVENT_BURST_USE)
    system.add_member(definition_factory("m1", ammo=500, burst_position=1), 0)
    system.add_member(definition_factory("m3", ammo=500, burst_position=3), 1)
    system.start()

    _run(scheduler, bus, 6.0)

    assert full == []
    assert [(u["character_id"], u["time"]) for u in uses] == [("m1", pytest.approx(5.0)), ("m3", pytest.approx(5.143))]


def test_burst_prefers_the_target_member(bus, scheduler, combat, battle, definition_factory, record):
    system, _buffs = combat
    uses = record(EVENT_BURST_USE)
    battle.target_id = "b"
    system.add_member(definition_factory("a", ammo=500, burst_position=1), 0)
    system.add_member(definition_factory("b", ammo=500, burst_position=1), 1)
    system.start()

    _run(scheduler, bus, 5.5)

    assert [u["character_id"] for u in uses] == ["b"]


def test_burst_cooldown_skips_cycles(bus, scheduler, combat, definition_factory, record):
    system, _buffs = combat
    uses = record(EVENT_BURST_USE)
    system.add_member(definition_factory("slow", ammo=500, burst_position=1, burst_cooldown=40.0), 0)
    system.start()

    _run(scheduler, bus, 46.0)

    assert [u["time"] for u in uses] == pytest.approx([5.0, 45.0])
    assert esper.component_for_entity(find_member("slow"), BurstCooldown).uses == 2


def test_cooldown_reduction_shortens_remaining_cooldown(bus, combat, definition_factory):
    system, _buffs = combat
    system.add_member(definition_factory("slow", burst_position=1), 0)
    cooldown = esper.component_for_entity(find_member("slow"), BurstCooldown)
    cooldown.ready_at = 30.0

    bus.emit(EVENT_BURST_COOLDOWN_REDUCE, source_id="x", amount=8.0, time=10.0)
    assert cooldown.ready_at == 22.0

    bus.emit(EVENT_BURST_COOLDOWN_REDUCE, source_id="x", amount=50.0, time=10.0)
    assert cooldown.ready_at == 10.0


def test_skill_damage_counts_toward_totals(bus, combat, definition_factory):
    system, _buffs = combat
    system.add_member(definition_factory("rifle"), 0)

    bus.emit(EVENT_DAMAGE, character_id="rifle", damage=500, kind="skill", time=1.0)

    state = member_components("rifle")[2]
    assert state.total_damage == 500
    assert state.skill_damage == 500


def test_mediator_resolves_instant_damage_and_squad_state(combat, mediator, battle, definition_factory):
    system, _buffs = combat
    system.add_member(definition_factory("rifle"), 0)

    damage = mediator.request(REQUEST_CALCULATE_INSTANT_DAMAGE, {"character_id": "rifle", "multiplier": 1.0})
    squad = mediator.request(REQUEST_GET_SQUAD_STATE)

    assert damage == BASE_SHOT
    assert squad == {
        "members": ["rifle"],
        "burst_users": [],
        "full_burst": False,
        "full_burst_count": 0,
        "burst_gauge": 0.0,
        "max_ammo": {"rifle": 6},
    }


def test_reload_is_logged(bus, scheduler, combat, definition_factory, record):
    system, _buffs = combat
    logs = record(EVENT_UI_LOG)
    system.add_member(definition_factory("rifle", ammo=2, reload_time=1.0), 0)
    system.start()

    _run(scheduler, bus, 3.5)

    reload_lines = [entry["entry"].message for entry in logs if entry["entry"].kind == LOG_RELOAD]
    assert reload_lines == ["[rifle] reload started (1.00s)", "[rifle] reload complete, ammo 2/2"]


def test_burst_charge_fills_the_gauge(bus, mediator, combat, battle):
    bus.emit(EVENT_BURST_CHARGE, source_id="rifle", amount=12.5, time=1.0)
    bus.emit(EVENT_BURST_CHARGE, source_id="rifle", amount=7.5, time=2.0)

    assert mediator.request(REQUEST_GET_SQUAD_STATE)["burst_gauge"] == pytest.approx(20.0)
