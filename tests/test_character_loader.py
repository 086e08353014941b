import json

import pytest

from squadsim.effects.definitions import (
    DURATION_CONDITIONAL,
    TARGET_ENEMY,
    AccumulatorTrigger,
    BuffEffect,
    EventTrigger,
    InstantDamageEffect,
    PeriodicTrigger,
    StateTrigger,
)
from squadsim.effects.loader import load_character_definitions, parse_character, parse_effect, parse_stats
from squadsim.errors import CharacterDataError


def _raw(**overrides):
    raw = {
        "id": "tester",
        "name": "Tester",
        "weaponType": "AR",
        "burstPosition": 2,
        "burstCooldown": 20,
        "baseStats": {"atk": 1000, "weaponCoef": 1.2, "baseAmmo": 30, "attackInterval": 0.1, "reloadTime": 1.0},
        "skills": {},
    }
    raw.update(overrides)
    return raw


def test_bundled_characters_load():
    definitions = load_character_definitions()

    assert set(definitions) == {"dorothy", "crown", "helm", "siren"}
    dorothy = definitions["dorothy"]
    assert dorothy.weapon_class == "SG"
    assert dorothy.base_stats.base_pellets == 10
    assert isinstance(dorothy.skill("skill1").triggers[0], AccumulatorTrigger)


def test_parse_character_reads_base_stats():
    definition = parse_character(_raw())

    assert definition.id == "tester"
    assert definition.burst_position == 2
    assert definition.base_stats.weapon_coef == 1.2
    assert definition.base_stats.base_pellets == 1
    assert not definition.charge_capable


@pytest.mark.parametrize(
    "overrides",
    [
        {"weaponType": "BOW"},
        {"baseStats": {"atk": 1000}},
        {"baseStats": {"atk": 1, "weaponCoef": 1, "baseAmmo": 0, "attackInterval": 1, "reloadTime": 1}},
    ],
)
def test_malformed_characters_raise(overrides):
    with pytest.raises(CharacterDataError):
        parse_character(_raw(**overrides))


def test_trigger_variants():
    definition = parse_character(
        _raw(
            skills={
                "skill1": {
                    "id": "t1",
                    "triggers": [
                        {"id": "e", "type": "event", "event": "ATTACK"},
                        {"id": "a", "type": "accumulator", "source": "self.attackCount", "threshold": 10},
                        {"id": "p", "type": "periodic", "interval": 2},
                        {"id": "s", "type": "state", "condition": "isFullBurst"},
                        {"id": "once", "type": "state", "condition": "isFullBurst", "continuous": False},
                    ],
                    "effects": [],
                }
            }
        )
    )

    triggers = definition.skill("skill1").triggers
    assert [type(trigger) for trigger in triggers] == [
        EventTrigger,
        AccumulatorTrigger,
        PeriodicTrigger,
        StateTrigger,
        PeriodicTrigger,
    ]
    assert triggers[2].interval == 2.0
    assert triggers[4].condition == "isFullBurst"


def test_unknown_trigger_type_is_a_data_error():
    with pytest.raises(CharacterDataError):
        parse_character(_raw(skills={"skill1": {"triggers": [{"type": "lunar"}], "effects": []}}))


def test_effect_aliases_and_unknown_kinds():
    burst = parse_effect({"type": "burst_damage", "damage": {"value": 3.5}, "target": "random_enemies"})
    shield = parse_effect({"type": "shield", "amount": 1})

    assert isinstance(burst, InstantDamageEffect)
    assert burst.multiplier == 3.5
    assert burst.target == TARGET_ENEMY
    assert shield is None


def test_buff_effect_with_trigger_binding():
    effect = parse_effect(
        {
            "type": "buff",
            "triggerId": "in_burst",
            "buffId": "stance",
            "stats": {"atkPercent": {"value": 0.2, "type": "percent"}},
            "duration": {"type": "conditional"},
        }
    )

    assert isinstance(effect, BuffEffect)
    assert effect.trigger_id == "in_burst"
    assert effect.duration.type == DURATION_CONDITIONAL
    assert effect.stats["atkPercent"].value == 0.2


def test_unknown_effect_target_is_a_data_error():
    with pytest.raises(CharacterDataError):
        parse_effect({"type": "buff", "target": "moon"})


def test_relative_stats_are_flagged():
    stats = parse_stats({"fixedATK": {"value": 0.1, "source": "caster_atk"}, "critRate": 0.05})

    assert stats["fixedATK"].relative_to_source
    assert not stats["critRate"].relative_to_source
    assert stats["critRate"].value == 0.05


def test_bad_files_are_skipped(tmp_path):
    (tmp_path / "good.json").write_text(json.dumps(_raw()), encoding="utf-8")
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "bad.json").write_text(json.dumps(_raw(id="bad", weaponType="BOW")), encoding="utf-8")

    definitions = load_character_definitions(tmp_path)

    assert list(definitions) == ["tester"]


def test_skill_effects_for_trigger():
    definition = parse_character(
        _raw(
            skills={
                "skill2": {
                    "triggers": [{"id": "a", "type": "event", "event": "ATTACK"}],
                    "effects": [
                        {"type": "burst_charge", "amount": 1, "triggerId": "a"},
                        {"type": "burst_charge", "amount": 2, "triggerId": "b"},
                        {"type": "burst_charge", "amount": 3},
                    ],
                }
            }
        )
    )

    pairs = definition.skill("skill2").effects_for("a")

    assert [(index, effect.amount) for index, effect in pairs] == [(0, 1.0), (2, 3.0)]
