"""Parse raw character records into definition objects.

Raw records use the camelCase keys of the character data files. Malformed
records raise ``CharacterDataError``; unknown effect kinds are logged and
dropped so the rest of the skill still loads.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping

from squadsim.constants import DEFAULT_PERIODIC_INTERVAL, DEFAULT_STACK_LIMIT, WEAPON_CLASSES
from squadsim.effects.definitions import (
    DURATION_TYPES,
    TARGET_ENEMY,
    TARGET_MODES,
    AccumulatorTrigger,
    AmmoChargeEffect,
    BaseStats,
    BuffDuration,
    BuffEffect,
    BurstChargeEffect,
    BurstCooldownReductionEffect,
    CharacterDefinition,
    EventTrigger,
    HealEffect,
    InstantDamageEffect,
    MultiHitDamageEffect,
    PeriodicTrigger,
    ReplaceAttackEffect,
    SkillDefinition,
    StackEffect,
    StateTrigger,
    StatModifier,
    TransformBuffEffect,
)
from squadsim.errors import CharacterDataError

logger = logging.getLogger(__name__)

DEFAULT_CHARACTER_DIR = Path(__file__).resolve().parents[1] / "data" / "characters"

_TARGET_ALIASES = {"random_enemies": TARGET_ENEMY}
_EFFECT_ALIASES = {"burst_damage": "instant_damage"}


def load_character_definitions(directory: Path | str | None = None) -> Dict[str, CharacterDefinition]:
    """Load every ``*.json`` record in ``directory`` keyed by character id.

    Files that fail to parse are logged and skipped.
    """
    root = Path(directory) if directory is not None else DEFAULT_CHARACTER_DIR
    definitions: Dict[str, CharacterDefinition] = {}
    for path in sorted(root.glob("*.json")):
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
            definition = parse_character(raw)
        except (OSError, json.JSONDecodeError, CharacterDataError) as exc:
            logger.error("Skipping character file %s: %s", path.name, exc)
            continue
        if definition.id in definitions:
            logger.error("Duplicate character id '%s' in %s; keeping the first", definition.id, path.name)
            continue
        definitions[definition.id] = definition
    logger.info("Loaded %d character definitions from %s", len(definitions), root)
    return definitions


def parse_character(raw: Mapping[str, Any]) -> CharacterDefinition:
    try:
        character_id = str(raw["id"])
        weapon_class = str(raw["weaponType"])
        stats = raw["baseStats"]
        base_stats = BaseStats(
            atk=float(stats["atk"]),
            weapon_coef=float(stats["weaponCoef"]),
            base_ammo=int(stats["baseAmmo"]),
            attack_interval=float(stats["attackInterval"]),
            reload_time=float(stats["reloadTime"]),
            base_pellets=int(stats.get("basePellets", 1)),
            charge_multiplier=float(stats.get("chargeMultiplier", 0.0)),
            penetration=bool(stats.get("penetration", False)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise CharacterDataError(f"character record {raw.get('id', '?')!r} is malformed: {exc}") from exc
    if weapon_class not in WEAPON_CLASSES:
        raise CharacterDataError(f"character '{character_id}' has unknown weapon class '{weapon_class}'")
    if base_stats.base_ammo <= 0 or base_stats.attack_interval <= 0:
        raise CharacterDataError(f"character '{character_id}' needs positive ammo and attack interval")
    burst_position = raw.get("burstPosition")
    skills = tuple(
        _parse_skill(character_id, slot, skill_raw) for slot, skill_raw in (raw.get("skills") or {}).items()
    )
    return CharacterDefinition(
        id=character_id,
        name=str(raw.get("name", character_id)),
        weapon_class=weapon_class,
        base_stats=base_stats,
        burst_position=int(burst_position) if burst_position is not None else None,
        burst_cooldown=float(raw.get("burstCooldown", 20.0)),
        skills=skills,
    )


def _parse_skill(character_id: str, slot: str, raw: Mapping[str, Any]) -> SkillDefinition:
    skill_id = str(raw.get("id", f"{character_id}_{slot}"))
    triggers = tuple(_parse_trigger(skill_id, trigger) for trigger in raw.get("triggers", ()))
    effects = []
    for effect_raw in raw.get("effects", ()):
        effect = parse_effect(effect_raw, context=skill_id)
        if effect is not None:
            effects.append(effect)
    return SkillDefinition(id=skill_id, slot=slot, name=str(raw.get("name", "")), triggers=triggers, effects=tuple(effects))


def _parse_trigger(skill_id: str, raw: Mapping[str, Any]):
    trigger_type = raw.get("type")
    trigger_id = str(raw.get("id", trigger_type))
    try:
        if trigger_type == "event":
            return EventTrigger(id=trigger_id, event=str(raw["event"]), scope=raw.get("scope"))
        if trigger_type == "accumulator":
            return AccumulatorTrigger(
                id=trigger_id,
                source=str(raw["source"]),
                threshold=float(raw["threshold"]),
                reset_on_trigger=bool(raw.get("resetOnTrigger", False)),
            )
        if trigger_type == "periodic":
            return PeriodicTrigger(
                id=trigger_id,
                interval=float(raw.get("interval", DEFAULT_PERIODIC_INTERVAL)),
                condition=raw.get("condition"),
            )
        if trigger_type == "state":
            continuous = bool(raw.get("continuous", True))
            if not continuous:
                # A one-shot state check is a periodic trigger with the default interval.
                return PeriodicTrigger(id=trigger_id, interval=DEFAULT_PERIODIC_INTERVAL, condition=str(raw["condition"]))
            return StateTrigger(id=trigger_id, condition=str(raw["condition"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise CharacterDataError(f"trigger '{trigger_id}' of {skill_id} is malformed: {exc}") from exc
    raise CharacterDataError(f"trigger '{trigger_id}' of {skill_id} has unknown type {trigger_type!r}")


def parse_effect(raw: Mapping[str, Any], *, context: str = ""):
    """Build an effect variant from a raw record, or return None for unknown kinds."""
    kind = _EFFECT_ALIASES.get(raw.get("type"), raw.get("type"))
    target = _TARGET_ALIASES.get(raw.get("target"), raw.get("target"))
    trigger_id = raw.get("triggerId")
    if target is not None and target not in TARGET_MODES:
        raise CharacterDataError(f"{context}: unknown effect target {target!r}")
    common: Dict[str, Any] = {"trigger_id": trigger_id}
    if target is not None:
        common["target"] = target
    try:
        if kind == "buff":
            return BuffEffect(
                stats=parse_stats(raw.get("stats") or {}),
                duration=parse_duration(raw.get("duration")),
                buff_id=raw.get("buffId"),
                **common,
            )
        if kind == "stack":
            return StackEffect(
                buff_id=str(raw["buffId"]),
                stats=parse_stats(raw.get("stats") or {}),
                duration=parse_duration(raw.get("duration")),
                max_stacks=int(raw.get("maxStacks", DEFAULT_STACK_LIMIT)),
                on_max_stacks=tuple(
                    effect
                    for effect in (parse_effect(sub, context=context) for sub in raw.get("onMaxStacks", ()))
                    if effect is not None
                ),
                **common,
            )
        if kind == "replace_attack":
            modifiers = raw.get("modifiers") or {}
            pellets = modifiers.get("pelletsPerShot")
            return ReplaceAttackEffect(
                shots=int((raw.get("duration") or {}).get("value", 1)),
                pellets_per_shot=int(pellets) if pellets is not None else None,
                penetration=bool(modifiers.get("penetration", False)),
                **common,
            )
        if kind == "instant_damage":
            return InstantDamageEffect(multiplier=_amount(raw["damage"]), **common)
        if kind == "multi_hit_damage":
            return MultiHitDamageEffect(multiplier=_amount(raw["damage"]), hits=int(raw.get("hits", 1)), **common)
        if kind == "heal":
            amount = raw.get("amount", 0.0)
            basis = amount.get("type", "maxHpPercent") if isinstance(amount, Mapping) else "maxHpPercent"
            return HealEffect(amount=_amount(amount), basis=basis, **common)
        if kind == "burst_charge":
            return BurstChargeEffect(amount=_amount(raw.get("amount", 0.0)), **common)
        if kind == "ammo_charge":
            return AmmoChargeEffect(amount=_amount(raw.get("amount", 0.0)), **common)
        if kind == "burst_cooldown_reduction":
            return BurstCooldownReductionEffect(amount=_amount(raw.get("amount", 0.0)), **common)
        if kind == "transform_buff":
            return TransformBuffEffect(
                from_buff_id=str(raw["fromBuffId"]),
                to_buff_id=str(raw["toBuffId"]),
                new_stats=parse_stats(raw.get("newStats") or {}),
                **common,
            )
    except (KeyError, TypeError, ValueError) as exc:
        raise CharacterDataError(f"{context}: effect {kind!r} is malformed: {exc}") from exc
    logger.warning("%s: ignoring unsupported effect type %r", context, raw.get("type"))
    return None


def parse_stats(raw: Mapping[str, Any]) -> Dict[str, StatModifier]:
    stats: Dict[str, StatModifier] = {}
    for name, value in raw.items():
        if isinstance(value, StatModifier):
            stats[name] = value
        elif isinstance(value, Mapping):
            stats[name] = StatModifier(
                value=float(value.get("value", 0.0)),
                kind=str(value.get("type", "percent")),
                relative_to_source=value.get("source") is not None,
            )
        else:
            stats[name] = StatModifier(value=float(value))
    return stats


def parse_duration(raw: Mapping[str, Any] | None) -> BuffDuration:
    if not raw:
        return BuffDuration()
    duration_type = str(raw.get("type", "permanent"))
    if duration_type not in DURATION_TYPES:
        raise CharacterDataError(f"unknown duration type {duration_type!r}")
    return BuffDuration(type=duration_type, value=float(raw.get("value", 0.0)))


def _amount(raw: Any) -> float:
    if isinstance(raw, Mapping):
        return float(raw.get("value", 0.0))
    return float(raw)
