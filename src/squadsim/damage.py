"""
damage.py

Damage resolution for a single hit and for a full shot.
----------------------------------------------------------
The per-hit formula folds its terms in a fixed order:
- effective attack = base attack x (1 + attack%) + fixed attack
- floor: if effective attack - defense < 1 the hit deals exactly 1
- base damage = (effective attack - defense) x weapon coefficient
- crit / core / optimal distance / full burst bonuses (additive group)
- damage increase / part / penetration / dot / def-ignore (additive group)
- charge multiplier for charge-capable weapons
- elite multiplier
- received damage (and distributed damage)
- collection damage multiplier
Every intermediate stays a float; rounding happens once at the end.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Mapping

from squadsim.constants import (
    BASE_ACCURACY,
    BASE_CRIT_RATE,
    BASE_CRIT_DAMAGE,
    COLLECTION_BONUS,
    CORE_HIT_BONUS,
    DEFAULT_ENEMY_DEFENSE,
    ELITE_BASE_MULTIPLIER,
    ELITE_CODE_BONUS,
    FULL_BURST_BONUS,
    GUARANTEED_CORE_CLASSES,
    MIN_SPREAD,
    OPTIMAL_DISTANCE,
    OPTIMAL_DISTANCE_BONUS,
    SPREAD_COEFFICIENT,
)
from squadsim.effects.definitions import CharacterDefinition


@dataclass(frozen=True, slots=True)
class HitFlags:
    crit: bool = False
    core: bool = False
    optimal_distance: bool = False
    full_burst: bool = False
    part: bool = False
    penetration: bool = False
    dot: bool = False
    def_ignore: bool = False
    charge: bool = False
    elite: bool = False
    distributed: bool = False


@dataclass(frozen=True, slots=True)
class DamageSettings:
    """Run-wide inputs of the damage pipeline."""

    enemy_defense: float = DEFAULT_ENEMY_DEFENSE
    distance: int = 2
    core_size: int = 30
    elite: bool = True


@dataclass(frozen=True, slots=True)
class ShotResult:
    damage: int
    pellets: int
    crits: int
    core_hits: int
    charged: bool = False


def collection_bonus(weapon_class: str) -> Mapping[str, float]:
    return COLLECTION_BONUS.get(
        weapon_class,
        {"coreBonus": 0.0, "chargeRatio": 0.0, "damageMultiplier": 1.0, "maxAmmo": 0.0},
    )


def compute_hit_damage(
    base_atk: float,
    enemy_defense: float,
    weapon_coef: float,
    charge_coef: float,
    buffs: Mapping[str, float],
    flags: HitFlags,
    collection: Mapping[str, float],
) -> float:
    """Unrounded damage of one hit."""
    total_atk = base_atk * (1 + buffs.get("atkPercent", 0.0)) + buffs.get("fixedATK", 0.0)
    if total_atk - enemy_defense < 1:
        return 1.0

    damage = (total_atk - enemy_defense) * weapon_coef

    damage *= (
        1
        + flags.crit * (BASE_CRIT_DAMAGE + buffs.get("critDamage", 0.0))
        + flags.core * (CORE_HIT_BONUS + buffs.get("coreBonus", 0.0) + collection.get("coreBonus", 0.0))
        + flags.optimal_distance * (OPTIMAL_DISTANCE_BONUS + buffs.get("distanceBonus", 0.0))
        + flags.full_burst * FULL_BURST_BONUS
    )

    damage *= (
        1
        + buffs.get("damageIncrease", 0.0)
        + flags.part * buffs.get("partDamage", 0.0)
        + flags.penetration * buffs.get("penetrationDamage", 0.0)
        + flags.dot * buffs.get("dotDamage", 0.0)
        + flags.def_ignore * buffs.get("defIgnoreDamage", 0.0)
    )

    if flags.charge:
        charge = charge_coef + buffs.get("chargeDamage", 0.0)
        damage *= charge * (1 + collection.get("chargeRatio", 0.0) + buffs.get("chargeRatio", 0.0))

    if flags.elite:
        damage *= ELITE_BASE_MULTIPLIER + ELITE_CODE_BONUS + buffs.get("eliteDamage", 0.0)

    damage *= 1 + buffs.get("receivedDamage", 0.0) + flags.distributed * buffs.get("distributedDamage", 0.0)
    damage *= collection.get("damageMultiplier", 1.0)
    return damage


def resolve_damage(
    base_atk: float,
    enemy_defense: float,
    weapon_coef: float,
    charge_coef: float,
    buffs: Mapping[str, float],
    flags: HitFlags,
    collection: Mapping[str, float],
) -> int:
    return round_half_up(compute_hit_damage(base_atk, enemy_defense, weapon_coef, charge_coef, buffs, flags, collection))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def spread_diameter(weapon_class: str, accuracy: float) -> float:
    base = BASE_ACCURACY.get(weapon_class, 50)
    coefficient = SPREAD_COEFFICIENT.get(weapon_class, 0.5)
    return max(MIN_SPREAD, 100 / (1 + (base + accuracy) / 100) * coefficient)


def core_hit_probability(weapon_class: str, accuracy: float, core_size: float) -> float:
    """Chance that one pellet lands on the core.

    Pellets scatter as a 2D Gaussian centred on the core; the spread
    diameter covers three sigma for shotguns and four for other classes.
    """
    if weapon_class in GUARANTEED_CORE_CLASSES:
        return 1.0
    if core_size <= 0:
        return 0.0
    spread = spread_diameter(weapon_class, accuracy)
    if spread <= core_size:
        return 1.0
    sigma = spread / (3 if weapon_class == "SG" else 4)
    radius = core_size / 2
    return 1 - math.exp(-(radius**2) / (2 * sigma**2))


def is_optimal_distance(weapon_class: str, distance: int) -> bool:
    return OPTIMAL_DISTANCE.get(weapon_class) == distance


def resolve_shot(
    definition: CharacterDefinition,
    buffs: Mapping[str, float],
    settings: DamageSettings,
    rng: random.Random,
    *,
    full_burst: bool = False,
    pellets_override: int | None = None,
    penetration: bool | None = None,
) -> ShotResult:
    """Resolve one trigger pull, rolling crit and core independently per pellet."""
    stats = definition.base_stats
    weapon_class = definition.weapon_class
    if pellets_override is not None:
        pellets = max(1, pellets_override)
    else:
        pellets = max(1, stats.base_pellets + int(buffs.get("pelletBonus", 0.0)))
    collection = collection_bonus(weapon_class)
    crit_rate = buffs.get("critRate", BASE_CRIT_RATE) + buffs.get("helmCritBonus", 0.0)
    core_rate = core_hit_probability(weapon_class, buffs.get("accuracy", 0.0), settings.core_size)
    charged = definition.charge_capable
    charge_coef = stats.charge_multiplier if charged else 0.0
    penetrating = stats.penetration if penetration is None else penetration
    optimal = is_optimal_distance(weapon_class, settings.distance)
    distributed = buffs.get("distributedDamage", 0.0) > 0

    total = 0.0
    crits = 0
    core_hits = 0
    for _ in range(pellets):
        is_crit = rng.random() < crit_rate
        is_core = rng.random() < core_rate
        flags = HitFlags(
            crit=is_crit,
            core=is_core,
            optimal_distance=optimal,
            full_burst=full_burst,
            penetration=penetrating,
            charge=charged,
            elite=settings.elite,
            distributed=distributed,
        )
        total += compute_hit_damage(
            stats.atk,
            settings.enemy_defense,
            stats.weapon_coef,
            charge_coef,
            buffs,
            flags,
            collection,
        )
        crits += is_crit
        core_hits += is_core

    if weapon_class == "SG":
        total /= pellets
    return ShotResult(
        damage=round_half_up(total),
        pellets=pellets,
        crits=crits,
        core_hits=core_hits,
        charged=charged,
    )


def resolve_skill_damage(
    definition: CharacterDefinition,
    multiplier: float,
    buffs: Mapping[str, float],
    settings: DamageSettings,
    *,
    full_burst: bool = False,
) -> int:
    """Damage of a skill hit scaled by ``multiplier`` of the source's attack."""
    flags = HitFlags(full_burst=full_burst, elite=settings.elite)
    return resolve_damage(
        definition.base_stats.atk,
        settings.enemy_defense,
        multiplier,
        0.0,
        buffs,
        flags,
        collection_bonus(definition.weapon_class),
    )
