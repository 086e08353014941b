from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Mapping, Union

DURATION_PERMANENT = "permanent"
DURATION_TIME = "time"
DURATION_SHOTS = "shots"
DURATION_CONDITIONAL = "conditional"
DURATION_TYPES = (DURATION_PERMANENT, DURATION_TIME, DURATION_SHOTS, DURATION_CONDITIONAL)

TARGET_SELF = "self"
TARGET_ALL_ALLIES = "all_allies"
TARGET_BURST_USERS = "burst_users"
TARGET_NON_BURST_USERS = "non_burst_users"
TARGET_ENEMY = "enemy"
TARGET_MODES = (TARGET_SELF, TARGET_ALL_ALLIES, TARGET_BURST_USERS, TARGET_NON_BURST_USERS, TARGET_ENEMY)

SCOPE_SELF = "self"
SCOPE_GLOBAL = "global"

MODIFIER_FLAT = "flat"
MODIFIER_PERCENT = "percent"
MODIFIER_FLAG = "flag"


@dataclass(frozen=True, slots=True)
class StatModifier:
    """One stat contribution of a buff.

    ``relative_to_source`` marks values expressed as a fraction of the buff
    source's base attack; they are resolved when totals are calculated.
    """

    value: float
    kind: str = MODIFIER_PERCENT
    relative_to_source: bool = False


@dataclass(frozen=True, slots=True)
class BuffDuration:
    type: str = DURATION_PERMANENT
    value: float = 0.0


# ---------------------------------------------------------------------------
# Trigger variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EventTrigger:
    modality: ClassVar[str] = "event"

    id: str
    event: str
    scope: str | None = None


@dataclass(frozen=True, slots=True)
class AccumulatorTrigger:
    modality: ClassVar[str] = "accumulator"

    id: str
    source: str
    threshold: float
    reset_on_trigger: bool = False


@dataclass(frozen=True, slots=True)
class PeriodicTrigger:
    modality: ClassVar[str] = "periodic"

    id: str
    interval: float
    condition: str | None = None


@dataclass(frozen=True, slots=True)
class StateTrigger:
    """Continuous condition, evaluated as a high-frequency periodic check."""

    modality: ClassVar[str] = "state"

    id: str
    condition: str


Trigger = Union[EventTrigger, AccumulatorTrigger, PeriodicTrigger, StateTrigger]


# ---------------------------------------------------------------------------
# Effect variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BuffEffect:
    kind: ClassVar[str] = "buff"

    stats: Mapping[str, StatModifier]
    duration: BuffDuration = BuffDuration()
    buff_id: str | None = None
    target: str = TARGET_SELF
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class StackEffect:
    kind: ClassVar[str] = "stack"

    buff_id: str
    stats: Mapping[str, StatModifier]
    duration: BuffDuration = BuffDuration()
    max_stacks: int = 20
    on_max_stacks: tuple = ()
    target: str = TARGET_SELF
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class ReplaceAttackEffect:
    kind: ClassVar[str] = "replace_attack"

    shots: int
    pellets_per_shot: int | None = None
    penetration: bool = False
    target: str = TARGET_SELF
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class InstantDamageEffect:
    kind: ClassVar[str] = "instant_damage"

    multiplier: float
    target: str = TARGET_ENEMY
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class MultiHitDamageEffect:
    kind: ClassVar[str] = "multi_hit_damage"

    multiplier: float
    hits: int
    target: str = TARGET_ENEMY
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class HealEffect:
    kind: ClassVar[str] = "heal"

    amount: float
    basis: str = "maxHpPercent"
    target: str = TARGET_SELF
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class BurstChargeEffect:
    kind: ClassVar[str] = "burst_charge"

    amount: float
    target: str = TARGET_ALL_ALLIES
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class AmmoChargeEffect:
    kind: ClassVar[str] = "ammo_charge"

    amount: float
    target: str = TARGET_ALL_ALLIES
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class BurstCooldownReductionEffect:
    kind: ClassVar[str] = "burst_cooldown_reduction"

    amount: float
    target: str = TARGET_ALL_ALLIES
    trigger_id: str | None = None


@dataclass(frozen=True, slots=True)
class TransformBuffEffect:
    kind: ClassVar[str] = "transform_buff"

    from_buff_id: str
    to_buff_id: str
    new_stats: Mapping[str, StatModifier] = field(default_factory=dict)
    target: str = TARGET_SELF
    trigger_id: str | None = None


Effect = Union[
    BuffEffect,
    StackEffect,
    ReplaceAttackEffect,
    InstantDamageEffect,
    MultiHitDamageEffect,
    HealEffect,
    BurstChargeEffect,
    AmmoChargeEffect,
    BurstCooldownReductionEffect,
    TransformBuffEffect,
]


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SkillDefinition:
    id: str
    slot: str
    name: str = ""
    triggers: tuple = ()
    effects: tuple = ()

    def effects_for(self, trigger_id: str) -> list:
        """``(index, effect)`` pairs bound to ``trigger_id`` or unbound, in declaration order.

        The index is the position in ``effects`` and keys default buff ids.
        """
        return [
            (index, effect)
            for index, effect in enumerate(self.effects)
            if effect.trigger_id is None or effect.trigger_id == trigger_id
        ]


@dataclass(frozen=True, slots=True)
class BaseStats:
    atk: float
    weapon_coef: float
    base_ammo: int
    attack_interval: float
    reload_time: float
    base_pellets: int = 1
    charge_multiplier: float = 0.0
    penetration: bool = False


@dataclass(frozen=True, slots=True)
class CharacterDefinition:
    """Static character record. Never mutated during a run."""

    id: str
    name: str
    weapon_class: str
    base_stats: BaseStats
    burst_position: int | None = None
    burst_cooldown: float = 20.0
    skills: tuple = ()

    @property
    def charge_capable(self) -> bool:
        return self.base_stats.charge_multiplier > 0

    def skill(self, slot: str) -> SkillDefinition | None:
        for skill in self.skills:
            if skill.slot == slot:
                return skill
        return None
