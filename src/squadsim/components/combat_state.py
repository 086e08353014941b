from dataclasses import dataclass, field


@dataclass(slots=True)
class ReplaceAttack:
    """Per-shot attack override installed by a skill for a number of shots."""

    shots_remaining: int
    pellets_per_shot: int | None = None
    penetration: bool = False


@dataclass(slots=True)
class CombatState:
    """Mutable per-run combat counters for one squad member.

    ``counters`` holds the values accumulator triggers read through
    ``self.<name>`` sources.
    """

    current_ammo: int
    max_ammo: int
    reloading: bool = False
    shots_fired: int = 0
    total_damage: int = 0
    skill_damage: int = 0
    total_pellets: int = 0
    core_hits: int = 0
    crit_hits: int = 0
    reload_count: int = 0
    skill1_count: int = 0
    heals_received: int = 0
    replace_attack: ReplaceAttack | None = None
    counters: dict[str, float] = field(default_factory=lambda: {"attackCount": 0, "pelletsHit": 0})
