"""
config.py

Run configuration.
----------------------------------------------------------
`SimulationConfig` is plain data: build it directly or with
`SimulationConfig.from_mapping` (the JSON shape used by the command line),
then call `validate()` before handing it to a simulation. Validation is
eager and never clamps; every problem raises `ConfigError`.

Mapping shape:

    {
        "duration": 180, "speed": 60, "run_count": 1, "seed": null,
        "distance": 2, "core_size": 30, "elite": true,
        "cube": "reload", "enemy_defense": 6070,
        "squad": {"members": ["dorothy", null, ...], "target_index": 0},
        "overload": {"helmet": [{"type": "attack", "level": 15}], ...}
    }
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping

from squadsim.constants import (
    CUBE_DATA,
    DEFAULT_ENEMY_DEFENSE,
    EQUIPMENT_SLOTS,
    MAX_OVERLOAD_LEVEL,
    OVERLOAD_OPTIONS,
    OVERLOAD_SLOTS_PER_EQUIPMENT,
    OVERLOAD_STAT,
    SQUAD_SIZE,
    VALID_CORE_SIZES,
)
from squadsim.damage import DamageSettings
from squadsim.errors import ConfigError

# Overload stats applied as raw values rather than percentages.
RAW_OVERLOAD_STATS = {"accuracy"}

# Scalar mapping keys and the type each value is converted to.
_SCALAR_TYPES = {
    "duration": float,
    "speed": float,
    "run_count": int,
    "distance": int,
    "core_size": int,
    "enemy_defense": float,
}


@dataclass(frozen=True, slots=True)
class OverloadOption:
    type: str
    level: int

    @property
    def value(self) -> float:
        """Table value for this option, already converted to the stat's unit."""
        raw = OVERLOAD_OPTIONS[self.type][self.level - 1]
        return raw if self.type in RAW_OVERLOAD_STATS else raw / 100


@dataclass(slots=True)
class SquadConfig:
    members: List[str | None] = field(default_factory=lambda: [None] * SQUAD_SIZE)
    target_index: int = 0

    @property
    def target_id(self) -> str | None:
        if 0 <= self.target_index < len(self.members):
            return self.members[self.target_index]
        return None

    def active_members(self) -> List[tuple[int, str]]:
        return [(slot, member) for slot, member in enumerate(self.members) if member]


@dataclass(slots=True)
class SimulationConfig:
    duration: float = 180.0
    speed: float = 60.0
    run_count: int = 1
    distance: int = 2
    core_size: int = 30
    elite: bool = True
    cube: str | None = "reload"
    enemy_defense: float = DEFAULT_ENEMY_DEFENSE
    seed: int | None = None
    squad: SquadConfig = field(default_factory=SquadConfig)
    overload: Dict[str, List[OverloadOption]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "SimulationConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
        values = {key: value for key, value in raw.items() if key not in ("squad", "overload")}
        try:
            for key, convert in _SCALAR_TYPES.items():
                if key in values:
                    values[key] = convert(values[key])
            if values.get("seed") is not None:
                values["seed"] = int(values["seed"])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"malformed config value: {exc}") from exc
        squad_raw = raw.get("squad") or {}
        if not isinstance(squad_raw, Mapping):
            raise ConfigError("squad must be a mapping")
        extra = sorted(set(squad_raw) - {"members", "target_index"})
        if extra:
            raise ConfigError(f"unknown squad keys: {', '.join(extra)}")
        try:
            members = list(squad_raw.get("members", [None] * SQUAD_SIZE))
            target_index = int(squad_raw.get("target_index", 0))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"malformed squad: {exc}") from exc
        members += [None] * (SQUAD_SIZE - len(members))
        squad = SquadConfig(members=members, target_index=target_index)
        overload: Dict[str, List[OverloadOption]] = {}
        for slot, options in (raw.get("overload") or {}).items():
            try:
                overload[slot] = [OverloadOption(str(opt["type"]), int(opt["level"])) for opt in options]
            except (KeyError, TypeError, ValueError) as exc:
                raise ConfigError(f"malformed overload options for {slot}: {exc}") from exc
        return cls(**values, squad=squad, overload=overload)

    def validate(self) -> "SimulationConfig":
        if not 1 <= self.distance <= 4:
            raise ConfigError(f"distance must be 1-4, got {self.distance}")
        if self.core_size not in VALID_CORE_SIZES:
            raise ConfigError(f"core size must be one of {VALID_CORE_SIZES}, got {self.core_size}")
        if not 1 <= self.speed <= 300:
            raise ConfigError(f"speed must be 1-300, got {self.speed}")
        if not 1 <= self.run_count <= 100:
            raise ConfigError(f"run count must be 1-100, got {self.run_count}")
        if not 1 <= self.duration <= 600:
            raise ConfigError(f"duration must be 1-600 seconds, got {self.duration}")
        if not isinstance(self.elite, bool):
            raise ConfigError(f"elite must be true or false, got {self.elite!r}")
        if self.enemy_defense < 0:
            raise ConfigError(f"enemy defense must not be negative, got {self.enemy_defense}")
        if self.cube is not None and self.cube not in CUBE_DATA:
            raise ConfigError(f"unknown cube {self.cube!r}")
        self._validate_squad()
        self._validate_overload()
        return self

    def _validate_squad(self) -> None:
        squad = self.squad
        if len(squad.members) != SQUAD_SIZE:
            raise ConfigError(f"squad must have {SQUAD_SIZE} slots, got {len(squad.members)}")
        if not 0 <= squad.target_index < SQUAD_SIZE:
            raise ConfigError(f"target index must be 0-{SQUAD_SIZE - 1}, got {squad.target_index}")
        active = [member for _slot, member in squad.active_members()]
        if not active:
            raise ConfigError("squad has no members")
        if squad.target_id is None:
            raise ConfigError(f"target slot {squad.target_index} is empty")
        if len(set(active)) != len(active):
            raise ConfigError("squad members must be unique")

    def _validate_overload(self) -> None:
        for slot, options in self.overload.items():
            if slot not in EQUIPMENT_SLOTS:
                raise ConfigError(f"unknown equipment slot {slot!r}")
            if len(options) > OVERLOAD_SLOTS_PER_EQUIPMENT:
                raise ConfigError(f"{slot} has more than {OVERLOAD_SLOTS_PER_EQUIPMENT} overload options")
            seen = set()
            for option in options:
                if option.type not in OVERLOAD_OPTIONS:
                    raise ConfigError(f"unknown overload type {option.type!r} on {slot}")
                if not 1 <= option.level <= MAX_OVERLOAD_LEVEL:
                    raise ConfigError(f"overload level must be 1-{MAX_OVERLOAD_LEVEL}, got {option.level}")
                if option.type in seen:
                    raise ConfigError(f"{slot} repeats overload type {option.type!r}")
                seen.add(option.type)

    def static_buffs(self) -> Dict[str, float]:
        """Equipment and cube modifiers that are always active on the target."""
        totals: Dict[str, float] = {}
        for options in self.overload.values():
            for option in options:
                stat = OVERLOAD_STAT[option.type]
                totals[stat] = totals.get(stat, 0.0) + option.value
        if self.cube is not None:
            for stat, value in CUBE_DATA[self.cube]["effects"].items():
                totals[stat] = totals.get(stat, 0.0) + value
        return totals

    def damage_settings(self) -> DamageSettings:
        return DamageSettings(
            enemy_defense=self.enemy_defense,
            distance=self.distance,
            core_size=self.core_size,
            elite=self.elite,
        )
