from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping

from squadsim.config import SimulationConfig
from squadsim.effects.definitions import CharacterDefinition
from squadsim.effects.loader import load_character_definitions

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SimulationContext:
    """Everything a run reads but never mutates, passed in explicitly."""

    definitions: Mapping[str, CharacterDefinition]
    config: SimulationConfig
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def create(
        cls,
        config: SimulationConfig,
        *,
        character_dir: Path | str | None = None,
        definitions: Mapping[str, CharacterDefinition] | None = None,
    ) -> "SimulationContext":
        config.validate()
        if definitions is None:
            definitions = load_character_definitions(character_dir)
        return cls(definitions=dict(definitions), config=config, rng=random.Random(config.seed))

    def squad(self) -> List[tuple[int, CharacterDefinition]]:
        """Occupied slots with a loaded definition; unknown ids are logged and skipped."""
        members = []
        for slot, character_id in self.config.squad.active_members():
            definition = self.definitions.get(character_id)
            if definition is None:
                logger.warning("No definition for %s in slot %d; skipping", character_id, slot)
                continue
            members.append((slot, definition))
        return members

    @property
    def target_id(self) -> str | None:
        return self.config.squad.target_id
