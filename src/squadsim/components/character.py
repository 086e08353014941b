from dataclasses import dataclass

from squadsim.effects.definitions import CharacterDefinition


@dataclass(slots=True)
class Character:
    """Marks a squad member entity and links it to its static definition."""

    character_id: str
    definition: CharacterDefinition
    slot: int = 0
