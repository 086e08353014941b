from dataclasses import dataclass, field


@dataclass(slots=True)
class BuffList:
    """Holds references to buff entities that currently modify a target."""

    target_id: str
    buff_entities: list[int] = field(default_factory=list)
