import math
from dataclasses import dataclass, field

from squadsim.effects.definitions import DURATION_SHOTS, DURATION_TIME, StatModifier


@dataclass(slots=True)
class Buff:
    """Active modifier entity owned by the buff system.

    A buff is identified on its target by ``(source_id, buff_id)``.
    """

    buff_id: str
    source_id: str
    target_id: str
    duration_type: str
    duration_value: float
    start_time: float
    stats: dict[str, StatModifier] = field(default_factory=dict)
    stackable: bool = False
    max_stacks: int = 1
    stacks: int = 1
    remaining_shots: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_id, self.buff_id)

    @property
    def end_time(self) -> float:
        if self.duration_type == DURATION_TIME:
            return self.start_time + self.duration_value
        return math.inf

    def is_expired(self, now: float) -> bool:
        if self.duration_type == DURATION_TIME:
            return self.end_time < now
        if self.duration_type == DURATION_SHOTS:
            return self.remaining_shots <= 0
        return False
