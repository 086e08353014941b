from dataclasses import dataclass, field


@dataclass(slots=True)
class BattleState:
    """Squad-wide state shared by every system during one run."""

    members: list[str] = field(default_factory=list)
    target_id: str | None = None
    full_burst: bool = False
    full_burst_started_at: float | None = None
    full_burst_count: int = 0
    burst_users: list[str] = field(default_factory=list)
    burst_cycle: int = 0
    burst_gauge: float = 0.0
    counters: dict[str, float] = field(default_factory=lambda: {"bulletsConsumed": 0})
