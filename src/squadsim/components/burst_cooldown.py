from dataclasses import dataclass


@dataclass(slots=True)
class BurstCooldown:
    """Simulation time at which the member may burst again."""

    ready_at: float = 0.0
    uses: int = 0
