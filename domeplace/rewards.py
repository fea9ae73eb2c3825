"""Episode reward ledger.

Every reward event is kept, not just the running total, so an episode's
reward can be broken down by kind (overlap, close, far, fallen, toppled,
stable, bonus) and checked against the sum of its parts.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

# Event kinds
OVERLAP = "overlap"
CLOSE = "close"
FAR = "far"
FALLEN = "fallen"
TOPPLED = "toppled"
STABLE = "stable"
BONUS = "bonus"


@dataclass(frozen=True)
class RewardEvent:
    kind: str
    delta: float
    vertex_index: int | None = None


class RewardLedger:
    """Running reward total for one episode. No clamping."""

    def __init__(self):
        self.events: list[RewardEvent] = []
        self._total = 0.0

    def add_reward(self, delta: float, kind: str, vertex_index: int | None = None):
        self.events.append(RewardEvent(kind, float(delta), vertex_index))
        self._total += float(delta)

    @property
    def total(self) -> float:
        return self._total

    def count(self, kind: str) -> int:
        return sum(1 for e in self.events if e.kind == kind)

    def breakdown(self) -> dict[str, float]:
        """Summed reward per event kind."""
        sums: dict[str, float] = defaultdict(float)
        for e in self.events:
            sums[e.kind] += e.delta
        return dict(sums)

    def reset(self):
        self.events.clear()
        self._total = 0.0
