"""Settle-and-judge pass over the placed cylinders.

After placement every live cylinder is given mass and a single free
rotation axis, the simulation runs for a fixed settle time, and each
cylinder is judged:

    FALLEN   : ended below the reference plane. Penalized and destroyed.
    TOPPLED  : its up vector tilted past the threshold. Penalized, kept.
    STABLE   : anything else. Rewarded and counted as placed.

A completion bonus is paid once if every targeted cylinder is stable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from domeplace import rewards

if TYPE_CHECKING:
    from domeplace.config import StabilityConfig
    from domeplace.placement import PlacedObject
    from domeplace.rewards import RewardLedger
    from domeplace.world import PlacementWorld

log = logging.getLogger(__name__)


class Verdict(Enum):
    FALLEN = "fallen"
    TOPPLED = "toppled"
    STABLE = "stable"


def classify(
    height: float, up_z: float, reference_plane_height: float, min_up_z: float
) -> Verdict:
    """Judge one settled cylinder. Falling below the plane wins over toppling."""
    if height < reference_plane_height:
        return Verdict.FALLEN
    if up_z < min_up_z:
        return Verdict.TOPPLED
    return Verdict.STABLE


@dataclass
class Judgement:
    vertex_index: int
    handle: int
    verdict: Verdict
    position: np.ndarray
    up: np.ndarray


@dataclass
class StabilityReport:
    judgements: list[Judgement] = field(default_factory=list)
    bonus_applied: bool = False
    reward: float = 0.0

    def count(self, verdict: Verdict) -> int:
        return sum(1 for j in self.judgements if j.verdict == verdict)

    @property
    def stable(self) -> int:
        return self.count(Verdict.STABLE)

    @property
    def toppled(self) -> int:
        return self.count(Verdict.TOPPLED)

    @property
    def fallen(self) -> int:
        return self.count(Verdict.FALLEN)

    @property
    def destroyed(self) -> set[int]:
        """Handles destroyed while judging (the fallen cylinders)."""
        return {j.handle for j in self.judgements if j.verdict == Verdict.FALLEN}


class StabilityEvaluator:
    """Runs the settle phase and judges the result."""

    _REWARD_KINDS = {
        Verdict.FALLEN: rewards.FALLEN,
        Verdict.TOPPLED: rewards.TOPPLED,
        Verdict.STABLE: rewards.STABLE,
    }

    def __init__(self, world: PlacementWorld, config: StabilityConfig, ledger: RewardLedger):
        self.world = world
        self.config = config
        self.ledger = ledger

    def settle(self, placed: list[PlacedObject]):
        """Make every live placed cylinder rigid and let physics run."""
        cfg = self.config
        for obj in placed:
            if self.world.is_live(obj.handle):
                self.world.attach_rigid(
                    obj.handle,
                    mass=cfg.mass,
                    angular_damping=cfg.angular_damping,
                    free_axis=cfg.free_rotation_axis,
                )
        self.world.advance(cfg.settle_duration)

    def judge(self, placed: list[PlacedObject], target_count: int) -> StabilityReport:
        """Classify each live cylinder, pay rewards and destroy the fallen."""
        cfg = self.config
        report = StabilityReport()

        for obj in placed:
            if not self.world.is_live(obj.handle):
                continue
            position = self.world.position_of(obj.handle)
            up = self.world.up_vector_of(obj.handle)
            verdict = classify(
                float(position[2]), float(up[2]), cfg.reference_plane_height, cfg.min_up_z
            )
            report.judgements.append(
                Judgement(obj.vertex_index, obj.handle, verdict, position, up)
            )

            if verdict == Verdict.FALLEN:
                delta = cfg.fallen_penalty
                self.world.destroy(obj.handle)
                log.info(f"Cylinder from vertex {obj.vertex_index} fell below the plane at {np.round(position, 3)}")
            elif verdict == Verdict.TOPPLED:
                delta = cfg.toppled_penalty
                log.info(f"Cylinder from vertex {obj.vertex_index} toppled (up_z={up[2]:.3f})")
            else:
                delta = cfg.stable_reward
                log.debug(f"Cylinder from vertex {obj.vertex_index} is stable")

            self.ledger.add_reward(delta, self._REWARD_KINDS[verdict], obj.vertex_index)
            report.reward += delta

        if report.stable == target_count:
            self.ledger.add_reward(cfg.completion_bonus, rewards.BONUS)
            report.reward += cfg.completion_bonus
            report.bonus_applied = True
            log.info(f"All {target_count} cylinders stable: +{cfg.completion_bonus} bonus")

        return report

    def evaluate(self, placed: list[PlacedObject], target_count: int) -> StabilityReport:
        """Settle, then judge."""
        self.settle(placed)
        return self.judge(placed, target_count)
