"""
Episode controller for dome cylinder placement.

Drives one episode through its phases:

    RESET -> ORDERING -> PLACING (one slot per step) -> SETTLING -> JUDGING -> TERMINATED

with a Gymnasium-style API for an external driver loop:

    controller = EpisodeController.from_config(config, surface)
    obs = controller.begin_episode(seed=0)
    while not controller.is_terminal():
        obs, reward, done, truncated, info = controller.step()
    controller.total_reward()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from domeplace.config import ConfigurationError
from domeplace.observation import encode_observation
from domeplace.placement import PlacementEngine
from domeplace.rewards import RewardLedger
from domeplace.stability import StabilityEvaluator
from domeplace.traversal import build_order
from domeplace.world import build_world

if TYPE_CHECKING:
    from domeplace.config import Config
    from domeplace.placement import PlacedObject
    from domeplace.stability import StabilityReport
    from domeplace.surface import MeshSurface
    from domeplace.world import PlacementWorld

log = logging.getLogger(__name__)


class Phase(Enum):
    RESET = "reset"
    ORDERING = "ordering"
    PLACING = "placing"
    SETTLING = "settling"
    JUDGING = "judging"
    TERMINATED = "terminated"


@dataclass
class EpisodeState:
    """Per-episode counters. Reset by begin_episode()."""

    target_count: int
    reference_plane_height: float
    episode: int = 0
    placed_count: int = 0  # cylinders judged stable
    slots_attempted: int = 0
    phase: Phase = Phase.TERMINATED


class EpisodeController:
    """
    Restartable placement episode.

    Each episode places up to target_count cylinders on the surface, lets
    them settle, judges them and ends. Rewards accumulate in a RewardLedger
    that is cleared at the next begin_episode().
    """

    @classmethod
    def from_config(
        cls, config: Config, surface: MeshSurface, spec=None
    ) -> EpisodeController:
        """Build the MuJoCo world for config and wrap it in a controller."""
        world = build_world(config, surface=surface, spec=spec)
        return cls(surface, world, config)

    def __init__(self, surface: MeshSurface, world: PlacementWorld, config: Config):
        target_count = config.placement.target_count
        if target_count < 1:
            raise ConfigurationError(f"target_count must be positive, got {target_count}")
        if world.max_objects < target_count + 1:
            raise ConfigurationError(
                f"World has {world.max_objects} cylinder slots; "
                f"target_count={target_count} needs {target_count + 1}"
            )

        self.surface = surface
        self.world = world
        self.config = config
        self.ledger = RewardLedger()
        self.engine = PlacementEngine(world, surface, config.placement, self.ledger)
        self.evaluator = StabilityEvaluator(world, config.stability, self.ledger)
        self.state = EpisodeState(
            target_count=target_count,
            reference_plane_height=config.stability.reference_plane_height,
        )

        # Each episode gets its own child seed; reproducible when config.seed is set
        self._seed_seq = np.random.SeedSequence(config.seed)
        self.error: str | None = None
        self.last_report: StabilityReport | None = None

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def used_vertices(self) -> set[int]:
        return self.engine.used_vertices

    @property
    def placed_objects(self) -> list[PlacedObject]:
        return self.engine.placed

    def begin_episode(self, seed: int | None = None) -> np.ndarray:
        """
        Reset all episode state and build the traversal order.

        Args:
            seed: Explicit episode seed. None draws the next child seed of
                the controller's seed sequence.

        Returns:
            observation: Encoded episode state after the reset
        """
        state = self.state
        state.phase = Phase.RESET
        state.episode += 1
        state.placed_count = 0
        state.slots_attempted = 0
        self.ledger.reset()
        self.error = None
        self.last_report = None

        seed_seq = np.random.SeedSequence(seed) if seed is not None else self._seed_seq.spawn(1)[0]
        rng = np.random.default_rng(seed_seq)
        self.engine.reset(rng)
        self.world.clear()

        state.phase = Phase.ORDERING
        try:
            self._validate()
        except ConfigurationError as exc:
            self.error = str(exc)
            state.phase = Phase.TERMINATED
            log.error(f"Episode {state.episode} cannot run: {exc}")
            return self.observe()

        self.engine.order = build_order(
            self.surface.vertices(), self.config.placement.effective_band_height, rng=rng
        )
        state.phase = Phase.PLACING

        log.info(
            f"Episode {state.episode} started. Vertices: {len(self.surface)}, "
            f"order starts {list(self.engine.order.indices[:10])}"
        )
        return self.observe()

    reset = begin_episode

    def step(self):
        """
        Advance the episode by one unit of work.

        PLACING: fill one placement slot.
        SETTLING: settle and judge every placed cylinder (ends the episode).

        Returns:
            observation: Encoded episode state
            reward: Reward emitted by this step
            done: True once the episode is terminated
            truncated: Always False (episodes end on their own)
            info: Dict with step details and the reward breakdown
        """
        state = self.state
        if state.phase == Phase.PLACING:
            reward, info = self._place_slot()
        elif state.phase == Phase.SETTLING:
            reward, info = self._settle_and_judge()
        else:
            raise RuntimeError(
                f"step() called in phase {state.phase.value}; call begin_episode() first"
            )

        done = state.phase == Phase.TERMINATED
        info.update(
            {
                "phase": state.phase.value,
                "episode": state.episode,
                "placed_count": state.placed_count,
                "used_vertices": len(self.engine.used_vertices),
                "remaining_vertices": len(self.engine.order),
                "reward_total": self.ledger.total,
                "reward_breakdown": self.ledger.breakdown(),
                "error": self.error,
            }
        )
        return self.observe(), reward, done, False, info

    def run_episode(self, seed: int | None = None) -> float:
        """Run a whole episode. Returns its total reward."""
        self.begin_episode(seed=seed)
        while not self.is_terminal():
            self.step()
        return self.total_reward()

    def is_terminal(self) -> bool:
        return self.state.phase == Phase.TERMINATED

    def total_reward(self) -> float:
        return self.ledger.total

    def observe(self) -> np.ndarray:
        unused = len(self.surface) - len(self.engine.used_vertices)
        return encode_observation(
            unused, self.state.placed_count, size=self.config.observation.size
        )

    def close(self):
        """Abort the episode and release every live cylinder."""
        self.world.clear()
        self.engine.placed = []
        self.state.phase = Phase.TERMINATED

    # -------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------

    def _validate(self):
        if len(self.surface) == 0:
            raise ConfigurationError("Surface has no vertices")

    def _place_slot(self) -> tuple[float, dict]:
        state = self.state
        outcome = self.engine.place_next()
        state.slots_attempted += 1
        self.world.advance(self.config.placement.slot_delay)

        if outcome.exhausted or state.slots_attempted >= state.target_count:
            if outcome.exhausted and len(self.engine.placed) < state.target_count:
                log.info(
                    f"Traversal order exhausted after {len(self.engine.placed)} of "
                    f"{state.target_count} placements"
                )
            state.phase = Phase.SETTLING

        info = {
            "committed": outcome.committed,
            "vertex": outcome.placed.vertex_index if outcome.placed else None,
            "rejected": list(outcome.rejected),
            "skipped": outcome.skipped,
            "exhausted": outcome.exhausted,
            "next_vertex": self.engine.order.peek(),
        }
        return outcome.reward, info

    def _settle_and_judge(self) -> tuple[float, dict]:
        state = self.state
        self.evaluator.settle(self.engine.placed)

        state.phase = Phase.JUDGING
        report = self.evaluator.judge(self.engine.placed, state.target_count)
        self.engine.forget(report.destroyed)
        state.placed_count += report.stable
        self.last_report = report

        state.phase = Phase.TERMINATED
        log.info(
            f"Episode {state.episode} finished: {report.stable} stable, "
            f"{report.toppled} toppled, {report.fallen} fallen, "
            f"total reward {self.ledger.total:+.2f}"
        )
        info = {
            "stable": report.stable,
            "toppled": report.toppled,
            "fallen": report.fallen,
            "bonus": report.bonus_applied,
        }
        return report.reward, info


def describe_episode(controller: EpisodeController) -> str:
    """One-paragraph human-readable summary of the last episode."""
    state = controller.state
    lines = [f"Episode #{state.episode} ({state.phase.value})"]
    if controller.error:
        lines.append(f"  error: {controller.error}")
    lines.append(
        f"  placed {len(controller.used_vertices)} of {state.target_count} targeted, "
        f"{state.placed_count} stable"
    )
    report = controller.last_report
    if report is not None:
        lines.append(
            f"  verdicts: {report.stable} stable, {report.toppled} toppled, "
            f"{report.fallen} fallen{', bonus' if report.bonus_applied else ''}"
        )
    breakdown = ", ".join(
        f"{kind} {value:+.1f}" for kind, value in sorted(controller.ledger.breakdown().items())
    )
    lines.append(f"  reward {controller.total_reward():+.2f} ({breakdown or 'none'})")
    return "\n".join(lines)
