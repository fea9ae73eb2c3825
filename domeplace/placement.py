"""Placement engine: places cylinders along the traversal order.

Each call to place_next() fills one placement slot: it pops vertices off
the traversal order until a cylinder commits or the order runs out.
Cylinders that land too close to an earlier one are destroyed and cost an
overlap penalty; the vertex they were tried at is discarded, not retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from domeplace import rewards
from domeplace.primitives import WORLD_UP, euler_to_quat
from domeplace.traversal import TraversalOrder

if TYPE_CHECKING:
    from domeplace.config import PlacementConfig
    from domeplace.rewards import RewardLedger
    from domeplace.surface import MeshSurface
    from domeplace.world import PlacementWorld

log = logging.getLogger(__name__)


@dataclass
class PlacedObject:
    """A committed cylinder.

    Attributes:
        handle: World handle of the cylinder
        vertex_index: Surface vertex it was placed at
        type_index: Index into the world's cylinder types
        position: World position at commit time
        up: World up vector at commit time
    """

    handle: int
    vertex_index: int
    type_index: int
    position: np.ndarray
    up: np.ndarray


@dataclass
class PlacementOutcome:
    """What one place_next() call did."""

    placed: PlacedObject | None = None
    rejected: list[int] = field(default_factory=list)  # vertices that overlapped
    skipped: int = 0  # already-used vertices popped
    exhausted: bool = False  # order is empty after this call
    reward: float = 0.0

    @property
    def committed(self) -> bool:
        return self.placed is not None


class PlacementEngine:
    """Places cylinders on a surface, one slot at a time."""

    def __init__(
        self,
        world: PlacementWorld,
        surface: MeshSurface,
        config: PlacementConfig,
        ledger: RewardLedger,
    ):
        self.world = world
        self.surface = surface
        self.config = config
        self.ledger = ledger
        self.spawn_quat = euler_to_quat(*config.spawn_euler)

        self.order = TraversalOrder(())
        self.used_vertices: set[int] = set()
        self.placed: list[PlacedObject] = []
        self.rng = np.random.default_rng()

        if config.close_threshold <= config.overlap_radius:
            log.warning(
                f"close_threshold ({config.close_threshold}) <= overlap_radius "
                f"({config.overlap_radius}): the close-placement reward can never be earned"
            )

    def reset(self, rng: np.random.Generator, order: TraversalOrder | None = None):
        """Start a new episode: destroy placed cylinders and forget used vertices."""
        for obj in self.placed:
            if self.world.is_live(obj.handle):
                self.world.destroy(obj.handle)
        self.placed = []
        self.used_vertices = set()
        self.order = order if order is not None else TraversalOrder(())
        self.rng = rng

    def spawn_position(self, vertex_index: int) -> np.ndarray:
        vertex = self.surface.vertex(vertex_index)
        return self.surface.local_to_world(vertex.position) + WORLD_UP * self.config.height_offset

    def place_next(self) -> PlacementOutcome:
        """Fill one placement slot.

        Pops vertices until a cylinder commits or the order is exhausted.
        Rewards are written to the ledger as they happen and also summed
        into the returned outcome.
        """
        cfg = self.config
        outcome = PlacementOutcome()

        while not self.order.exhausted:
            vertex_index = self.order.pop()
            if vertex_index in self.used_vertices:
                outcome.skipped += 1
                continue

            position = self.spawn_position(vertex_index)
            type_index = int(self.rng.integers(len(self.world.cylinder_types)))
            handle = self.world.spawn(type_index, position, self.spawn_quat)
            self.world.advance(cfg.spawn_delay)

            if self._overlaps(handle):
                self.world.destroy(handle)
                self._reward(outcome, cfg.overlap_penalty, rewards.OVERLAP, vertex_index)
                outcome.rejected.append(vertex_index)
                log.info(f"Cylinder at vertex {vertex_index} overlapped and was removed")
                continue

            obj = PlacedObject(
                handle=handle,
                vertex_index=vertex_index,
                type_index=type_index,
                position=self.world.position_of(handle),
                up=self.world.up_vector_of(handle),
            )
            self.used_vertices.add(vertex_index)
            self.placed.append(obj)
            outcome.placed = obj

            distance = self.min_distance(obj)
            if distance < cfg.close_threshold:
                self._reward(outcome, cfg.close_reward, rewards.CLOSE, vertex_index)
            else:
                self._reward(outcome, cfg.far_penalty, rewards.FAR, vertex_index)
            log.info(
                f"Placed {self.world.cylinder_types[type_index].name} cylinder at vertex "
                f"{vertex_index}, position {np.round(obj.position, 3)}, "
                f"nearest neighbour {distance:.3f}"
            )
            break

        outcome.exhausted = self.order.exhausted
        return outcome

    def _overlaps(self, handle: int) -> bool:
        position = self.world.position_of(handle)
        others = [
            h for h in self.world.objects_within(self.config.overlap_radius, position)
            if h != handle
        ]
        if others:
            log.debug(f"Cylinder {handle} overlaps {others}")
        return bool(others)

    def min_distance(self, obj: PlacedObject) -> float:
        """Distance from obj to the nearest other placed cylinder (inf if alone)."""
        position = self.world.position_of(obj.handle)
        distances = [
            np.linalg.norm(self.world.position_of(other.handle) - position)
            for other in self.placed
            if other.handle != obj.handle and self.world.is_live(other.handle)
        ]
        return float(min(distances)) if distances else float("inf")

    def forget(self, handles: set[int]):
        """Drop destroyed cylinders from the placed list. Their vertices stay used."""
        self.placed = [obj for obj in self.placed if obj.handle not in handles]

    def _reward(self, outcome: PlacementOutcome, delta: float, kind: str, vertex_index: int):
        self.ledger.add_reward(delta, kind, vertex_index)
        outcome.reward += delta
