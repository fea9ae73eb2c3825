"""
Centralized configuration for placement episodes.

All thresholds, reward magnitudes and timings in one place.
Flattens to a dict for run logging.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field

from domeplace.primitives import DEFAULT_CYLINDER_TYPES, CylinderType


class ConfigurationError(ValueError):
    """The surface, world or settings make an episode impossible to run."""


@dataclass
class PlacementConfig:
    """Placement phase configuration."""

    target_count: int = 5  # Placement slots attempted per episode
    height_offset: float = 0.1  # Spawn this far above the surface vertex
    band_height: float | None = None  # Traversal band tolerance (None = height_offset)

    # Overlap rejection
    overlap_radius: float = 0.05

    # Simulated pauses (seconds)
    spawn_delay: float = 0.2  # Between spawning and the overlap check
    slot_delay: float = 0.2  # Between placement slots

    # Laid flat: 90° about the horizontal X axis
    spawn_euler: tuple[float, float, float] = (math.pi / 2, 0.0, 0.0)

    # Reward shaping
    overlap_penalty: float = -1.0
    close_threshold: float = 0.05
    close_reward: float = 1.0
    far_penalty: float = -0.5

    @property
    def effective_band_height(self) -> float:
        if self.band_height is None:
            return self.height_offset
        return self.band_height


@dataclass
class StabilityConfig:
    """Settle-and-judge phase configuration."""

    mass: float = 1.0
    angular_damping: float = 0.05
    free_rotation_axis: tuple[float, float, float] = (1.0, 0.0, 0.0)
    settle_duration: float = 2.0  # seconds of simulated time

    # Judging thresholds
    reference_plane_height: float = -1.0  # below this = fallen
    min_up_z: float = 0.9  # up-vector z below this = toppled (~26° tilt)

    # Rewards
    fallen_penalty: float = -2.0
    toppled_penalty: float = -2.0
    stable_reward: float = 1.0
    completion_bonus: float = 10.0


@dataclass
class WorldConfig:
    """MuJoCo world configuration."""

    arena_path: str | None = None  # None = bundled worlds/arena.xml
    cylinder_types: tuple[CylinderType, ...] = DEFAULT_CYLINDER_TYPES
    max_objects: int | None = None  # Cylinder slots (None = target_count + 1)
    catch_plane_offset: float = 0.5  # Catch plane sits this far below the reference plane
    surface_collider: bool = True  # Build a convex collider from the surface vertices


@dataclass
class ObservationConfig:
    """Observation vector configuration."""

    size: int = 31


@dataclass
class Config:
    """Complete episode configuration."""

    placement: PlacementConfig = field(default_factory=PlacementConfig)
    stability: StabilityConfig = field(default_factory=StabilityConfig)
    world: WorldConfig = field(default_factory=WorldConfig)
    observation: ObservationConfig = field(default_factory=ObservationConfig)
    seed: int | None = None  # None = draw episode seeds from OS entropy

    @property
    def max_objects(self) -> int:
        """Slots needed: every committed cylinder plus one being tested."""
        if self.world.max_objects is not None:
            return self.world.max_objects
        return self.placement.target_count + 1

    def to_flat_dict(self) -> dict:
        """
        Convert to a flat dict for logging.

        Prefixes each section's keys with section name.
        Example: placement.target_count -> "placement/target_count"
        """
        result = {}
        for section_name, section in [
            ("placement", self.placement),
            ("stability", self.stability),
            ("world", self.world),
            ("observation", self.observation),
        ]:
            for key, value in asdict(section).items():
                if key == "cylinder_types":
                    value = [t["name"] for t in value]
                result[f"{section_name}/{key}"] = value
        result["seed"] = self.seed
        return result

    @classmethod
    def for_smoketest(cls) -> Config:
        """Config for fast end-to-end validation. Runs in well under a second."""
        return cls(
            placement=PlacementConfig(
                target_count=3,
                spawn_delay=0.0,
                slot_delay=0.0,
            ),
            stability=StabilityConfig(
                settle_duration=0.5,
            ),
            seed=0,
        )
