"""Cylinder types and orientation helpers.

Coordinate convention:
    - Z-up (MuJoCo default)
    - A cylinder's axis is its local Z axis
    - Quaternions are (w, x, y, z), as MuJoCo stores them

Size convention (matches MuJoCo):
    - CYLINDER: (radius, half_height, 0)
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

WORLD_UP = np.array([0.0, 0.0, 1.0])


@dataclass(frozen=True)
class CylinderType:
    """One placeable cylinder shape.

    Attributes:
        name: Human-readable label (used in logs and recordings)
        radius: Cylinder radius (meters)
        half_length: Half of the cylinder's length along its axis (meters)
        rgba: Color and opacity (r, g, b, a), values in [0, 1]
    """

    name: str
    radius: float
    half_length: float
    rgba: tuple[float, float, float, float]

    @property
    def size(self) -> tuple[float, float, float]:
        return (self.radius, self.half_length, 0.0)

    def inertia(self, mass: float) -> np.ndarray:
        """Principal moments of a solid cylinder about its local axes."""
        r, length = self.radius, 2 * self.half_length
        side = mass * (3 * r * r + length * length) / 12
        return np.array([side, side, mass * r * r / 2])


# ---------------------------------------------------------------------------
# Default cylinder set
# ---------------------------------------------------------------------------

CLAY_RED = (0.70, 0.30, 0.20, 1.0)
SAND = (0.85, 0.75, 0.55, 1.0)
SLATE = (0.40, 0.45, 0.50, 1.0)

DEFAULT_CYLINDER_TYPES = (
    CylinderType("short", radius=0.02, half_length=0.03, rgba=CLAY_RED),
    CylinderType("medium", radius=0.02, half_length=0.045, rgba=SAND),
    CylinderType("long", radius=0.018, half_length=0.06, rgba=SLATE),
)

# ---------------------------------------------------------------------------
# Quaternion utilities
# ---------------------------------------------------------------------------


def euler_to_quat(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Euler angles (XYZ extrinsic) to quaternion (w, x, y, z)."""
    cr, sr = np.cos(roll / 2), np.sin(roll / 2)
    cp, sp = np.cos(pitch / 2), np.sin(pitch / 2)
    cy, sy = np.cos(yaw / 2), np.sin(yaw / 2)
    return np.array(
        [
            cr * cp * cy + sr * sp * sy,
            sr * cp * cy - cr * sp * sy,
            cr * sp * cy + sr * cp * sy,
            cr * cp * sy - sr * sp * cy,
        ]
    )


def quat_to_mat(quat: np.ndarray) -> np.ndarray:
    """Rotation matrix of a unit quaternion (w, x, y, z)."""
    w, x, y, z = quat
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def local_up_axis(quat: np.ndarray) -> np.ndarray:
    """The body-frame axis that *quat* maps onto world up.

    A cylinder spawned with *quat* is upright when this axis points along
    world +Z, so it is what the stability check reads back after settling.
    """
    return quat_to_mat(quat).T @ WORLD_UP
