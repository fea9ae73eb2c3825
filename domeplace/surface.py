"""Surface provider adapter.

The dome mesh itself comes from elsewhere. Placement only needs the list of
vertex positions in the mesh's local frame and the local-to-world transform,
which is all MeshSurface holds.

Usage:
    surface = MeshSurface(vertices)                       # identity transform
    surface = MeshSurface.from_file("dome_vertices.npy")
    surface = MeshSurface.from_model(model, data, "dome") # a MuJoCo mesh geom
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import mujoco
import numpy as np

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Vertex:
    """A surface vertex: its index in the mesh and its local-space position."""

    index: int
    position: tuple[float, float, float]


class MeshSurface:
    """Vertex positions of a triangulated surface plus a local-to-world transform."""

    def __init__(self, vertices, transform: np.ndarray | None = None):
        """
        Args:
            vertices: (N, 3) local-space vertex positions. N may be 0; the
                episode controller reports an empty surface as a
                configuration error.
            transform: 4x4 homogeneous local-to-world matrix (None = identity)
        """
        verts = np.asarray(vertices, dtype=np.float64)
        if verts.size == 0:
            verts = verts.reshape(0, 3)
        if verts.ndim != 2 or verts.shape[1] != 3:
            raise ValueError(f"vertices must have shape (N, 3), got {verts.shape}")
        self._vertices = verts
        self._vertices.flags.writeable = False

        self.transform = np.eye(4) if transform is None else np.asarray(transform, dtype=np.float64)
        if self.transform.shape != (4, 4):
            raise ValueError(f"transform must be 4x4, got {self.transform.shape}")

    @classmethod
    def from_file(cls, path: str | Path) -> MeshSurface:
        """Load vertices from a .npy file or a whitespace-separated text file."""
        path = Path(path)
        if path.suffix == ".npy":
            verts = np.load(path)
        else:
            verts = np.loadtxt(path, ndmin=2)
        log.info(f"Loaded {len(verts)} surface vertices from {path}")
        return cls(verts)

    @classmethod
    def from_model(
        cls, model: mujoco.MjModel, data: mujoco.MjData, geom_name: str
    ) -> MeshSurface:
        """Read the vertices of a mesh geom from a compiled MuJoCo model.

        MuJoCo stores mesh vertices in the mesh frame; the geom's world pose
        (data.geom_xpos / geom_xmat, so run mj_forward first) becomes the
        local-to-world transform.
        """
        geom_id = mujoco.mj_name2id(model, mujoco.mjtObj.mjOBJ_GEOM, geom_name)
        if geom_id < 0:
            raise ValueError(f"No geom named {geom_name!r} in model")
        if model.geom_type[geom_id] != mujoco.mjtGeom.mjGEOM_MESH:
            raise ValueError(f"Geom {geom_name!r} is not a mesh geom")

        mesh_id = model.geom_dataid[geom_id]
        start = model.mesh_vertadr[mesh_id]
        count = model.mesh_vertnum[mesh_id]
        verts = model.mesh_vert[start : start + count].copy()

        transform = np.eye(4)
        transform[:3, :3] = data.geom_xmat[geom_id].reshape(3, 3)
        transform[:3, 3] = data.geom_xpos[geom_id]
        return cls(verts, transform)

    def __len__(self) -> int:
        return len(self._vertices)

    def vertices(self) -> np.ndarray:
        """Local-space vertex positions, shape (N, 3). Read-only."""
        return self._vertices

    def vertex(self, index: int) -> Vertex:
        return Vertex(index, tuple(float(c) for c in self._vertices[index]))

    def local_to_world(self, point) -> np.ndarray:
        """Transform a local-space point into world space."""
        p = np.asarray(point, dtype=np.float64)
        return self.transform[:3, :3] @ p + self.transform[:3, 3]

    def world_vertices(self) -> np.ndarray:
        """All vertices in world space, shape (N, 3)."""
        return self._vertices @ self.transform[:3, :3].T + self.transform[:3, 3]
