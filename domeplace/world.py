"""MuJoCo physics world for cylinder placement.

Two-phase workflow:
  1. **Build time**: call PlacementWorld.prepare_spec(spec, ...) to inject
     the catch plane, an optional surface collider and the cylinder slots
     into an MjSpec before compilation.
  2. **Runtime**: create a PlacementWorld(model, data, cylinder_types) and
     spawn/destroy cylinders by writing to the slots. No recompilation.

Slot naming convention:
    Bodies:  cyl_0, cyl_1, ..., cyl_{N-1}
    Joints:  cyl_{i}_slide_x, cyl_{i}_slide_y, cyl_{i}_slide_z, cyl_{i}_hinge
    Geoms:   cyl_{i}_t0, ..., cyl_{i}_t{M-1}   (one per cylinder type)

Each slot body has three slide joints and a single hinge, so a rigid
cylinder can translate freely but only rotate about the hinge axis. Slots
that have not been made rigid are held kinematically: after every physics
step their joints are put back to zero, which keeps them at the spawn pose.

Usage:
    world = build_world(config, surface)
    handle = world.spawn(0, pos, quat)
    world.attach_rigid(handle, mass=1.0, angular_damping=0.05)
    world.advance(2.0)
    world.position_of(handle), world.up_vector_of(handle)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import mujoco
import numpy as np

from domeplace.config import ConfigurationError
from domeplace.primitives import WORLD_UP, CylinderType, local_up_axis

if TYPE_CHECKING:
    from domeplace.config import Config
    from domeplace.surface import MeshSurface

log = logging.getLogger(__name__)

ARENA_XML = Path(__file__).resolve().parent / "worlds" / "arena.xml"

CATCH_PLANE = "catch_plane"
SURFACE_GEOM = "surface"
SURFACE_COLOR = (0.80, 0.80, 0.82, 1.0)
CATCH_PLANE_COLOR = (0.20, 0.30, 0.40, 1.0)

# Unused slots wait here, invisible and non-colliding
_HIDDEN_POS = (0.0, 100.0, 0.0)
_SLIDE_AXES = (("x", (1, 0, 0)), ("y", (0, 1, 0)), ("z", (0, 0, 1)))


@dataclass
class _CylinderSlot:
    """One slot body with its joints and per-type geoms."""

    body_id: int
    hinge_id: int
    qpos_adrs: list[int]
    dof_adrs: list[int]
    geom_ids: list[int]
    live: bool = False
    rigid: bool = False
    type_index: int = -1
    local_up: np.ndarray = field(default_factory=lambda: WORLD_UP.copy())

    @property
    def hinge_dof(self) -> int:
        return self.dof_adrs[-1]


class PlacementWorld:
    """Spawns, destroys and simulates cylinders in pre-allocated MuJoCo slots.

    Handles returned by spawn() are slot indices. A handle is reused once
    its cylinder has been destroyed.
    """

    def __init__(
        self,
        model: mujoco.MjModel,
        data: mujoco.MjData,
        cylinder_types: tuple[CylinderType, ...],
    ):
        if not cylinder_types:
            raise ConfigurationError("At least one cylinder type is required")
        self.model = model
        self.data = data
        self.cylinder_types = tuple(cylinder_types)
        self._slots: list[_CylinderSlot] = []
        self._discover_slots()

        # Compiled values, restored when a slot is destroyed
        self._default_mass = model.body_mass.copy()
        self._default_inertia = model.body_inertia.copy()
        self._default_iquat = model.body_iquat.copy()
        self._default_damping = model.dof_damping.copy()
        self._default_axis = model.jnt_axis.copy()

    @staticmethod
    def prepare_spec(
        spec,
        cylinder_types: tuple[CylinderType, ...],
        max_objects: int,
        reference_plane_height: float = -1.0,
        catch_plane_offset: float = 0.5,
        surface_vertices: np.ndarray | None = None,
    ):
        """Add the catch plane, surface collider and cylinder slots to an MjSpec.

        The catch plane stops falling cylinders below the reference plane,
        so anything resting on it is judged fallen.

        The surface collider is the convex hull of surface_vertices (world
        space). It is skipped when the vertices are coplanar, since MuJoCo
        cannot build a hull from them.
        """
        if not cylinder_types:
            raise ConfigurationError("At least one cylinder type is required")
        if max_objects < 1:
            raise ConfigurationError(f"max_objects must be positive, got {max_objects}")

        if surface_vertices is not None:
            _add_surface_collider(spec, np.asarray(surface_vertices, dtype=np.float64))

        plane = spec.worldbody.add_geom()
        plane.name = CATCH_PLANE
        plane.type = mujoco.mjtGeom.mjGEOM_PLANE
        plane.size = [50, 50, 0.1]
        plane.pos = [0, 0, reference_plane_height - catch_plane_offset]
        plane.rgba = list(CATCH_PLANE_COLOR)

        for i in range(max_objects):
            body = spec.worldbody.add_body()
            body.name = f"cyl_{i}"
            body.pos = list(_HIDDEN_POS)

            for axis_name, axis in _SLIDE_AXES:
                joint = body.add_joint()
                joint.name = f"cyl_{i}_slide_{axis_name}"
                joint.type = mujoco.mjtJoint.mjJNT_SLIDE
                joint.axis = list(axis)

            hinge = body.add_joint()
            hinge.name = f"cyl_{i}_hinge"
            hinge.type = mujoco.mjtJoint.mjJNT_HINGE
            hinge.axis = [1, 0, 0]

            for j, ctype in enumerate(cylinder_types):
                geom = body.add_geom()
                geom.name = f"cyl_{i}_t{j}"
                geom.type = mujoco.mjtGeom.mjGEOM_CYLINDER
                geom.size = list(ctype.size)
                geom.rgba = [0, 0, 0, 0]
                geom.contype = 0
                geom.conaffinity = 0

    @property
    def max_objects(self) -> int:
        return len(self._slots)

    @property
    def sim_time(self) -> float:
        return float(self.data.time)

    def _discover_slots(self):
        """Find cyl_N bodies and their joints and geoms."""
        i = 0
        while True:
            body_id = mujoco.mj_name2id(self.model, mujoco.mjtObj.mjOBJ_BODY, f"cyl_{i}")
            if body_id < 0:
                break

            joint_names = [f"cyl_{i}_slide_{a}" for a, _ in _SLIDE_AXES] + [f"cyl_{i}_hinge"]
            joint_ids = [
                mujoco.mj_name2id(self.model, mujoco.mjtObj.mjOBJ_JOINT, name)
                for name in joint_names
            ]
            if min(joint_ids) < 0:
                raise ConfigurationError(f"Slot cyl_{i} is missing joints")

            geom_ids = [
                mujoco.mj_name2id(self.model, mujoco.mjtObj.mjOBJ_GEOM, f"cyl_{i}_t{j}")
                for j in range(len(self.cylinder_types))
            ]
            if min(geom_ids) < 0:
                raise ConfigurationError(
                    f"Slot cyl_{i} has fewer geoms than the {len(self.cylinder_types)} cylinder types"
                )

            self._slots.append(
                _CylinderSlot(
                    body_id=body_id,
                    hinge_id=joint_ids[-1],
                    qpos_adrs=[int(self.model.jnt_qposadr[j]) for j in joint_ids],
                    dof_adrs=[int(self.model.jnt_dofadr[j]) for j in joint_ids],
                    geom_ids=geom_ids,
                )
            )
            i += 1

    def _slot(self, handle: int) -> _CylinderSlot:
        slot = self._slots[handle]
        if not slot.live:
            raise KeyError(f"Cylinder handle {handle} is not live")
        return slot

    # -------------------------------------------------------------------
    # Object factory
    # -------------------------------------------------------------------

    def spawn(self, type_index: int, position, quat) -> int:
        """Show a cylinder of the given type at a world pose. Returns its handle."""
        for handle, slot in enumerate(self._slots):
            if not slot.live:
                break
        else:
            raise ConfigurationError(
                f"All {self.max_objects} cylinder slots are in use"
            )

        ctype = self.cylinder_types[type_index]
        quat = np.asarray(quat, dtype=np.float64)
        self.model.body_pos[slot.body_id] = position
        self.model.body_quat[slot.body_id] = quat
        for j, geom_id in enumerate(slot.geom_ids):
            if j == type_index:
                self.model.geom_rgba[geom_id] = ctype.rgba
                self.model.geom_contype[geom_id] = 1
                self.model.geom_conaffinity[geom_id] = 1
            else:
                self._hide_geom(geom_id)
        # Broad phase filters on the body flags, compiled as the OR of its geoms
        self.model.body_contype[slot.body_id] = 1
        self.model.body_conaffinity[slot.body_id] = 1
        self._zero_joints(slot)

        slot.live = True
        slot.rigid = False
        slot.type_index = type_index
        slot.local_up = local_up_axis(quat)

        mujoco.mj_forward(self.model, self.data)
        return handle

    def destroy(self, handle: int):
        """Hide a cylinder and free its slot."""
        slot = self._slot(handle)
        self._hide_slot(slot)
        mujoco.mj_forward(self.model, self.data)

    def clear(self):
        """Destroy every live cylinder."""
        for slot in self._slots:
            if slot.live:
                self._hide_slot(slot)
        mujoco.mj_forward(self.model, self.data)

    def live_handles(self) -> list[int]:
        return [h for h, slot in enumerate(self._slots) if slot.live]

    def is_live(self, handle: int) -> bool:
        return self._slots[handle].live

    def type_of(self, handle: int) -> CylinderType:
        return self.cylinder_types[self._slot(handle).type_index]

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def objects_within(self, radius: float, position) -> list[int]:
        """Live cylinders whose center is closer than radius to position."""
        position = np.asarray(position, dtype=np.float64)
        hits = []
        for handle, slot in enumerate(self._slots):
            if not slot.live:
                continue
            if np.linalg.norm(self.data.xpos[slot.body_id] - position) < radius:
                hits.append(handle)
        return hits

    def position_of(self, handle: int) -> np.ndarray:
        return self.data.xpos[self._slot(handle).body_id].copy()

    def up_vector_of(self, handle: int) -> np.ndarray:
        """The cylinder's spawn-time up axis, in world frame.

        Returns [0, 0, 1] while the cylinder keeps its spawn orientation.
        """
        slot = self._slot(handle)
        xmat = self.data.xmat[slot.body_id].reshape(3, 3)
        return xmat @ slot.local_up

    # -------------------------------------------------------------------
    # Physics
    # -------------------------------------------------------------------

    def attach_rigid(
        self,
        handle: int,
        mass: float,
        angular_damping: float,
        free_axis=(1.0, 0.0, 0.0),
    ):
        """Let a cylinder move under gravity and contacts.

        Sets its mass and matching cylinder inertia, and restricts rotation
        to free_axis (body frame) with the given angular damping.
        """
        slot = self._slot(handle)
        ctype = self.cylinder_types[slot.type_index]
        axis = np.asarray(free_axis, dtype=np.float64)
        axis = axis / np.linalg.norm(axis)

        self.model.body_mass[slot.body_id] = mass
        self.model.body_inertia[slot.body_id] = ctype.inertia(mass)
        self.model.body_iquat[slot.body_id] = [1, 0, 0, 0]
        self.model.jnt_axis[slot.hinge_id] = axis
        self.model.dof_damping[slot.hinge_dof] = angular_damping
        slot.rigid = True

    def advance(self, duration: float):
        """Step the simulation for duration seconds of simulated time."""
        n_steps = int(round(duration / self.model.opt.timestep))
        for _ in range(n_steps):
            mujoco.mj_step(self.model, self.data)
            self._hold_kinematic()
        if n_steps > 0:
            mujoco.mj_forward(self.model, self.data)

    def _hold_kinematic(self):
        """Put every non-rigid slot back at its spawn pose."""
        for slot in self._slots:
            if not slot.rigid:
                self._zero_joints(slot)

    # -------------------------------------------------------------------
    # Slot helpers
    # -------------------------------------------------------------------

    def _zero_joints(self, slot: _CylinderSlot):
        self.data.qpos[slot.qpos_adrs] = 0.0
        self.data.qvel[slot.dof_adrs] = 0.0

    def _hide_geom(self, geom_id: int):
        self.model.geom_rgba[geom_id] = [0, 0, 0, 0]
        self.model.geom_contype[geom_id] = 0
        self.model.geom_conaffinity[geom_id] = 0

    def _hide_slot(self, slot: _CylinderSlot):
        """Move a slot off-screen and restore its compiled physics values."""
        self.model.body_pos[slot.body_id] = _HIDDEN_POS
        self.model.body_quat[slot.body_id] = [1, 0, 0, 0]
        self.model.body_mass[slot.body_id] = self._default_mass[slot.body_id]
        self.model.body_inertia[slot.body_id] = self._default_inertia[slot.body_id]
        self.model.body_iquat[slot.body_id] = self._default_iquat[slot.body_id]
        self.model.jnt_axis[slot.hinge_id] = self._default_axis[slot.hinge_id]
        self.model.dof_damping[slot.hinge_dof] = self._default_damping[slot.hinge_dof]
        for geom_id in slot.geom_ids:
            self._hide_geom(geom_id)
        self.model.body_contype[slot.body_id] = 0
        self.model.body_conaffinity[slot.body_id] = 0
        self._zero_joints(slot)
        slot.live = False
        slot.rigid = False
        slot.type_index = -1
        slot.local_up = WORLD_UP.copy()


def _add_surface_collider(spec, vertices: np.ndarray):
    """Add a static convex mesh geom built from world-space surface vertices."""
    if len(vertices) < 4:
        log.warning(f"Surface has {len(vertices)} vertices; no surface collider added")
        return
    centered = vertices - vertices.mean(axis=0)
    if np.linalg.matrix_rank(centered, tol=1e-6) < 3:
        log.warning("Surface vertices are coplanar; no surface collider added")
        return

    mesh = spec.add_mesh()
    mesh.name = SURFACE_GEOM
    mesh.uservert = vertices.ravel().tolist()

    geom = spec.worldbody.add_geom()
    geom.name = SURFACE_GEOM
    geom.type = mujoco.mjtGeom.mjGEOM_MESH
    geom.meshname = SURFACE_GEOM
    geom.rgba = list(SURFACE_COLOR)


def build_world(
    config: Config,
    surface: MeshSurface | None = None,
    spec=None,
) -> PlacementWorld:
    """Compile a ready-to-use PlacementWorld.

    Args:
        config: Episode configuration (slots, cylinder types, planes)
        surface: When given and config.world.surface_collider is set, the
            surface's convex hull becomes a static collider.
        spec: MjSpec to extend. Defaults to the arena in config.world.arena_path
            (or the bundled worlds/arena.xml).
    """
    if spec is None:
        spec = mujoco.MjSpec.from_file(str(config.world.arena_path or ARENA_XML))

    surface_vertices = None
    if surface is not None and config.world.surface_collider and len(surface) > 0:
        surface_vertices = surface.world_vertices()

    PlacementWorld.prepare_spec(
        spec,
        cylinder_types=config.world.cylinder_types,
        max_objects=config.max_objects,
        reference_plane_height=config.stability.reference_plane_height,
        catch_plane_offset=config.world.catch_plane_offset,
        surface_vertices=surface_vertices,
    )
    model = spec.compile()
    data = mujoco.MjData(model)
    mujoco.mj_forward(model, data)
    log.info(
        f"Built world: {config.max_objects} cylinder slots, "
        f"{len(config.world.cylinder_types)} cylinder types, timestep {model.opt.timestep}s"
    )
    return PlacementWorld(model, data, config.world.cylinder_types)
