"""
Rerun logging utilities for placement episodes.

Logs the surface, the cylinders and the reward on a "step" timeline so an
episode can be scrubbed through in the Rerun viewer.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import rerun as rr

from domeplace.stability import Verdict

if TYPE_CHECKING:
    from domeplace.episode import EpisodeController
    from domeplace.surface import MeshSurface

logger = logging.getLogger(__name__)

SURFACE_COLOR = [200, 200, 210]
PLACED_COLOR = [230, 180, 60]
VERDICT_COLORS = {
    Verdict.STABLE: [80, 200, 100],
    Verdict.TOPPLED: [240, 140, 40],
    Verdict.FALLEN: [220, 60, 60],
}
ARROW_LENGTH = 0.08


def log_surface(surface: MeshSurface, namespace="world"):
    """Log the surface vertices as static points."""
    rr.log(
        f"{namespace}/surface",
        rr.Points3D(surface.world_vertices(), radii=0.004, colors=SURFACE_COLOR),
        static=True,
    )


def log_cylinders(controller: EpisodeController, namespace="world"):
    """
    Log every live cylinder as a point with its up vector.

    Colors follow the verdict once the episode has been judged.
    """
    world = controller.world
    verdicts = {}
    if controller.last_report is not None:
        verdicts = {j.handle: j.verdict for j in controller.last_report.judgements}

    positions, ups, colors, labels = [], [], [], []
    for obj in controller.placed_objects:
        if not world.is_live(obj.handle):
            continue
        positions.append(world.position_of(obj.handle))
        ups.append(world.up_vector_of(obj.handle) * ARROW_LENGTH)
        verdict = verdicts.get(obj.handle)
        colors.append(VERDICT_COLORS[verdict] if verdict else PLACED_COLOR)
        labels.append(f"v{obj.vertex_index} {world.cylinder_types[obj.type_index].name}")

    if not positions:
        rr.log(f"{namespace}/cylinders", rr.Clear(recursive=True))
        return

    positions = np.array(positions)
    rr.log(
        f"{namespace}/cylinders",
        rr.Points3D(positions, radii=0.02, colors=colors, labels=labels),
    )
    rr.log(
        f"{namespace}/cylinders/up",
        rr.Arrows3D(origins=positions, vectors=np.array(ups), colors=colors),
    )


def log_rewards(controller: EpisodeController, reward: float):
    rr.log("metrics/reward", rr.Scalars([reward]))
    rr.log("metrics/reward_total", rr.Scalars([controller.total_reward()]))
    rr.log("metrics/placed_count", rr.Scalars([controller.state.placed_count]))


def record_episode(
    controller: EpisodeController,
    output_file: str | Path,
    seed: int | None = None,
    namespace="world",
) -> float:
    """Run one episode and save a Rerun recording of it.

    Args:
        controller: Episode controller to drive
        output_file: Destination .rrd path
        seed: Episode seed (None = next seed of the controller)

    Returns:
        The episode's total reward.
    """
    rr.init("domeplace-episode")
    rr.save(str(output_file))

    controller.begin_episode(seed=seed)
    log_surface(controller.surface, namespace=namespace)

    step = 0
    rr.set_time("step", sequence=step)
    log_cylinders(controller, namespace=namespace)

    while not controller.is_terminal():
        step += 1
        _, reward, _, _, info = controller.step()
        rr.set_time("step", sequence=step)
        rr.set_time("sim_time", timestamp=controller.world.sim_time)
        log_cylinders(controller, namespace=namespace)
        log_rewards(controller, reward)
        if info.get("rejected"):
            logger.debug(f"Step {step}: rejected vertices {info['rejected']}")

    # Flush the recording and release the file handle
    rr.disconnect()
    logger.info(f"Saved {output_file} ({step} steps)")
    return controller.total_reward()
