"""Procedural cylinder placement on a dome surface, with physics-based scoring.

Each episode orders the surface vertices helically, places cylinders along
that order while rejecting overlaps, lets MuJoCo settle them and rewards
the ones that stay upright above the reference plane.

Usage:
    from domeplace import Config, EpisodeController, MeshSurface

    surface = MeshSurface.from_file("dome_vertices.npy")
    controller = EpisodeController.from_config(Config(), surface)
    total = controller.run_episode(seed=0)
"""

from domeplace.config import Config, ConfigurationError
from domeplace.episode import EpisodeController, Phase, describe_episode
from domeplace.surface import MeshSurface, Vertex
from domeplace.traversal import TraversalOrder, build_order

__all__ = [
    "Config",
    "ConfigurationError",
    "EpisodeController",
    "MeshSurface",
    "Phase",
    "TraversalOrder",
    "Vertex",
    "build_order",
    "describe_episode",
]
