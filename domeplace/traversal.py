"""Helical traversal order over surface vertices.

Vertices are visited band by band from the bottom of the surface up. A band
is a run of height-sorted vertices that stay within band_height of the
band's first vertex. Inside a band the vertices are shuffled and then sorted
by their angle around the vertical axis, so the order sweeps around and up
while same-angle ties land in a different order every episode.
"""

from __future__ import annotations

import numpy as np


class TraversalOrder:
    """An immutable vertex order read through a cursor.

    pop() advances the cursor instead of removing from the front of a list.
    """

    def __init__(self, indices):
        self._indices = tuple(int(i) for i in indices)
        self._cursor = 0

    def __len__(self) -> int:
        """Number of vertices not yet popped."""
        return len(self._indices) - self._cursor

    def __iter__(self):
        """Iterate the remaining vertices without consuming them."""
        return iter(self._indices[self._cursor :])

    @property
    def indices(self) -> tuple[int, ...]:
        """The full order, including vertices already popped."""
        return self._indices

    @property
    def exhausted(self) -> bool:
        return self._cursor >= len(self._indices)

    def peek(self) -> int | None:
        if self.exhausted:
            return None
        return self._indices[self._cursor]

    def pop(self) -> int:
        if self.exhausted:
            raise IndexError("pop from exhausted traversal order")
        index = self._indices[self._cursor]
        self._cursor += 1
        return index


def height_bands(heights: np.ndarray, band_height: float) -> list[np.ndarray]:
    """Partition vertex indices into height bands.

    Indices are sorted by height (stable). A new band starts whenever a
    vertex's height differs from the band's first height by more than
    band_height.

    Returns:
        List of index arrays, lowest band first.
    """
    heights = np.asarray(heights, dtype=np.float64)
    if heights.size == 0:
        return []

    sorted_idx = np.argsort(heights, kind="stable")
    bands = []
    start = 0
    anchor = heights[sorted_idx[0]]
    for pos in range(1, len(sorted_idx)):
        h = heights[sorted_idx[pos]]
        if abs(h - anchor) > band_height:
            bands.append(sorted_idx[start:pos])
            start = pos
            anchor = h
    bands.append(sorted_idx[start:])
    return bands


def build_order(
    vertices,
    band_height: float,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> TraversalOrder:
    """Build the helical traversal order for one episode.

    Args:
        vertices: (N, 3) vertex positions (the row is the vertex index)
        band_height: Height tolerance of a band
        seed: Integer seed for reproducibility. Overrides rng if both given.
        rng: Numpy random generator used for the in-band shuffle

    Returns:
        A TraversalOrder containing every vertex index exactly once.
        Empty input gives an empty order.
    """
    if seed is not None:
        rng = np.random.default_rng(seed)
    elif rng is None:
        rng = np.random.default_rng()

    verts = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    angles = np.arctan2(verts[:, 1], verts[:, 0])

    order: list[int] = []
    for band in height_bands(verts[:, 2], band_height):
        shuffled = rng.permutation(band)
        order.extend(shuffled[np.argsort(angles[shuffled], kind="stable")])
    return TraversalOrder(order)
