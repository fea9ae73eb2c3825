"""Tests for the helical traversal order."""

import numpy as np
import pytest

from domeplace.traversal import TraversalOrder, build_order, height_bands


def _ring(n, radius=1.0, z=0.0):
    angles = np.linspace(-np.pi, np.pi, n, endpoint=False)
    return np.column_stack([radius * np.cos(angles), radius * np.sin(angles), np.full(n, z)])


def _dome(rings=4, per_ring=8, spacing=0.3):
    return np.vstack([_ring(per_ring, radius=1.0 - 0.2 * i, z=i * spacing) for i in range(rings)])


# ---------------------------------------------------------------------------
# TraversalOrder
# ---------------------------------------------------------------------------


class TestTraversalOrder:
    def test_pop_advances_cursor(self):
        order = TraversalOrder([4, 2, 7])
        assert len(order) == 3
        assert order.pop() == 4
        assert order.peek() == 2
        assert len(order) == 2
        assert list(order) == [2, 7]
        assert order.indices == (4, 2, 7)

    def test_exhausted_order(self):
        order = TraversalOrder([1])
        order.pop()
        assert order.exhausted
        assert order.peek() is None
        with pytest.raises(IndexError):
            order.pop()

    def test_empty_order(self):
        order = TraversalOrder(())
        assert order.exhausted
        assert len(order) == 0


# ---------------------------------------------------------------------------
# Bands
# ---------------------------------------------------------------------------


class TestHeightBands:
    def test_band_measured_from_first_vertex(self):
        heights = np.array([0.3, 0.0, 0.12, 0.05, 0.1])
        bands = height_bands(heights, 0.1)
        assert [sorted(b.tolist()) for b in bands] == [[1, 3, 4], [2], [0]]

    def test_no_chaining_through_close_neighbours(self):
        # Each step is 0.06 but the band is anchored at its first height
        heights = np.array([0.0, 0.06, 0.12, 0.18])
        bands = height_bands(heights, 0.1)
        assert [b.tolist() for b in bands] == [[0, 1], [2, 3]]

    def test_empty(self):
        assert height_bands(np.array([]), 0.1) == []


# ---------------------------------------------------------------------------
# build_order
# ---------------------------------------------------------------------------


class TestBuildOrder:
    def test_every_vertex_exactly_once(self):
        verts = _dome()
        order = build_order(verts, 0.1, seed=3)
        assert sorted(order.indices) == list(range(len(verts)))

    def test_heights_never_decrease_between_bands(self):
        verts = _dome()
        order = build_order(verts, 0.1, seed=3)
        heights = verts[list(order.indices), 2]
        assert np.all(np.diff(heights) >= 0)

    def test_angle_sorted_within_band(self):
        verts = _dome(rings=3)
        order = build_order(verts, 0.1, seed=11)
        idx = np.array(order.indices)
        for z in np.unique(verts[:, 2]):
            band = idx[verts[idx, 2] == z]
            angles = np.arctan2(verts[band, 1], verts[band, 0])
            assert np.all(np.diff(angles) >= 0)

    def test_same_seed_same_order(self):
        verts = _dome()
        assert build_order(verts, 0.1, seed=5).indices == build_order(verts, 0.1, seed=5).indices

    def test_same_angle_ties_shuffled_across_seeds(self):
        # Six vertices on one ray, one band: only the shuffle orders them
        verts = np.column_stack([np.arange(1, 7, dtype=float), np.zeros(6), np.zeros(6)])
        orders = {build_order(verts, 0.1, seed=s).indices for s in range(20)}
        assert len(orders) > 1

    def test_rng_is_consumed(self):
        verts = np.column_stack([np.arange(1, 7, dtype=float), np.zeros(6), np.zeros(6)])
        rng = np.random.default_rng(0)
        orders = {build_order(verts, 0.1, rng=rng).indices for _ in range(20)}
        assert len(orders) > 1

    def test_empty_vertices(self):
        order = build_order(np.zeros((0, 3)), 0.1, seed=0)
        assert order.exhausted
        assert order.indices == ()
