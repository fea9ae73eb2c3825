"""
End-to-end episode tests.

Runs whole episodes on small hand-built surfaces in a real MuJoCo world and
checks the reward totals, phase flow and reset behaviour.
"""

import math
import sys

import mujoco
import numpy as np
import pytest

from domeplace import rewards
from domeplace.config import Config, ConfigurationError
from domeplace.episode import EpisodeController, Phase, describe_episode
from domeplace.main import main
from domeplace.observation import OBSERVATION_SIZE, encode_observation
from domeplace.primitives import euler_to_quat
from domeplace.surface import MeshSurface
from domeplace.world import ARENA_XML


def _arena_with_floor():
    spec = mujoco.MjSpec.from_file(str(ARENA_XML))
    floor = spec.worldbody.add_geom()
    floor.name = "floor"
    floor.type = mujoco.mjtGeom.mjGEOM_BOX
    floor.size = [5, 5, 0.05]
    floor.pos = [0, 0, -0.05]
    return spec


def _arena_with_ramp(angle=math.radians(35)):
    """Arena with a static ramp tilted about X whose top face passes through the origin."""
    spec = mujoco.MjSpec.from_file(str(ARENA_XML))
    ramp = spec.worldbody.add_geom()
    ramp.name = "ramp"
    ramp.type = mujoco.mjtGeom.mjGEOM_BOX
    ramp.size = [1, 1, 0.05]
    ramp.pos = [0, 0.05 * math.sin(angle), -0.05 * math.cos(angle)]
    ramp.quat = list(euler_to_quat(angle, 0.0, 0.0))
    return spec


def _config(target=3, reference_plane_height=-1.0):
    cfg = Config.for_smoketest()
    cfg.placement.target_count = target
    cfg.stability.reference_plane_height = reference_plane_height
    cfg.stability.settle_duration = 1.0
    cfg.world.surface_collider = False
    return cfg


def _controller(vertices, cfg, floor=True):
    spec = _arena_with_floor() if floor else None
    return EpisodeController.from_config(cfg, MeshSurface(vertices), spec=spec)


def _spaced_vertices(n=10, spacing=0.2):
    xs = np.arange(n) * spacing - (n - 1) * spacing / 2
    return np.column_stack([xs, np.full(n, 0.1), np.zeros(n)])


def _hemisphere(rings=3, per_ring=8, radius=0.5):
    points = [[0.0, 0.0, radius]]
    for i in range(rings):
        polar = np.pi / 2 * (i + 1) / (rings + 1)
        for k in range(per_ring):
            az = 2 * np.pi * k / per_ring
            points.append(
                [
                    radius * np.sin(np.pi / 2 - polar) * np.cos(az),
                    radius * np.sin(np.pi / 2 - polar) * np.sin(az),
                    radius * np.cos(np.pi / 2 - polar),
                ]
            )
    return np.array(points)


# ---------------------------------------------------------------------------
# Observation
# ---------------------------------------------------------------------------


class TestObservation:
    def test_layout(self):
        obs = encode_observation(12, 3)
        assert obs.shape == (OBSERVATION_SIZE,)
        assert obs.dtype == np.float32
        assert obs[0] == 12 and obs[1] == 3
        assert not obs[2:].any()

    def test_too_small(self):
        with pytest.raises(ValueError):
            encode_observation(1, 0, size=1)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestConfig:
    def test_band_height_defaults_to_height_offset(self):
        cfg = Config()
        assert cfg.placement.effective_band_height == cfg.placement.height_offset
        cfg.placement.band_height = 0.25
        assert cfg.placement.effective_band_height == 0.25

    def test_slots_default_to_target_plus_one(self):
        cfg = Config()
        assert cfg.max_objects == cfg.placement.target_count + 1

    def test_flat_dict(self):
        flat = Config().to_flat_dict()
        assert flat["placement/target_count"] == 5
        assert flat["world/cylinder_types"] == ["short", "medium", "long"]
        assert "seed" in flat

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)

    def test_non_positive_target_rejected(self):
        cfg = _config(target=0)
        cfg.world.max_objects = 2
        with pytest.raises(ConfigurationError):
            _controller(_spaced_vertices(), cfg)

    def test_no_cylinder_types_rejected(self):
        cfg = _config()
        cfg.world.cylinder_types = ()
        with pytest.raises(ConfigurationError):
            _controller(_spaced_vertices(), cfg)

    def test_too_few_slots_rejected(self):
        cfg = _config(target=3)
        cfg.world.max_objects = 3
        with pytest.raises(ConfigurationError):
            _controller(_spaced_vertices(), cfg)


# ---------------------------------------------------------------------------
# Episodes
# ---------------------------------------------------------------------------


class TestEpisodeScenarios:
    def test_all_stable_with_bonus(self):
        controller = _controller(_spaced_vertices(), _config(target=3))
        total = controller.run_episode(seed=0)
        # three far placements, three stable, completion bonus
        assert total == pytest.approx(3 * -0.5 + 3 * 1.0 + 10.0)
        assert controller.state.placed_count == 3
        assert controller.last_report.bonus_applied
        assert len(controller.used_vertices) == 3

    def test_single_vertex_surface(self):
        controller = _controller([[0.0, 0.1, 0.0]], _config(target=5))
        total = controller.run_episode(seed=0)
        assert total == pytest.approx(-0.5 + 1.0)
        assert controller.state.placed_count == 1
        assert not controller.last_report.bonus_applied

    def test_overlapping_pair(self):
        controller = _controller([[0.1, 0.0, 0.0], [0.12, 0.0, 0.0]], _config(target=2))
        total = controller.run_episode(seed=0)
        assert total == pytest.approx(-0.5 - 1.0 + 1.0)
        assert controller.ledger.count(rewards.OVERLAP) == 1
        assert len(controller.used_vertices) == 1

    def test_fallen_cylinder(self):
        # Catch plane at z=0 sits below the reference plane at z=0.5
        cfg = _config(target=1, reference_plane_height=0.5)
        controller = _controller([[0.0, 0.1, 0.0]], cfg, floor=False)
        total = controller.run_episode(seed=0)
        assert total == pytest.approx(-0.5 - 2.0)
        assert controller.last_report.fallen == 1
        assert controller.placed_objects == []
        assert controller.used_vertices == {0}
        assert controller.world.live_handles() == []

    def test_toppled_cylinders_on_ramp(self):
        cfg = _config(target=2)
        surface = MeshSurface([[-0.15, 0.0, 0.0], [0.15, 0.0, 0.0]])
        controller = EpisodeController.from_config(cfg, surface, spec=_arena_with_ramp())
        total = controller.run_episode(seed=0)

        report = controller.last_report
        assert report.toppled == 2
        assert report.stable == 0
        for judgement in report.judgements:
            assert controller.world.is_live(judgement.handle)
            assert judgement.up[2] < cfg.stability.min_up_z
        assert len(controller.placed_objects) == 2
        assert controller.state.placed_count == 0
        assert controller.ledger.count(rewards.BONUS) == 0
        assert total == pytest.approx(2 * -0.5 + 2 * -2.0)

    def test_ledger_matches_total(self):
        controller = _controller(_spaced_vertices(), _config(target=3))
        controller.run_episode(seed=4)
        assert sum(e.delta for e in controller.ledger.events) == pytest.approx(
            controller.total_reward()
        )
        assert controller.ledger.count(rewards.BONUS) <= 1


class TestEpisodeFlow:
    def test_step_sequence(self):
        controller = _controller(_spaced_vertices(), _config(target=3))
        obs = controller.begin_episode(seed=0)
        assert controller.phase == Phase.PLACING
        assert obs[0] == 10 and obs[1] == 0

        results = []
        while not controller.is_terminal():
            results.append(controller.step())
        assert len(results) == 4  # three placement slots, then settle and judge

        for _, _, done, truncated, info in results[:3]:
            assert not done and not truncated
            assert info["committed"]
        obs, reward, done, _, info = results[-1]
        assert done
        assert info["phase"] == "terminated"
        assert info["stable"] == 3
        assert reward == pytest.approx(13.0)
        assert obs[0] == 7 and obs[1] == 3

    def test_step_info_keys(self):
        controller = _controller(_spaced_vertices(), _config(target=3))
        controller.begin_episode(seed=0)
        _, _, _, _, info = controller.step()
        for key in ("vertex", "rejected", "next_vertex", "reward_total", "reward_breakdown"):
            assert key in info

    def test_step_before_begin_raises(self):
        controller = _controller(_spaced_vertices(), _config())
        with pytest.raises(RuntimeError):
            controller.step()

    def test_reset_isolates_episodes(self):
        controller = _controller(_spaced_vertices(), _config(target=3))
        first = controller.run_episode(seed=1)
        second = controller.run_episode(seed=1)
        assert first == pytest.approx(second)
        assert controller.state.episode == 2
        assert controller.state.placed_count == 3
        assert len(controller.world.live_handles()) == 3

        controller.begin_episode(seed=2)
        assert controller.phase == Phase.PLACING
        assert controller.used_vertices == set()
        assert controller.state.placed_count == 0
        assert controller.world.live_handles() == []
        assert controller.ledger.events == []
        assert controller.total_reward() == 0.0

    def test_same_seed_same_order(self):
        controller = _controller(_spaced_vertices(), _config(target=3))
        controller.begin_episode(seed=9)
        first = controller.engine.order.indices
        controller.begin_episode(seed=9)
        assert controller.engine.order.indices == first

    def test_empty_surface_terminates(self):
        controller = _controller(np.zeros((0, 3)), _config())
        obs = controller.begin_episode(seed=0)
        assert controller.is_terminal()
        assert controller.error
        assert obs[0] == 0
        assert controller.total_reward() == 0.0
        with pytest.raises(RuntimeError):
            controller.step()

    def test_close_releases_cylinders(self):
        controller = _controller(_spaced_vertices(), _config(target=3))
        controller.begin_episode(seed=0)
        controller.step()
        controller.close()
        assert controller.is_terminal()
        assert controller.world.live_handles() == []

    def test_describe_episode(self):
        controller = _controller(_spaced_vertices(), _config(target=3))
        controller.run_episode(seed=0)
        summary = describe_episode(controller)
        assert "Episode #1" in summary
        assert "3 stable" in summary


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestCli:
    def test_run_smoketest(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setattr(sys, "excepthook", sys.excepthook)
        path = tmp_path / "dome.npy"
        np.save(path, _hemisphere())
        main(["run", "--vertices", str(path), "--smoketest", "--episodes", "2"])
        out = capsys.readouterr().out
        assert "Episode #2" in out
        assert "Mean reward over 2 episodes" in out
