import random

import numpy as np
import pytest

from colslam.epnp import CameraIntrinsics
from colslam.pnp_ransac import PnPRansac

K = CameraIntrinsics(fu=500.0, fv=500.0, uc=320.0, vc=240.0)


def _true_pose():
    angle = 0.1
    c, s = np.cos(angle), np.sin(angle)
    rotation = np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])
    translation = np.array([0.1, -0.2, 0.3])
    return rotation, translation


def _scene(n_in=30, n_out=10, seed=1):
    gen = np.random.default_rng(seed)
    n = n_in + n_out
    world = np.column_stack(
        (gen.uniform(-1, 1, n), gen.uniform(-1, 1, n), gen.uniform(4, 8, n))
    )
    rotation, translation = _true_pose()
    cam = world @ rotation.T + translation
    image = np.column_stack(
        (K.uc + K.fu * cam[:, 0] / cam[:, 2], K.vc + K.fv * cam[:, 1] / cam[:, 2])
    )
    image[n_in:] += 40.0
    return world, image


def test_find_recovers_pose_and_inliers():
    world, image = _scene()
    solver = PnPRansac(world, image, np.ones(len(world)), K, rng=random.Random(0))
    result = solver.find()
    rotation, translation = _true_pose()
    assert result.found
    assert np.allclose(result.pose[:3, :3], rotation, atol=1e-3)
    assert np.allclose(result.pose[:3, 3], translation, atol=1e-3)
    assert np.allclose(result.pose[3], [0, 0, 0, 1])
    assert result.inliers == [True] * 30 + [False] * 10
    assert result.n_inliers == 30
    assert result.no_more is False


def test_keypoint_indices_map_into_match_vector():
    world, image = _scene()
    n = len(world)
    indices = [2 * i for i in range(n)]
    solver = PnPRansac(
        world, image, np.ones(n), K, keypoint_indices=indices, total_matches=2 * n,
        rng=random.Random(3),
    )
    result = solver.find()
    assert len(result.inliers) == 2 * n
    assert not any(result.inliers[1::2])
    assert result.inliers[0:60:2] == [True] * 30
    assert sum(result.inliers) == result.n_inliers


def test_too_few_correspondences_gives_up_at_once():
    world, image = _scene(n_in=5, n_out=0)
    solver = PnPRansac(world, image, np.ones(5), K, rng=random.Random(0))
    result = solver.iterate(5)
    assert result.pose is None
    assert result.no_more is True
    assert result.inliers == []
    assert solver.iterations == 0


def test_all_minimum_inliers_needs_one_iteration():
    world, image = _scene(n_in=10, n_out=0)
    solver = PnPRansac(world, image, np.ones(10), K, rng=random.Random(0))
    solver.set_ransac_parameters(min_inliers=10)
    assert solver.min_inliers == 10
    assert solver.max_iterations == 1


def test_min_inliers_raised_by_epsilon():
    world, image = _scene(n_in=100, n_out=0)
    solver = PnPRansac(world, image, np.ones(100), K, rng=random.Random(0))
    solver.set_ransac_parameters(0.99, 10, 300, 4, 0.5, 5.991)
    assert solver.min_inliers == 50
    assert solver.epsilon == pytest.approx(0.5)
    assert 1 <= solver.max_iterations <= 300


def test_epsilon_raised_to_inlier_ratio():
    world, image = _scene(n_in=20, n_out=0)
    solver = PnPRansac(world, image, np.ones(20), K, rng=random.Random(0))
    solver.set_ransac_parameters(0.99, 10, 300, 4, 0.1, 5.991)
    assert solver.epsilon == pytest.approx(solver.min_inliers / solver.n)


def test_same_seed_same_result():
    world, image = _scene()
    first = PnPRansac(world, image, np.ones(len(world)), K, rng=random.Random(11)).find()
    second = PnPRansac(world, image, np.ones(len(world)), K, rng=random.Random(11)).find()
    assert np.array_equal(first.pose, second.pose)
    assert first.inliers == second.inliers


def test_no_consistent_pose_spends_budget():
    gen = np.random.default_rng(5)
    n = 20
    world = np.column_stack(
        (gen.uniform(-1, 1, n), gen.uniform(-1, 1, n), gen.uniform(4, 8, n))
    )
    image = np.column_stack((gen.uniform(0, 640, n), gen.uniform(0, 480, n)))
    solver = PnPRansac(world, image, np.ones(n), K, rng=random.Random(2))
    result = solver.find()
    assert result.pose is None
    assert result.no_more is True
    assert solver.iterations == solver.max_iterations


def test_mismatched_lengths_rejected():
    world, image = _scene()
    with pytest.raises(ValueError):
        PnPRansac(world, image[:-1], np.ones(len(world)), K)
    with pytest.raises(ValueError):
        PnPRansac(world, image, np.ones(len(world)), K, keypoint_indices=[0, 1])