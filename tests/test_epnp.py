import numpy as np
import pytest

from colslam.epnp import (
    CameraIntrinsics,
    mat_to_quat,
    qr_solve,
    relative_error,
    reprojection_error,
    solve_epnp,
)

INTRINSICS = CameraIntrinsics(fu=500.0, fv=510.0, uc=320.0, vc=240.0)


def _rotation(axis, angle):
    axis = np.asarray(axis, dtype=float)
    axis = axis / np.linalg.norm(axis)
    k = np.array([[0, -axis[2], axis[1]], [axis[2], 0, -axis[0]], [-axis[1], axis[0], 0]])
    return np.eye(3) + np.sin(angle) * k + (1 - np.cos(angle)) * (k @ k)


def _project(rotation, translation, points, intrinsics):
    cam = points @ rotation.T + translation
    u = intrinsics.uc + intrinsics.fu * cam[:, 0] / cam[:, 2]
    v = intrinsics.vc + intrinsics.fv * cam[:, 1] / cam[:, 2]
    return np.column_stack((u, v))


@pytest.fixture
def scene():
    rng = np.random.default_rng(7)
    world = rng.uniform(-1.0, 1.0, size=(12, 3)) + np.array([0.0, 0.0, 6.0])
    rotation = _rotation([0.3, -0.5, 0.8], 0.35)
    translation = np.array([0.2, -0.1, 0.4])
    image = _project(rotation, translation, world, INTRINSICS)
    return world, image, rotation, translation


def test_solve_recovers_exact_pose(scene):
    world, image, rotation, translation = scene
    r, t, err = solve_epnp(world, image, INTRINSICS)
    assert np.allclose(r, rotation, atol=1e-5)
    assert np.allclose(t, translation, atol=1e-5)
    assert err < 1e-4


def test_solved_rotation_is_proper(scene):
    world, image, _, _ = scene
    r, _, _ = solve_epnp(world, image, INTRINSICS)
    assert np.allclose(r @ r.T, np.eye(3), atol=1e-8)
    assert np.linalg.det(r) == pytest.approx(1.0, abs=1e-8)


def test_solve_error_matches_reprojection_error(scene):
    world, image, _, _ = scene
    noisy = image + np.random.default_rng(3).normal(0.0, 0.5, size=image.shape)
    r, t, err = solve_epnp(world, noisy, INTRINSICS)
    assert err == pytest.approx(reprojection_error(r, t, world, noisy, INTRINSICS))


def test_solve_rejects_mismatched_shapes(scene):
    world, image, _, _ = scene
    with pytest.raises(ValueError):
        solve_epnp(world, image[:-1], INTRINSICS)
    with pytest.raises(ValueError):
        solve_epnp(world[:, :2], image, INTRINSICS)
    with pytest.raises(ValueError):
        solve_epnp(np.empty((0, 3)), np.empty((0, 2)), INTRINSICS)


def test_reprojection_error_of_true_pose_is_zero(scene):
    world, image, rotation, translation = scene
    assert reprojection_error(rotation, translation, world, image, INTRINSICS) == pytest.approx(
        0.0, abs=1e-9
    )


def test_reprojection_error_of_constant_shift(scene):
    world, image, rotation, translation = scene
    shifted = image + np.array([3.0, 4.0])
    assert reprojection_error(rotation, translation, world, shifted, INTRINSICS) == pytest.approx(5.0)


def test_qr_solve_exact_system():
    rng = np.random.default_rng(11)
    a = rng.normal(size=(6, 4))
    x_true = rng.normal(size=4)
    b = a @ x_true
    a_before, b_before = a.copy(), b.copy()
    x = qr_solve(a, b)
    assert np.allclose(x, x_true, atol=1e-10)
    assert np.array_equal(a, a_before) and np.array_equal(b, b_before)


def test_qr_solve_least_squares_matches_numpy():
    rng = np.random.default_rng(5)
    a = rng.normal(size=(6, 4))
    b = rng.normal(size=6)
    expected = np.linalg.lstsq(a, b, rcond=None)[0]
    assert np.allclose(qr_solve(a, b), expected, atol=1e-10)


def test_qr_solve_singular_raises():
    with pytest.raises(np.linalg.LinAlgError):
        qr_solve(np.zeros((6, 4)), np.ones(6))


def test_mat_to_quat_identity():
    assert np.allclose(mat_to_quat(np.eye(3)), [0.0, 0.0, 0.0, 1.0])


def test_mat_to_quat_half_turn_about_x():
    q = mat_to_quat(np.diag([1.0, -1.0, -1.0]))
    assert abs(q[0]) == pytest.approx(1.0)
    assert np.allclose(q[1:], 0.0)


@pytest.mark.parametrize("axis, angle", [([1, 2, 3], 0.4), ([0, 1, 0], 2.5), ([1, -1, 0.2], 3.0)])
def test_mat_to_quat_is_unit(axis, angle):
    assert np.linalg.norm(mat_to_quat(_rotation(axis, angle))) == pytest.approx(1.0)


def test_relative_error_of_identical_pose(scene):
    _, _, rotation, translation = scene
    rot_err, transl_err = relative_error(rotation, translation, rotation, translation)
    assert rot_err == pytest.approx(0.0, abs=1e-12)
    assert transl_err == pytest.approx(0.0, abs=1e-12)


def test_relative_rotation_error_is_symmetric():
    ra = _rotation([1, 0, 0], 0.2)
    rb = _rotation([0, 1, 1], 0.7)
    t = np.array([1.0, 2.0, 3.0])
    forward = relative_error(ra, t, rb, t)[0]
    backward = relative_error(rb, t, ra, t)[0]
    assert forward == pytest.approx(backward)
    assert forward > 0.0