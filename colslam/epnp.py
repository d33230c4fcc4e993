"""Efficient Perspective-n-Point pose estimation (EPnP)."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))
_GAUSS_NEWTON_ITERATIONS = 5


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole focal lengths and principal point."""

    fu: float
    fv: float
    uc: float
    vc: float


def _check_points(world_points, image_points) -> tuple[np.ndarray, np.ndarray]:
    pws = np.asarray(world_points, dtype=np.float64)
    us = np.asarray(image_points, dtype=np.float64)
    if pws.ndim != 2 or pws.shape[1] != 3:
        raise ValueError("world points must have shape (n, 3)")
    if us.shape != (pws.shape[0], 2):
        raise ValueError("image points must have shape (n, 2) matching the world points")
    if pws.shape[0] == 0:
        raise ValueError("at least one correspondence is required")
    return pws, us


def _choose_control_points(pws: np.ndarray) -> np.ndarray:
    n = pws.shape[0]
    centroid = pws.mean(axis=0)
    centred = pws - centroid
    u, dc, _ = np.linalg.svd(centred.T @ centred)
    cws = np.empty((4, 3))
    cws[0] = centroid
    cws[1:] = centroid + np.sqrt(dc / n)[:, None] * u.T
    return cws


def _barycentric_coordinates(pws: np.ndarray, cws: np.ndarray) -> np.ndarray:
    cc_inv = np.linalg.pinv((cws[1:] - cws[0]).T)
    rest = (pws - cws[0]) @ cc_inv.T
    return np.column_stack((1.0 - rest.sum(axis=1), rest))


def _null_space_basis(alphas: np.ndarray, us: np.ndarray, k: CameraIntrinsics) -> np.ndarray:
    n = alphas.shape[0]
    m = np.zeros((2 * n, 12))
    m[0::2, 0::3] = alphas * k.fu
    m[0::2, 2::3] = alphas * (k.uc - us[:, 0])[:, None]
    m[1::2, 1::3] = alphas * k.fv
    m[1::2, 2::3] = alphas * (k.vc - us[:, 1])[:, None]
    u, _, _ = np.linalg.svd(m.T @ m)
    return u.T


def _compute_l_6x10(ut: np.ndarray) -> np.ndarray:
    vs = [ut[11 - i].reshape(4, 3) for i in range(4)]
    dv = np.array([[v[a] - v[b] for a, b in _PAIRS] for v in vs])

    def d(i: int, j: int) -> np.ndarray:
        return np.einsum("ij,ij->i", dv[i], dv[j])

    return np.column_stack(
        (
            d(0, 0),
            2.0 * d(0, 1),
            d(1, 1),
            2.0 * d(0, 2),
            2.0 * d(1, 2),
            d(2, 2),
            2.0 * d(0, 3),
            2.0 * d(1, 3),
            2.0 * d(2, 3),
            d(3, 3),
        )
    )


def _compute_rho(cws: np.ndarray) -> np.ndarray:
    return np.array([np.sum((cws[a] - cws[b]) ** 2) for a, b in _PAIRS])


def _lstsq(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.linalg.lstsq(a, b, rcond=None)[0]


def _betas_approx_1(l: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b4 = _lstsq(l[:, [0, 1, 3, 6]], rho)
    betas = np.empty(4)
    if b4[0] < 0:
        betas[0] = np.sqrt(-b4[0])
        betas[1:] = -b4[1:] / betas[0]
    else:
        betas[0] = np.sqrt(b4[0])
        betas[1:] = b4[1:] / betas[0]
    return betas


def _betas_approx_2(l: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b3 = _lstsq(l[:, :3], rho)
    betas = np.zeros(4)
    if b3[0] < 0:
        betas[0] = np.sqrt(-b3[0])
        betas[1] = np.sqrt(-b3[2]) if b3[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b3[0])
        betas[1] = np.sqrt(b3[2]) if b3[2] > 0 else 0.0
    if b3[1] < 0:
        betas[0] = -betas[0]
    return betas


def _betas_approx_3(l: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b5 = _lstsq(l[:, :5], rho)
    betas = np.zeros(4)
    if b5[0] < 0:
        betas[0] = np.sqrt(-b5[0])
        betas[1] = np.sqrt(-b5[2]) if b5[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b5[0])
        betas[1] = np.sqrt(b5[2]) if b5[2] > 0 else 0.0
    if b5[1] < 0:
        betas[0] = -betas[0]
    betas[2] = b5[3] / betas[0]
    return betas


def _gauss_newton_system(
    l: np.ndarray, rho: np.ndarray, betas: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    b0, b1, b2, b3 = betas
    a = np.column_stack(
        (
            2 * l[:, 0] * b0 + l[:, 1] * b1 + l[:, 3] * b2 + l[:, 6] * b3,
            l[:, 1] * b0 + 2 * l[:, 2] * b1 + l[:, 4] * b2 + l[:, 7] * b3,
            l[:, 3] * b0 + l[:, 4] * b1 + 2 * l[:, 5] * b2 + l[:, 8] * b3,
            l[:, 6] * b0 + l[:, 7] * b1 + l[:, 8] * b2 + 2 * l[:, 9] * b3,
        )
    )
    products = np.array(
        [b0 * b0, b0 * b1, b1 * b1, b0 * b2, b1 * b2, b2 * b2, b0 * b3, b1 * b3, b2 * b3, b3 * b3]
    )
    return a, rho - l @ products


def _gauss_newton(l: np.ndarray, rho: np.ndarray, betas: np.ndarray) -> np.ndarray:
    betas = betas.copy()
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        a, b = _gauss_newton_system(l, rho, betas)
        try:
            step = qr_solve(a, b)
        except np.linalg.LinAlgError:
            break
        betas += step
    return betas


def _estimate_r_and_t(pcs: np.ndarray, pws: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    pc0 = pcs.mean(axis=0)
    pw0 = pws.mean(axis=0)
    abt = (pcs - pc0).T @ (pws - pw0)
    u, _, vt = np.linalg.svd(abt)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        rotation[2] = -rotation[2]
    translation = pc0 - rotation @ pw0
    return rotation, translation


def _compute_r_and_t(
    ut: np.ndarray,
    betas: np.ndarray,
    alphas: np.ndarray,
    pws: np.ndarray,
    us: np.ndarray,
    intrinsics: CameraIntrinsics,
) -> tuple[np.ndarray, np.ndarray, float]:
    ccs = sum(betas[i] * ut[11 - i].reshape(4, 3) for i in range(4))
    pcs = alphas @ ccs
    if pcs[0, 2] < 0.0:
        pcs = -pcs
    rotation, translation = _estimate_r_and_t(pcs, pws)
    error = reprojection_error(rotation, translation, pws, us, intrinsics)
    return rotation, translation, error


def solve_epnp(world_points, image_points, intrinsics: CameraIntrinsics):
    """Estimate the camera pose from 3D-2D correspondences.

    Returns ``(rotation, translation, error)`` where the pose maps world
    points into the camera frame and ``error`` is the mean reprojection
    distance in pixels.
    """
    pws, us = _check_points(world_points, image_points)
    with np.errstate(divide="ignore", invalid="ignore"):
        cws = _choose_control_points(pws)
        alphas = _barycentric_coordinates(pws, cws)
        ut = _null_space_basis(alphas, us, intrinsics)
        l = _compute_l_6x10(ut)
        rho = _compute_rho(cws)

        solutions = []
        for approx in (_betas_approx_1, _betas_approx_2, _betas_approx_3):
            betas = _gauss_newton(l, rho, approx(l, rho))
            solutions.append(_compute_r_and_t(ut, betas, alphas, pws, us, intrinsics))

    best = 0
    if solutions[1][2] < solutions[0][2]:
        best = 1
    if solutions[2][2] < solutions[best][2]:
        best = 2
    return solutions[best]


def reprojection_error(rotation, translation, world_points, image_points, intrinsics):
    """Mean pixel distance between observed and reprojected points."""
    pws, us = _check_points(world_points, image_points)
    r = np.asarray(rotation, dtype=np.float64)
    t = np.asarray(translation, dtype=np.float64).reshape(3)
    pcs = pws @ r.T + t
    inv_z = 1.0 / pcs[:, 2]
    ue = intrinsics.uc + intrinsics.fu * pcs[:, 0] * inv_z
    ve = intrinsics.vc + intrinsics.fv * pcs[:, 1] * inv_z
    return float(np.mean(np.hypot(us[:, 0] - ue, us[:, 1] - ve)))


def qr_solve(a, b) -> np.ndarray:
    """Solve ``a x = b`` in the least-squares sense by Householder QR.

    Raises ``numpy.linalg.LinAlgError`` when a column is zero.
    """
    a = np.array(a, dtype=np.float64)
    b = np.array(b, dtype=np.float64).reshape(-1)
    nr, nc = a.shape
    if b.shape[0] != nr:
        raise ValueError("right-hand side length does not match the matrix")
    a1 = np.zeros(nc)
    a2 = np.zeros(nc)

    for k in range(nc):
        # The last row is left out of the column scale estimate.
        eta = float(np.max(np.abs(a[k:max(nr - 1, k + 1), k])))
        if eta == 0:
            raise np.linalg.LinAlgError("matrix is singular")
        a[k:, k] /= eta
        sigma = float(np.sqrt(np.sum(a[k:, k] ** 2)))
        if a[k, k] < 0:
            sigma = -sigma
        a[k, k] += sigma
        a1[k] = sigma * a[k, k]
        a2[k] = -eta * sigma
        for j in range(k + 1, nc):
            tau = (a[k:, k] @ a[k:, j]) / a1[k]
            a[k:, j] -= tau * a[k:, k]

    for j in range(nc):
        tau = (a[j:, j] @ b[j:]) / a1[j]
        b[j:] -= tau * a[j:, j]

    x = np.zeros(nc)
    x[nc - 1] = b[nc - 1] / a2[nc - 1]
    for i in range(nc - 2, -1, -1):
        x[i] = (b[i] - a[i, i + 1:] @ x[i + 1:]) / a2[i]
    return x


def mat_to_quat(rotation) -> np.ndarray:
    """Unit quaternion of a rotation matrix, scalar part last."""
    r = np.asarray(rotation, dtype=np.float64)
    tr = r[0, 0] + r[1, 1] + r[2, 2]
    if tr > 0.0:
        q = [r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], tr + 1.0]
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = [
            1.0 + r[0, 0] - r[1, 1] - r[2, 2],
            r[1, 0] + r[0, 1],
            r[2, 0] + r[0, 2],
            r[1, 2] - r[2, 1],
        ]
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = [
            r[1, 0] + r[0, 1],
            1.0 + r[1, 1] - r[0, 0] - r[2, 2],
            r[2, 1] + r[1, 2],
            r[2, 0] - r[0, 2],
        ]
        n4 = q[1]
    else:
        q = [
            r[2, 0] + r[0, 2],
            r[2, 1] + r[1, 2],
            1.0 + r[2, 2] - r[0, 0] - r[1, 1],
            r[0, 1] - r[1, 0],
        ]
        n4 = q[2]
    return np.array(q) * (0.5 / np.sqrt(n4))


def relative_error(rotation_true, translation_true, rotation_est, translation_est):
    """Relative rotation and translation errors of an estimated pose."""
    q_true = mat_to_quat(rotation_true)
    q_est = mat_to_quat(rotation_est)
    q_norm = np.linalg.norm(q_true)
    rot_err = min(
        np.linalg.norm(q_true - q_est) / q_norm,
        np.linalg.norm(q_true + q_est) / q_norm,
    )
    t_true = np.asarray(translation_true, dtype=np.float64).reshape(3)
    t_est = np.asarray(translation_est, dtype=np.float64).reshape(3)
    transl_err = np.linalg.norm(t_true - t_est) / np.linalg.norm(t_true)
    return float(rot_err), float(transl_err)