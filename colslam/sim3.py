"""Similarity transform between two point sets, with a RANSAC solver."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class Sim3Transform:
    """Similarity ``p1 = scale * rotation @ p2 + translation``."""

    rotation: np.ndarray
    translation: np.ndarray
    scale: float

    @property
    def t12(self) -> np.ndarray:
        """4x4 matrix mapping set-2 coordinates into set 1."""
        matrix = np.eye(4)
        matrix[:3, :3] = self.scale * self.rotation
        matrix[:3, 3] = self.translation
        return matrix

    @property
    def t21(self) -> np.ndarray:
        """4x4 matrix mapping set-1 coordinates into set 2."""
        matrix = np.eye(4)
        sr_inv = (1.0 / self.scale) * self.rotation.T
        matrix[:3, :3] = sr_inv
        matrix[:3, 3] = -sr_inv @ self.translation
        return matrix


@dataclass
class Sim3Result:
    """Outcome of a RANSAC run.

    ``pose`` is the 4x4 transform from camera 2 to camera 1, or ``None``.
    ``inliers`` always has one flag per original match.
    """

    pose: np.ndarray | None
    inliers: list[bool] = field(default_factory=list)
    n_inliers: int = 0
    no_more: bool = False
    transform: Sim3Transform | None = None

    @property
    def found(self) -> bool:
        return self.pose is not None


def _as_points(points, name: str) -> np.ndarray:
    array = np.asarray(points, dtype=np.float64)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"{name} must have shape (n, 3)")
    return array


def _rodrigues(rotation_vector: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(rotation_vector))
    if not np.isfinite(theta) or theta < 1e-12:
        return np.eye(3)
    k = rotation_vector / theta
    skew = np.array([[0.0, -k[2], k[1]], [k[2], 0.0, -k[0]], [-k[1], k[0], 0.0]])
    return np.eye(3) + math.sin(theta) * skew + (1.0 - math.cos(theta)) * (skew @ skew)


def compute_sim3(points1, points2, fix_scale: bool = False) -> Sim3Transform:
    """Closed-form similarity aligning ``points2`` onto ``points1`` (Horn's method).

    Points are rows of (n, 3) arrays; at least three are needed. With
    ``fix_scale`` the scale is held at one.
    """
    p1 = _as_points(points1, "points1")
    p2 = _as_points(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError("both point sets must have the same shape")
    if p1.shape[0] < 3:
        raise ValueError("at least three point pairs are required")

    o1 = p1.mean(axis=0)
    o2 = p2.mean(axis=0)
    pr1 = p1 - o1
    pr2 = p2 - o2

    m = pr2.T @ pr1
    n11 = m[0, 0] + m[1, 1] + m[2, 2]
    n12 = m[1, 2] - m[2, 1]
    n13 = m[2, 0] - m[0, 2]
    n14 = m[0, 1] - m[1, 0]
    n22 = m[0, 0] - m[1, 1] - m[2, 2]
    n23 = m[0, 1] + m[1, 0]
    n24 = m[2, 0] + m[0, 2]
    n33 = -m[0, 0] + m[1, 1] - m[2, 2]
    n34 = m[1, 2] + m[2, 1]
    n44 = -m[0, 0] - m[1, 1] + m[2, 2]
    n = np.array(
        [
            [n11, n12, n13, n14],
            [n12, n22, n23, n24],
            [n13, n23, n33, n34],
            [n14, n24, n34, n44],
        ]
    )

    _, eigenvectors = np.linalg.eigh(n)
    quaternion = eigenvectors[:, -1]
    imaginary = quaternion[1:4]
    sin_half = float(np.linalg.norm(imaginary))
    angle = math.atan2(sin_half, float(quaternion[0]))
    if sin_half > 0.0:
        rotation = _rodrigues(2.0 * angle * imaginary / sin_half)
    else:
        rotation = np.eye(3)

    if fix_scale:
        scale = 1.0
    else:
        p3 = pr2 @ rotation.T
        scale = float(np.sum(pr1 * p3) / np.sum(p3 * p3))

    translation = o1 - scale * rotation @ o2
    return Sim3Transform(rotation=rotation, translation=translation, scale=scale)


def _intrinsics(k) -> tuple[float, float, float, float]:
    k = np.asarray(k, dtype=np.float64)
    if k.shape != (3, 3):
        raise ValueError("calibration matrix must be 3x3")
    return k[0, 0], k[1, 1], k[0, 2], k[1, 2]


def camera_to_image(points, k) -> np.ndarray:
    """Project camera-frame points (n, 3) to pixels (n, 2) with calibration ``k``."""
    pc = _as_points(points, "points")
    fx, fy, cx, cy = _intrinsics(k)
    inv_z = 1.0 / pc[:, 2]
    return np.column_stack((fx * pc[:, 0] * inv_z + cx, fy * pc[:, 1] * inv_z + cy))


def project(points, transform, k) -> np.ndarray:
    """Transform points (n, 3) by a 4x4 matrix and project them to pixels."""
    pw = _as_points(points, "points")
    matrix = np.asarray(transform, dtype=np.float64)
    if matrix.shape != (4, 4):
        raise ValueError("transform must be a 4x4 matrix")
    pc = pw @ matrix[:3, :3].T + matrix[:3, 3]
    return camera_to_image(pc, k)


def _iterations_for(probability: float, epsilon: float) -> float:
    hit = epsilon**3
    if hit >= 1.0:
        return 1
    if hit <= 0.0 or probability >= 1.0:
        return math.inf
    if probability <= 0.0:
        return 0
    return math.ceil(math.log(1.0 - probability) / math.log(1.0 - hit))


class Sim3Solver:
    """RANSAC estimate of the similarity between two keyframes' camera points.

    ``points1`` and ``points2`` are matched 3D points in the camera frames
    of the two keyframes; ``max_errors1``/``max_errors2`` bound the squared
    reprojection error in each image.
    """

    def __init__(
        self,
        points1,
        points2,
        max_errors1,
        max_errors2,
        k1,
        k2,
        fix_scale: bool = False,
        indices: Sequence[int] | None = None,
        total_matches: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._p1 = np.asarray(points1, dtype=np.float64).reshape(-1, 3)
        self._p2 = np.asarray(points2, dtype=np.float64).reshape(-1, 3)
        self._max_errors1 = np.asarray(max_errors1, dtype=np.float64).reshape(-1)
        self._max_errors2 = np.asarray(max_errors2, dtype=np.float64).reshape(-1)
        count = self._p1.shape[0]
        if (
            self._p2.shape[0] != count
            or self._max_errors1.shape[0] != count
            or self._max_errors2.shape[0] != count
        ):
            raise ValueError("point sets and error bounds differ in length")

        self._indices = list(range(count)) if indices is None else [int(i) for i in indices]
        if len(self._indices) != count:
            raise ValueError("one match index is needed per correspondence")
        if total_matches is None:
            total_matches = max(self._indices) + 1 if self._indices else 0
        if any(i < 0 or i >= total_matches for i in self._indices):
            raise ValueError("match index outside the match vector")
        self.total_matches = int(total_matches)

        self.k1 = np.asarray(k1, dtype=np.float64)
        self.k2 = np.asarray(k2, dtype=np.float64)
        self.fix_scale = fix_scale
        self._rng = rng if rng is not None else random.Random()

        with np.errstate(all="ignore"):
            self._p1_im1 = camera_to_image(self._p1, self.k1)
            self._p2_im2 = camera_to_image(self._p2, self.k2)

        self._iterations = 0
        self._best_count = 0
        self._best_inliers = np.zeros(count, dtype=bool)
        self._best: Sim3Transform | None = None

        self.set_ransac_parameters()

    @property
    def n(self) -> int:
        """Number of correspondences."""
        return self._p1.shape[0]

    @property
    def iterations(self) -> int:
        """Iterations spent since the parameters were last set."""
        return self._iterations

    @property
    def best(self) -> Sim3Transform | None:
        """Best similarity found so far."""
        return self._best

    def set_ransac_parameters(
        self, probability: float = 0.99, min_inliers: int = 6, max_iterations: int = 300
    ) -> None:
        """Set RANSAC parameters and reset the iteration count."""
        self.probability = probability
        self.min_inliers = min_inliers
        n = self.n
        epsilon = min_inliers / n if n else math.inf
        n_iterations = 1 if min_inliers == n else _iterations_for(probability, epsilon)
        self.max_iterations = int(max(1, min(n_iterations, max_iterations)))
        self._iterations = 0

    def find(self) -> Sim3Result:
        """Run RANSAC up to the full iteration budget."""
        return self.iterate(self.max_iterations)

    def iterate(self, n_iterations: int) -> Sim3Result:
        """Run up to ``n_iterations`` more iterations."""
        flags = [False] * self.total_matches
        if self.n < self.min_inliers:
            return Sim3Result(None, flags, 0, True)

        current = 0
        while self._iterations < self.max_iterations and current < n_iterations:
            current += 1
            self._iterations += 1

            available = list(range(self.n))
            sample = []
            for _ in range(3):
                k = self._rng.randint(0, len(available) - 1)
                sample.append(available[k])
                available[k] = available[-1]
                available.pop()

            with np.errstate(all="ignore"):
                try:
                    candidate = compute_sim3(self._p1[sample], self._p2[sample], self.fix_scale)
                except np.linalg.LinAlgError:
                    continue
                inliers = self._check_inliers(candidate)
            count = int(inliers.sum())

            if count >= self._best_count:
                self._best_inliers = inliers
                self._best_count = count
                self._best = candidate
                if count > self.min_inliers:
                    for index, is_inlier in zip(self._indices, inliers):
                        if is_inlier:
                            flags[index] = True
                    return Sim3Result(candidate.t12, flags, count, False, candidate)

        return Sim3Result(None, flags, 0, self._iterations >= self.max_iterations)

    def _check_inliers(self, candidate: Sim3Transform) -> np.ndarray:
        if self.n == 0:
            return np.zeros(0, dtype=bool)
        p2_im1 = project(self._p2, candidate.t12, self.k1)
        p1_im2 = project(self._p1, candidate.t21, self.k2)
        err1 = np.sum((self._p1_im1 - p2_im1) ** 2, axis=1)
        err2 = np.sum((p1_im2 - self._p2_im2) ** 2, axis=1)
        return (err1 < self._max_errors1) & (err2 < self._max_errors2)