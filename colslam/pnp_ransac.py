"""RANSAC camera pose estimation around the EPnP solver."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from colslam.epnp import CameraIntrinsics, solve_epnp


@dataclass
class PnPResult:
    """Outcome of a RANSAC run.

    ``pose`` is the 4x4 float32 world-to-camera transform, or ``None`` when
    no pose was found. ``inliers`` flags each original match (empty when no
    pose was found) and ``no_more`` tells that the iteration budget is spent.
    """

    pose: np.ndarray | None
    inliers: list[bool] = field(default_factory=list)
    n_inliers: int = 0
    no_more: bool = False

    @property
    def found(self) -> bool:
        return self.pose is not None


def _iterations_for(probability: float, epsilon: float) -> float:
    hit = epsilon**3
    if hit >= 1.0:
        return 1
    if hit <= 0.0 or probability >= 1.0:
        return math.inf
    if probability <= 0.0:
        return 0
    return math.ceil(math.log(1.0 - probability) / math.log(1.0 - hit))


def _pose_matrix(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    pose = np.eye(4, dtype=np.float32)
    pose[:3, :3] = rotation
    pose[:3, 3] = translation
    return pose


class PnPRansac:
    """Robust pose from 3D-2D matches: minimal EPnP samples, then refinement."""

    def __init__(
        self,
        world_points,
        image_points,
        level_sigma2,
        intrinsics: CameraIntrinsics,
        keypoint_indices: Sequence[int] | None = None,
        total_matches: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._pws = np.asarray(world_points, dtype=np.float64).reshape(-1, 3)
        self._us = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        self._sigma2 = np.asarray(level_sigma2, dtype=np.float64).reshape(-1)
        n = self._pws.shape[0]
        if self._us.shape[0] != n or self._sigma2.shape[0] != n:
            raise ValueError("world points, image points and sigmas differ in length")

        indices = list(range(n)) if keypoint_indices is None else [int(i) for i in keypoint_indices]
        if len(indices) != n:
            raise ValueError("one keypoint index is needed per correspondence")
        if total_matches is None:
            total_matches = max(indices) + 1 if indices else 0
        if any(i < 0 or i >= total_matches for i in indices):
            raise ValueError("keypoint index outside the match vector")

        self.intrinsics = intrinsics
        self._indices = indices
        self.total_matches = int(total_matches)
        self._rng = rng if rng is not None else random.Random()

        self._iterations = 0
        self._best_count = 0
        self._best_inliers = np.zeros(n, dtype=bool)
        self._best_pose: np.ndarray | None = None

        self.set_ransac_parameters()

    @property
    def n(self) -> int:
        """Number of correspondences."""
        return self._pws.shape[0]

    @property
    def iterations(self) -> int:
        """RANSAC iterations spent so far over all calls."""
        return self._iterations

    def set_ransac_parameters(
        self,
        probability: float = 0.99,
        min_inliers: int = 8,
        max_iterations: int = 300,
        min_set: int = 4,
        epsilon: float = 0.4,
        th2: float = 5.991,
    ) -> None:
        """Set the RANSAC parameters, adapting them to the number of matches."""
        n = self.n
        self.probability = probability
        self.min_set = min_set
        self.th2 = th2

        n_min = max(int(n * epsilon), min_inliers, min_set)
        self.min_inliers = n_min
        if n > 0 and epsilon < n_min / n:
            epsilon = n_min / n
        self.epsilon = epsilon

        n_iterations = 1 if n_min == n else _iterations_for(probability, epsilon)
        self.max_iterations = int(max(1, min(n_iterations, max_iterations)))
        self._max_errors = self._sigma2 * th2

    def find(self) -> PnPResult:
        """Run RANSAC up to the full iteration budget."""
        return self.iterate(self.max_iterations)

    def iterate(self, n_iterations: int) -> PnPResult:
        """Run RANSAC iterations and return the first refined pose found."""
        if self.n < self.min_inliers:
            return PnPResult(None, [], 0, True)

        current = 0
        while self._iterations < self.max_iterations or current < n_iterations:
            current += 1
            self._iterations += 1

            available = list(range(self.n))
            sample = []
            for _ in range(self.min_set):
                k = self._rng.randint(0, len(available) - 1)
                sample.append(available[k])
                available[k] = available[-1]
                available.pop()

            solution = self._solve(sample)
            inliers = self._check_inliers(solution)
            count = int(inliers.sum())

            if count >= self.min_inliers:
                if count > self._best_count:
                    self._best_inliers = inliers
                    self._best_count = count
                    self._best_pose = _pose_matrix(*solution)

                refined = self._refine()
                if refined is not None:
                    pose, refined_inliers = refined
                    return PnPResult(
                        pose,
                        self._match_flags(refined_inliers),
                        int(refined_inliers.sum()),
                        False,
                    )

        no_more = self._iterations >= self.max_iterations
        if no_more and self._best_count >= self.min_inliers and self._best_pose is not None:
            return PnPResult(
                self._best_pose.copy(),
                self._match_flags(self._best_inliers),
                self._best_count,
                True,
            )
        return PnPResult(None, [], 0, no_more)

    def _solve(self, indices) -> tuple[np.ndarray, np.ndarray] | None:
        try:
            with np.errstate(all="ignore"):
                rotation, translation, _ = solve_epnp(
                    self._pws[indices], self._us[indices], self.intrinsics
                )
        except np.linalg.LinAlgError:
            return None
        return rotation, translation

    def _check_inliers(self, solution) -> np.ndarray:
        if solution is None:
            return np.zeros(self.n, dtype=bool)
        rotation, translation = solution
        k = self.intrinsics
        with np.errstate(all="ignore"):
            pc = self._pws @ rotation.T + translation
            inv_z = 1.0 / pc[:, 2]
            ue = k.uc + k.fu * pc[:, 0] * inv_z
            ve = k.vc + k.fv * pc[:, 1] * inv_z
            error2 = (self._us[:, 0] - ue) ** 2 + (self._us[:, 1] - ve) ** 2
            return error2 < self._max_errors

    def _refine(self) -> tuple[np.ndarray, np.ndarray] | None:
        indices = np.flatnonzero(self._best_inliers)
        solution = self._solve(indices)
        inliers = self._check_inliers(solution)
        if solution is not None and int(inliers.sum()) > self.min_inliers:
            return _pose_matrix(*solution), inliers
        return None

    def _match_flags(self, inliers: np.ndarray) -> list[bool]:
        flags = [False] * self.total_matches
        for index, is_inlier in zip(self._indices, inliers):
            if is_inlier:
                flags[index] = True
        return flags