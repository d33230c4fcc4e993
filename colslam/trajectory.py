"""Camera trajectory reconstruction from frame records, and KITTI output."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Protocol

import numpy as np


class ReferenceKeyFrame(Protocol):
    """What the trajectory needs from a reference keyframe.

    ``pose`` is the world-to-camera transform. ``tcp`` is the pose relative
    to ``parent``, valid once the keyframe has been marked ``bad``.
    """

    bad: bool
    tcp: Any
    parent: Any
    pose: Any


@dataclass(frozen=True)
class TrajectoryRecord:
    """One tracked frame: its pose relative to its reference keyframe."""

    relative_pose: np.ndarray
    reference: Any
    timestamp: float
    lost: bool = False


def _matrix(value, shape: tuple[int, int], name: str) -> np.ndarray:
    array = np.asarray(value, dtype=np.float32)
    if array.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {array.shape}")
    return array


def _as_record(item) -> TrajectoryRecord:
    if isinstance(item, TrajectoryRecord):
        return item
    relative_pose, reference, timestamp, lost = item
    return TrajectoryRecord(relative_pose, reference, float(timestamp), bool(lost))


def camera_in_world(tcw) -> tuple[np.ndarray, np.ndarray]:
    """Return the camera-to-world rotation and the camera centre of a 4x4 pose."""
    pose = _matrix(tcw, (4, 4), "pose")
    rotation_wc = pose[:3, :3].T.copy()
    translation_wc = -rotation_wc @ pose[:3, 3]
    return rotation_wc, translation_wc


def _reference_to_origin(reference: ReferenceKeyFrame, origin_inverse: np.ndarray) -> np.ndarray:
    trw = np.eye(4, dtype=np.float32)
    keyframe = reference
    visited: set[int] = set()
    while keyframe.bad:
        if id(keyframe) in visited:
            raise ValueError("spanning tree of culled keyframes contains a cycle")
        visited.add(id(keyframe))
        if keyframe.parent is None:
            raise ValueError("culled keyframe has no parent to fall back on")
        trw = trw @ _matrix(keyframe.tcp, (4, 4), "relative parent pose")
        keyframe = keyframe.parent
    return trw @ _matrix(keyframe.pose, (4, 4), "keyframe pose") @ origin_inverse


def frame_poses(
    records: Iterable[TrajectoryRecord | tuple], origin_inverse
) -> Iterator[tuple[TrajectoryRecord, np.ndarray]]:
    """Yield each record with its world-to-camera pose relative to the origin.

    ``origin_inverse`` is the inverse pose of the first keyframe, so that it
    sits at the origin. Culled reference keyframes are replaced by walking
    up the spanning tree.
    """
    origin = _matrix(origin_inverse, (4, 4), "origin inverse")
    for item in records:
        record = _as_record(item)
        relative = _matrix(record.relative_pose, (4, 4), "relative pose")
        yield record, relative @ _reference_to_origin(record.reference, origin)


def format_kitti_line(rotation_wc, translation_wc) -> str:
    """Format a camera-to-world pose as the 12 numbers of a KITTI line."""
    rotation = _matrix(rotation_wc, (3, 3), "rotation")
    translation = np.asarray(translation_wc, dtype=np.float32).reshape(-1)
    if translation.shape != (3,):
        raise ValueError("translation must hold three values")
    values = []
    for row in range(3):
        values.extend(rotation[row])
        values.append(translation[row])
    return " ".join(f"{float(v):.9f}" for v in values)


def write_kitti_trajectory(path: str | Path, records, origin_inverse) -> int:
    """Write every frame's camera-to-world pose in KITTI format.

    Returns the number of lines written.
    """
    lines = []
    for _, tcw in frame_poses(records, origin_inverse):
        lines.append(format_kitti_line(*camera_in_world(tcw)))
    with Path(path).open("w", encoding="utf-8") as handle:
        for line in lines:
            handle.write(line + "\n")
    return len(lines)