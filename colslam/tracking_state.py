"""Tracking states and the per-frame trajectory log."""

from __future__ import annotations

import enum
from typing import Any, Iterator

import numpy as np


class TrackingState(enum.IntEnum):
    """Where the tracker stands."""

    NO_IMAGES_YET = 0
    NOT_INITIALIZED = 1
    OK = 2
    LOST = 3


def next_state(state: TrackingState | int) -> TrackingState:
    """State the tracker enters when a frame arrives, before it is tracked."""
    state = TrackingState(state)
    if state is TrackingState.NO_IMAGES_YET:
        return TrackingState.NOT_INITIALIZED
    return state


class FrameLog:
    """Pose of every frame relative to its reference keyframe.

    Each entry holds ``(relative_pose, reference, timestamp, lost)``. When a
    frame has no pose, the previous entry's pose, reference and timestamp are
    repeated so the trajectory keeps one entry per frame.
    """

    def __init__(self) -> None:
        self._entries: list[tuple[np.ndarray, Any, float, bool]] = []

    def record(self, relative_pose, reference: Any, timestamp: float, lost: bool) -> None:
        """Append one frame; ``relative_pose`` of ``None`` repeats the last entry."""
        if relative_pose is None:
            if not self._entries:
                raise ValueError("no earlier frame to repeat for a frame without pose")
            pose, reference, timestamp, _ = self._entries[-1]
        else:
            pose = np.array(relative_pose, dtype=np.float32)
            if pose.shape != (4, 4):
                raise ValueError("relative pose must be a 4x4 matrix")
        self._entries.append((pose, reference, float(timestamp), bool(lost)))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[tuple[np.ndarray, Any, float, bool]]:
        return iter(list(self._entries))