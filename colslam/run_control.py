"""Stop, release and finish handshakes for worker loops, and viewer timing."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Mapping


class StopController:
    """Thread-safe stop/finish flags shared by a worker loop and its owner.

    A new controller reports itself finished and stopped until the worker
    starts and clears those flags.
    """

    def __init__(self, finished: bool = True, stopped: bool = True) -> None:
        self._lock = threading.Lock()
        self._finish_requested = False
        self._finished = finished
        self._stop_requested = False
        self._stopped = stopped

    def request_finish(self) -> None:
        with self._lock:
            self._finish_requested = True

    def check_finish(self) -> bool:
        with self._lock:
            return self._finish_requested

    def set_finish(self) -> None:
        with self._lock:
            self._finished = True

    def is_finished(self) -> bool:
        with self._lock:
            return self._finished

    def request_stop(self) -> None:
        """Ask the worker to pause; ignored while it is already stopped."""
        with self._lock:
            if not self._stopped:
                self._stop_requested = True

    def is_stopped(self) -> bool:
        with self._lock:
            return self._stopped

    def stop(self) -> bool:
        """Honour a pending stop request; return whether the worker stopped."""
        with self._lock:
            if self._finish_requested:
                return False
            if self._stop_requested:
                self._stopped = True
                self._stop_requested = False
                return True
            return False

    def release(self) -> None:
        with self._lock:
            self._stopped = False


def _number(settings: Mapping[str, Any], key: str) -> float:
    value = settings.get(key, 0)
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"setting {key!r} is not a number: {value!r}") from None


@dataclass(frozen=True)
class ViewerSettings:
    """Refresh period and image size used by the frame viewer."""

    fps: float = 30.0
    period_ms: float = 1e3 / 30.0
    image_width: float = 640.0
    image_height: float = 480.0

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> "ViewerSettings":
        """Read settings; fall back to 30 fps and 640x480 for unset values."""
        fps = _number(settings, "Camera.fps")
        if fps < 1:
            fps = 30.0
        width = _number(settings, "Camera.width")
        height = _number(settings, "Camera.height")
        if width < 1 or height < 1:
            width, height = 640.0, 480.0
        return cls(fps=fps, period_ms=1e3 / fps, image_width=width, image_height=height)