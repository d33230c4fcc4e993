"""Thread-safe requests for localization mode, reset and tracking state."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ModeChange:
    """Pending localization-mode requests taken in one go.

    When both are set, activation is handled first and deactivation after.
    """

    activate: bool = False
    deactivate: bool = False

    @property
    def requested(self) -> bool:
        return self.activate or self.deactivate

    @property
    def only_tracking(self) -> bool | None:
        """Resulting only-tracking flag, or ``None`` when nothing changes."""
        if self.deactivate:
            return False
        if self.activate:
            return True
        return None


class SystemControl:
    """Flags set by the user and consumed by the tracking front end."""

    def __init__(self) -> None:
        self._mode_lock = threading.Lock()
        self._reset_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._activate = False
        self._deactivate = False
        self._reset = False
        self._state: Any = None

    def activate_localization_mode(self) -> None:
        """Ask tracking to stop local mapping and only localize."""
        with self._mode_lock:
            self._activate = True

    def deactivate_localization_mode(self) -> None:
        """Ask tracking to resume local mapping."""
        with self._mode_lock:
            self._deactivate = True

    def request_reset(self) -> None:
        with self._reset_lock:
            self._reset = True

    def take_mode_change(self) -> ModeChange:
        """Return the pending mode requests and clear them."""
        with self._mode_lock:
            change = ModeChange(self._activate, self._deactivate)
            self._activate = False
            self._deactivate = False
            return change

    def take_reset(self) -> bool:
        """Return whether a reset was requested, clearing the request."""
        with self._reset_lock:
            pending = self._reset
            self._reset = False
            return pending

    def set_tracking_state(self, state: Any) -> None:
        with self._state_lock:
            self._state = state

    def tracking_state(self) -> Any:
        """Last tracking state recorded, ``None`` before the first frame."""
        with self._state_lock:
            return self._state