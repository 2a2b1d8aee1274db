"""
Privacy Shield — Overlay Interface
==================================
Defines the `OverlayManager` contract the ProtectionExecutor drives.
Real implementations render on whatever surface owns the UI; the
pipeline only ever calls these methods.

Also ships `HeadlessOverlay`, a state-tracking implementation that logs
every call. It backs headless runs and the test suite.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from shield_types import IndicatorState

_log = logging.getLogger("Overlay")


class OverlayManager(ABC):
    """
    Abstract Base Class for protection overlays.
    Calls arrive on the executor's dispatch surface, one at a time.
    """

    @abstractmethod
    def show_blur_overlay(self, intensity: float, reasons: Sequence[str]) -> None:
        """
        Cover the screen with a blur.

        Args:
            intensity: 0.5 - 1.0, grows with the threat score
            reasons: Trigger reasons to display on the overlay
        """
        pass

    @abstractmethod
    def hide_blur_overlay(self) -> None:
        pass

    @abstractmethod
    def show_decoy_screen(self) -> None:
        pass

    @abstractmethod
    def show_lock_screen(self) -> None:
        pass

    @abstractmethod
    def hide_all_overlays(self) -> None:
        pass

    @abstractmethod
    def update_indicator(self, state: IndicatorState) -> None:
        pass

    def cleanup(self) -> None:
        """Optional cleanup logic on shutdown."""
        pass


class HeadlessOverlay(OverlayManager):
    """Keeps overlay state in memory and logs each change."""

    BLUR, DECOY, LOCK = "blur", "decoy", "lock"

    def __init__(self):
        self._lock = threading.Lock()
        self.visible: Optional[str] = None
        self.blur_intensity: float = 0.0
        self.reasons: List[str] = []
        self.indicator = IndicatorState.SAFE
        self.calls: List[str] = []

    def _record(self, call: str):
        self.calls.append(call)
        _log.info("overlay: %s", call)

    def show_blur_overlay(self, intensity: float, reasons: Sequence[str]) -> None:
        with self._lock:
            self.visible = self.BLUR
            self.blur_intensity = intensity
            self.reasons = list(reasons)
            self._record(f"show_blur({intensity:.2f})")

    def hide_blur_overlay(self) -> None:
        with self._lock:
            if self.visible == self.BLUR:
                self.visible = None
            self._record("hide_blur")

    def show_decoy_screen(self) -> None:
        with self._lock:
            self.visible = self.DECOY
            self._record("show_decoy")

    def show_lock_screen(self) -> None:
        with self._lock:
            self.visible = self.LOCK
            self._record("show_lock")

    def hide_all_overlays(self) -> None:
        with self._lock:
            self.visible = None
            self.reasons = []
            self._record("hide_all")

    def update_indicator(self, state: IndicatorState) -> None:
        with self._lock:
            if state is self.indicator:
                return
            self.indicator = state
            self._record(f"indicator({state.name})")
