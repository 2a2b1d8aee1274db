"""
Privacy Shield — Protection Executor
====================================
Turns emitted ThreatAssessments into overlay/indicator side effects.

State machine over ProtectionAction:
  NONE -> SOFT_BLUR -> DECOY_SCREEN -> INSTANT_LOCK -> PANIC_MODE

Rules per assessment:
  1. Rate limit: a non-NONE recommendation within 1000 ms of the last
     action change is ignored (NONE is never rate-limited)
  2. Record the assessment in the 5-slot history
  3. Same action as current: no-op
  4. Transition:
       NONE         -> hide all, indicator SAFE
       SOFT_BLUR    -> blur (0.5-1.0 by score), indicator THREAT,
                       auto-restore check after 5000 ms
       DECOY/LOCK/PANIC -> overlay, indicator THREAT, stays until
                       force_deactivate()
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Optional, Tuple

from shield_logger import ShieldLogger
from shield_overlay import OverlayManager
from shield_types import (
    IndicatorState,
    ProtectionAction,
    ShieldConfigError,
    ThreatAssessment,
    now_ms,
)
from shield_utils import clamp

_log = logging.getLogger("ProtectionExecutor")

MIN_ACTION_INTERVAL_MS = 1000
AUTO_RESTORE_MS = 5000
HISTORY_SIZE = 5

Dispatch = Callable[[Callable[[], None]], None]


def _inline(fn: Callable[[], None]) -> None:
    fn()


def blur_intensity(threat_score: int) -> float:
    """Score 75-100 maps to intensity 0.5-1.0."""
    return clamp(max(threat_score - 75, 0) / 25.0 * 0.5 + 0.5, 0.5, 1.0)


class ProtectionExecutor:
    """
    Drives an OverlayManager from assessments.
    All state changes happen under one RLock; overlay calls are handed
    to `dispatch` (inline by default) so a UI owner can marshal them.
    """

    def __init__(
        self,
        overlay: OverlayManager,
        clock: Callable[[], int] = now_ms,
        min_action_interval_ms: int = MIN_ACTION_INTERVAL_MS,
        auto_restore_ms: int = AUTO_RESTORE_MS,
        history_size: int = HISTORY_SIZE,
        dispatch: Optional[Dispatch] = None,
        audit_logger: Optional[ShieldLogger] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        if min_action_interval_ms < 0:
            raise ShieldConfigError(f"min_action_interval_ms must be >= 0, got {min_action_interval_ms}")
        if auto_restore_ms <= 0:
            raise ShieldConfigError(f"auto_restore_ms must be > 0, got {auto_restore_ms}")
        if history_size < 1:
            raise ShieldConfigError(f"history_size must be >= 1, got {history_size}")

        self.overlay = overlay
        self._clock = clock
        self.min_action_interval_ms = min_action_interval_ms
        self.auto_restore_ms = auto_restore_ms
        self._dispatch = dispatch or _inline
        self.audit_logger = audit_logger
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._current = ProtectionAction.NONE
        self._history: deque = deque(maxlen=history_size)
        self._last_action_time = 0
        self._restore_timer: Optional[threading.Timer] = None
        # Bumped on every cancel; a timer only acts on its own generation
        self._restore_generation = 0
        self._shut_down = False

    @classmethod
    def from_config(cls, overlay: OverlayManager, cfg: dict, **kwargs) -> "ProtectionExecutor":
        section = cfg.get("protection", {})
        return cls(
            overlay,
            min_action_interval_ms=int(section.get("min_action_interval_ms", MIN_ACTION_INTERVAL_MS)),
            auto_restore_ms=int(section.get("auto_restore_ms", AUTO_RESTORE_MS)),
            history_size=int(section.get("history_size", HISTORY_SIZE)),
            **kwargs,
        )

    @property
    def current_protection(self) -> ProtectionAction:
        return self._current

    @property
    def history(self) -> Tuple[ThreatAssessment, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def restore_pending(self) -> bool:
        return self._restore_timer is not None

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def execute_protection(self, assessment: ThreatAssessment) -> ProtectionAction:
        """Apply one assessment. Returns the protection in effect afterwards."""
        action = assessment.recommended_action
        with self._lock:
            if self._shut_down:
                return self._current

            now = self._clock()
            if (action is not ProtectionAction.NONE
                    and now - self._last_action_time < self.min_action_interval_ms):
                _log.debug("Skipping %s (too soon, %d ms)", action.name, now - self._last_action_time)
                return self._current

            self._history.append(assessment)

            # A repeated SOFT_BLUR keeps the original restore timer
            if action is self._current:
                return self._current

            previous = self._current
            self._apply(action, assessment)
            self._current = action
            self._last_action_time = now

        _log.info("Protection changed %s -> %s (score=%d)",
                  previous.name, action.name, assessment.threat_score)
        self._audit(previous, action, assessment)
        return action

    def force_deactivate(self) -> None:
        """User dismissed the overlay: go to NONE now, bypassing the rate limit."""
        with self._lock:
            previous = self._current
            self._deactivate()
            self._current = ProtectionAction.NONE
        _log.info("Protection force-deactivated (was %s)", previous.name)
        if previous is not ProtectionAction.NONE:
            self._audit(previous, ProtectionAction.NONE, None)

    def update_indicator_state(self, state: IndicatorState) -> None:
        self._call_overlay(self.overlay.update_indicator, state)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _apply(self, action: ProtectionAction, assessment: ThreatAssessment) -> None:
        if action is ProtectionAction.NONE:
            self._deactivate()
            return

        self._cancel_restore()
        if action is ProtectionAction.SOFT_BLUR:
            intensity = blur_intensity(assessment.threat_score)
            _log.info("Activating SOFT_BLUR (intensity=%.2f)", intensity)
            self._call_overlay(self.overlay.show_blur_overlay, intensity,
                               list(assessment.trigger_reasons))
        elif action is ProtectionAction.DECOY_SCREEN:
            _log.info("Activating DECOY_SCREEN")
            self._call_overlay(self.overlay.show_decoy_screen)
        else:
            # INSTANT_LOCK and PANIC_MODE both use the lock screen
            _log.info("Activating %s", action.name)
            self._call_overlay(self.overlay.show_lock_screen)

        self._call_overlay(self.overlay.update_indicator, IndicatorState.THREAT)

        if action is ProtectionAction.SOFT_BLUR:
            self._schedule_restore()

    def _deactivate(self) -> None:
        self._cancel_restore()
        self._call_overlay(self.overlay.hide_all_overlays)
        self._call_overlay(self.overlay.update_indicator, IndicatorState.SAFE)

    def _call_overlay(self, method: Callable, *args) -> None:
        def run():
            try:
                method(*args)
            except Exception:
                _log.exception("Overlay call %s failed", getattr(method, "__name__", method))
        try:
            self._dispatch(run)
        except Exception:
            _log.exception("Overlay dispatch failed")

    def _audit(self, previous: ProtectionAction, current: ProtectionAction,
               assessment: Optional[ThreatAssessment]) -> None:
        if self.audit_logger is None:
            return
        try:
            self.audit_logger.log_action(previous, current, assessment)
        except Exception:
            _log.exception("Audit log write failed")

    # ------------------------------------------------------------------
    # Auto-restore
    # ------------------------------------------------------------------

    def _schedule_restore(self) -> None:
        self._cancel_restore()
        generation = self._restore_generation
        timer = self._timer_factory(self.auto_restore_ms / 1000.0,
                                    lambda: self._auto_restore_check(generation))
        timer.daemon = True
        self._restore_timer = timer
        timer.start()

    def _cancel_restore(self) -> None:
        # Timer.cancel() cannot stop a callback already waiting on the lock
        self._restore_generation += 1
        if self._restore_timer is not None:
            self._restore_timer.cancel()
            self._restore_timer = None

    def _auto_restore_check(self, generation: int) -> bool:
        """Revert SOFT_BLUR to NONE unless a triggering assessment arrived in the last window.

        Returns True when protection was restored. A check from a cancelled
        timer does nothing.
        """
        with self._lock:
            if generation != self._restore_generation:
                _log.debug("Stale auto-restore check ignored")
                return False
            self._restore_timer = None
            if self._shut_down or self._current is not ProtectionAction.SOFT_BLUR:
                return False
            now = self._clock()
            recent = sum(1 for a in self._history
                         if a.should_trigger_protection and now - a.timestamp < self.auto_restore_ms)
            if recent:
                _log.debug("Auto-restore skipped (%d recent threat(s))", recent)
                return False
            previous = self._current
            self._deactivate()
            self._current = ProtectionAction.NONE

        _log.info("Auto-restoring (no recent threats)")
        self._audit(previous, ProtectionAction.NONE, None)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Cancel the auto-restore timer. current_protection is left as is."""
        with self._lock:
            self._shut_down = True
            self._cancel_restore()

    def cleanup(self) -> None:
        self.shutdown()
        try:
            self.overlay.cleanup()
        except Exception:
            _log.exception("Overlay cleanup failed")
