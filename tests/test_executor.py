"""
Privacy Shield -- Protection Executor Tests
===========================================
Action state machine, anti-oscillation guard, blur intensity,
auto-restore after SOFT_BLUR, force deactivation and shutdown.
"""

import sys
import os
import threading
import time
import unittest
from unittest.mock import MagicMock

# Add project root
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shield_executor import ProtectionExecutor, blur_intensity
from shield_overlay import HeadlessOverlay, OverlayManager
from shield_types import (
    IndicatorState,
    ProtectionAction,
    SensorContributions,
    ShieldConfigError,
    ThreatAssessment,
    ThreatLevel,
)


class FakeClock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


class FakeTimer:
    """Stands in for threading.Timer; fired manually by the test."""
    created = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            return self.function()


def assessment(action, score=80, trigger=True, ts=0, reasons=("2 faces detected",)):
    return ThreatAssessment(
        timestamp=ts,
        threat_score=score,
        threat_level=ThreatLevel.CRITICAL if score >= 80 else ThreatLevel.HIGH,
        confidence=0.9,
        should_trigger_protection=trigger,
        recommended_action=action,
        trigger_reasons=tuple(reasons),
        sensor_contributions=SensorContributions(),
    )


class TestBlurIntensity(unittest.TestCase):

    def test_range(self):
        self.assertEqual(blur_intensity(0), 0.5)
        self.assertEqual(blur_intensity(75), 0.5)
        self.assertAlmostEqual(blur_intensity(87), 0.74)
        self.assertEqual(blur_intensity(100), 1.0)
        self.assertEqual(blur_intensity(150), 1.0)


class TestProtectionExecutor(unittest.TestCase):

    def setUp(self):
        FakeTimer.created = []
        self.clock = FakeClock(100_000)
        self.overlay = HeadlessOverlay()
        self.executor = ProtectionExecutor(self.overlay, clock=self.clock,
                                           timer_factory=FakeTimer)

    def test_rejects_bad_timings(self):
        with self.assertRaises(ShieldConfigError):
            ProtectionExecutor(self.overlay, auto_restore_ms=0)
        with self.assertRaises(ShieldConfigError):
            ProtectionExecutor(self.overlay, history_size=0)

    def test_starts_unprotected(self):
        self.assertIs(self.executor.current_protection, ProtectionAction.NONE)
        self.assertFalse(self.executor.restore_pending)

    def test_soft_blur_shows_overlay_and_schedules_restore(self):
        result = self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, score=85))
        self.assertIs(result, ProtectionAction.SOFT_BLUR)
        self.assertEqual(self.overlay.visible, HeadlessOverlay.BLUR)
        self.assertAlmostEqual(self.overlay.blur_intensity, 0.7)
        self.assertEqual(self.overlay.reasons, ["2 faces detected"])
        self.assertIs(self.overlay.indicator, IndicatorState.THREAT)
        self.assertTrue(self.executor.restore_pending)
        self.assertEqual(FakeTimer.created[-1].interval, 5.0)
        self.assertTrue(FakeTimer.created[-1].started)

    def test_escalation_within_interval_is_ignored(self):
        self.executor.execute_protection(assessment(ProtectionAction.SOFT_BLUR))
        self.clock.now += 500
        result = self.executor.execute_protection(assessment(ProtectionAction.DECOY_SCREEN))
        self.assertIs(result, ProtectionAction.SOFT_BLUR)
        self.assertEqual(self.overlay.visible, HeadlessOverlay.BLUR)
        # Rate-limited assessments are not recorded
        self.assertEqual(len(self.executor.history), 1)

    def test_escalation_after_interval(self):
        self.executor.execute_protection(assessment(ProtectionAction.SOFT_BLUR))
        self.clock.now += 1000
        self.executor.execute_protection(assessment(ProtectionAction.DECOY_SCREEN))
        self.assertIs(self.executor.current_protection, ProtectionAction.DECOY_SCREEN)
        self.assertEqual(self.overlay.visible, HeadlessOverlay.DECOY)
        # Leaving SOFT_BLUR cancels its restore
        self.assertTrue(FakeTimer.created[0].cancelled)
        self.assertFalse(self.executor.restore_pending)

    def test_deescalation_is_never_rate_limited(self):
        self.executor.execute_protection(assessment(ProtectionAction.INSTANT_LOCK))
        self.clock.now += 10
        self.executor.execute_protection(assessment(ProtectionAction.NONE, score=5, trigger=False))
        self.assertIs(self.executor.current_protection, ProtectionAction.NONE)
        self.assertIsNone(self.overlay.visible)
        self.assertIs(self.overlay.indicator, IndicatorState.SAFE)

    def test_same_action_is_noop_but_recorded(self):
        self.executor.execute_protection(assessment(ProtectionAction.DECOY_SCREEN))
        calls = list(self.overlay.calls)
        self.clock.now += 2000
        self.executor.execute_protection(assessment(ProtectionAction.DECOY_SCREEN))
        self.assertEqual(self.overlay.calls, calls)
        self.assertEqual(len(self.executor.history), 2)

    def test_history_is_bounded(self):
        for i in range(8):
            self.clock.now += 2000
            self.executor.execute_protection(assessment(ProtectionAction.DECOY_SCREEN, ts=i))
        self.assertEqual([a.timestamp for a in self.executor.history], [3, 4, 5, 6, 7])

    def test_lock_and_panic_use_lock_screen(self):
        self.executor.execute_protection(assessment(ProtectionAction.INSTANT_LOCK))
        self.assertEqual(self.overlay.visible, HeadlessOverlay.LOCK)
        self.clock.now += 2000
        self.executor.execute_protection(assessment(ProtectionAction.PANIC_MODE))
        self.assertIs(self.executor.current_protection, ProtectionAction.PANIC_MODE)
        self.assertEqual(self.overlay.visible, HeadlessOverlay.LOCK)
        self.assertFalse(self.executor.restore_pending)

    # ── auto-restore ──────────────────────────────────────────

    def test_auto_restore_after_quiet_period(self):
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, ts=self.clock.now))
        self.clock.now += 5000
        self.assertTrue(FakeTimer.created[-1].fire())
        self.assertIs(self.executor.current_protection, ProtectionAction.NONE)
        self.assertIsNone(self.overlay.visible)
        self.assertIs(self.overlay.indicator, IndicatorState.SAFE)

    def test_auto_restore_skipped_while_threat_persists(self):
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, ts=self.clock.now))
        self.clock.now += 3000
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, ts=self.clock.now))
        self.clock.now += 2000
        self.assertFalse(FakeTimer.created[-1].fire())
        self.assertIs(self.executor.current_protection, ProtectionAction.SOFT_BLUR)

    def test_auto_restore_ignores_non_triggering_history(self):
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, ts=self.clock.now))
        self.clock.now += 2000
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, trigger=False, ts=self.clock.now))
        self.clock.now += 3000
        # First entry is now exactly 5000 ms old
        self.assertTrue(FakeTimer.created[-1].fire())
        self.assertIs(self.executor.current_protection, ProtectionAction.NONE)

    def test_decoy_has_no_auto_restore(self):
        self.executor.execute_protection(assessment(ProtectionAction.DECOY_SCREEN))
        self.assertEqual(FakeTimer.created, [])

    def test_cancelled_restore_cannot_undo_escalation(self):
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, ts=self.clock.now))
        blur_timer = FakeTimer.created[-1]
        self.clock.now += 5000
        self.executor.execute_protection(
            assessment(ProtectionAction.DECOY_SCREEN, trigger=False, ts=self.clock.now))

        # The blur callback was already running when cancel() came in
        self.assertFalse(blur_timer.function())
        self.assertIs(self.executor.current_protection, ProtectionAction.DECOY_SCREEN)
        self.assertEqual(self.overlay.visible, HeadlessOverlay.DECOY)

    def test_stale_restore_ignored_after_new_blur(self):
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, ts=self.clock.now))
        first = FakeTimer.created[-1]
        self.clock.now += 1000
        self.executor.execute_protection(assessment(ProtectionAction.NONE, trigger=False))
        self.clock.now += 1000
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, ts=self.clock.now))
        self.clock.now += 10_000

        self.assertFalse(first.function())
        self.assertIs(self.executor.current_protection, ProtectionAction.SOFT_BLUR)
        self.assertTrue(self.executor.restore_pending)
        self.assertTrue(FakeTimer.created[-1].fire())
        self.assertIs(self.executor.current_protection, ProtectionAction.NONE)

    # ── force / indicator / lifecycle ─────────────────────────

    def test_force_deactivate_bypasses_rate_limit(self):
        self.executor.execute_protection(assessment(ProtectionAction.INSTANT_LOCK))
        self.executor.force_deactivate()
        self.assertIs(self.executor.current_protection, ProtectionAction.NONE)
        self.assertEqual(self.overlay.calls[-2:], ["hide_all", "indicator(SAFE)"])

    def test_return_to_none_always_shows_safe(self):
        self.executor.update_indicator_state(IndicatorState.MONITORING)
        self.executor.execute_protection(
            assessment(ProtectionAction.SOFT_BLUR, ts=self.clock.now))
        self.clock.now += 5000
        self.assertTrue(FakeTimer.created[-1].fire())
        self.assertIs(self.overlay.indicator, IndicatorState.SAFE)

    def test_update_indicator_state(self):
        self.executor.update_indicator_state(IndicatorState.MONITORING)
        self.assertIs(self.overlay.indicator, IndicatorState.MONITORING)

    def test_overlay_errors_are_absorbed(self):
        overlay = MagicMock(spec=OverlayManager)
        overlay.show_decoy_screen.side_effect = RuntimeError("window gone")
        executor = ProtectionExecutor(overlay, clock=self.clock, timer_factory=FakeTimer)
        executor.execute_protection(assessment(ProtectionAction.DECOY_SCREEN))
        self.assertIs(executor.current_protection, ProtectionAction.DECOY_SCREEN)
        overlay.update_indicator.assert_called_with(IndicatorState.THREAT)

    def test_dispatch_receives_overlay_calls(self):
        queued = []
        executor = ProtectionExecutor(self.overlay, clock=self.clock,
                                      timer_factory=FakeTimer, dispatch=queued.append)
        executor.execute_protection(assessment(ProtectionAction.DECOY_SCREEN))
        self.assertIsNone(self.overlay.visible)
        for call in queued:
            call()
        self.assertEqual(self.overlay.visible, HeadlessOverlay.DECOY)

    def test_audit_logger_records_changes(self):
        audit = MagicMock()
        executor = ProtectionExecutor(self.overlay, clock=self.clock,
                                      timer_factory=FakeTimer, audit_logger=audit)
        a = assessment(ProtectionAction.DECOY_SCREEN)
        executor.execute_protection(a)
        audit.log_action.assert_called_once_with(ProtectionAction.NONE,
                                                 ProtectionAction.DECOY_SCREEN, a)

    def test_shutdown_cancels_restore(self):
        self.executor.execute_protection(assessment(ProtectionAction.SOFT_BLUR))
        timer = FakeTimer.created[-1]
        self.executor.shutdown()
        self.assertTrue(timer.cancelled)
        self.clock.now += 5000
        self.assertIs(self.executor.execute_protection(assessment(ProtectionAction.NONE)),
                      ProtectionAction.SOFT_BLUR)

    def test_cleanup_calls_overlay_cleanup(self):
        overlay = MagicMock(spec=OverlayManager)
        ProtectionExecutor(overlay).cleanup()
        overlay.cleanup.assert_called_once()


class TestAutoRestoreRealTimer(unittest.TestCase):

    def test_soft_blur_restores_on_real_timer(self):
        overlay = HeadlessOverlay()
        executor = ProtectionExecutor(overlay, auto_restore_ms=50)
        executor.execute_protection(assessment(ProtectionAction.SOFT_BLUR, ts=0))

        deadline = time.time() + 2.0
        while executor.current_protection is not ProtectionAction.NONE and time.time() < deadline:
            time.sleep(0.01)

        self.assertIs(executor.current_protection, ProtectionAction.NONE)
        self.assertIsNone(overlay.visible)
        executor.shutdown()


if __name__ == '__main__':
    unittest.main()
