"""
Privacy Shield — Service Facade
===============================
Wires the pipeline together for an embedding application:

  sensor collaborators --publish()--> SensorHub
      -> ThreatAssessmentEngine (worker thread)
      -> ProtectionExecutor -> OverlayManager

Usage:
  shield = PrivacyShield(overlay=MyOverlay())
  shield.start()
  shield.publish(make_audio_reading(pcm_buffer))
  ...
  shield.stop()
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from shield_engine import ThreatAssessmentEngine
from shield_executor import ProtectionExecutor
from shield_logger import ShieldLogger, get_logger
from shield_overlay import HeadlessOverlay, OverlayManager
from shield_sensor_hub import SensorHub
from shield_types import (
    AssessmentStats,
    IndicatorState,
    ProtectionAction,
    ProtectionMode,
    SensorKind,
    SensorReading,
    ThreatAssessment,
    now_ms,
)
from shield_utils import CONFIG, merge_config, setup_logger

_log = logging.getLogger("PrivacyShield")


class PrivacyShield:
    """
    One protection session. Readings published while paused or stopped
    are dropped.
    """

    def __init__(
        self,
        overlay: Optional[OverlayManager] = None,
        config: Optional[dict] = None,
        clock: Callable[[], int] = now_ms,
        audit: bool = False,
        audit_logger: Optional[ShieldLogger] = None,
        dispatch=None,
    ):
        self.config = merge_config(CONFIG, config)
        setup_logger("PrivacyShield", self.config["logging"]["level"])

        if audit and audit_logger is None:
            audit_logger = get_logger(self.config["logging"]["audit_log_dir"])
        self.audit_logger = audit_logger

        self.overlay = overlay or HeadlessOverlay()
        self.hub = SensorHub(clock=clock)
        self.engine = ThreatAssessmentEngine.from_config(
            self.config,
            clock=clock,
            audit_logger=audit_logger,
            event_sink=audit_logger,
        )
        self.executor = ProtectionExecutor.from_config(
            self.overlay,
            self.config,
            clock=clock,
            dispatch=dispatch,
            audit_logger=audit_logger,
        )

        self._state_lock = threading.Lock()
        self._running = False
        self._paused = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                _log.warning("Protection already running")
                return
            self._running = True
            self._paused = False
        self.engine.start(self.hub, listener=self._on_assessment)
        self.executor.update_indicator_state(IndicatorState.MONITORING)
        _log.info("Privacy protection started (mode=%s)", self.engine.context.current_mode.name)

    def stop(self) -> None:
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._paused = False
        self.engine.stop()
        self.engine.remove_listener(self._on_assessment)
        self.executor.force_deactivate()
        self.hub.clear()
        self.engine.reset()
        _log.info("Privacy protection stopped")

    def pause(self) -> None:
        """Keep the session but ignore sensors and drop any active protection."""
        with self._state_lock:
            if not self._running or self._paused:
                return
            self._paused = True
        self.hub.clear()
        self.executor.force_deactivate()
        _log.info("Privacy protection paused")

    def resume(self) -> None:
        with self._state_lock:
            if not self._running or not self._paused:
                return
            self._paused = False
        self.executor.update_indicator_state(IndicatorState.MONITORING)
        _log.info("Privacy protection resumed")

    def close(self) -> None:
        self.stop()
        self.engine.cleanup()
        self.executor.cleanup()
        if self.audit_logger is not None:
            self.audit_logger.close()

    # ------------------------------------------------------------------
    # Sensor input
    # ------------------------------------------------------------------

    def publish(self, reading: SensorReading) -> bool:
        """Hand a reading to the pipeline. Returns False if it was dropped."""
        if not self._running or self._paused:
            return False
        self.hub.publish(reading)
        return True

    def sensor_stopped(self, kind: SensorKind) -> None:
        """A collaborator went away; its weight is redistributed from now on."""
        self.hub.clear(kind)

    def _on_assessment(self, assessment: ThreatAssessment) -> None:
        if self._paused:
            return
        self.executor.execute_protection(assessment)

    # ------------------------------------------------------------------
    # Settings passthroughs
    # ------------------------------------------------------------------

    def set_protection_mode(self, mode: ProtectionMode) -> None:
        self.engine.set_protection_mode(mode)

    def set_trust_zone(self, in_trust_zone: bool) -> None:
        self.engine.set_trust_zone(in_trust_zone)

    def set_ambient_noise_level(self, level: float) -> None:
        self.engine.set_ambient_noise_level(level)

    def set_ambient_light_level(self, level: float) -> None:
        self.engine.set_ambient_light_level(level)

    def dismiss(self) -> None:
        """User dismissed the overlay (secret tap sequence)."""
        self.executor.force_deactivate()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def current_protection(self) -> ProtectionAction:
        return self.executor.current_protection

    @property
    def last_assessment(self) -> Optional[ThreatAssessment]:
        return self.engine.last_assessment

    def stats(self) -> AssessmentStats:
        return self.engine.get_recent_stats()
