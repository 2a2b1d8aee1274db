"""
Privacy Shield — Threat Assessment Engine
=========================================
Runs SensorDataFusion over a continuous stream of sensor snapshots and
applies the temporal policy on top of it.

Processing order per snapshot stream:
  1. Input debounce (100 ms): only the newest snapshot of a burst survives
  2. Reject snapshots with no readings
  3. Fuse with the current AssessmentContext value
  4. Trigger debounce: a trigger within debounce_time_ms of the last
     accepted trigger is emitted with should_trigger_protection=False
  5. Dedup on (threat_level, should_trigger, score // 10)
  6. On emission: history ring (10), last assessment, context counters,
     audit log, detection-event sink, listeners

Two drivers share steps 2-6:
  - process_stream(): deterministic, debounces on snapshot timestamps
  - start(hub): one worker thread fed by a SensorHub, debounces on the clock

evaluate() is the one-shot path: fusion only, no temporal policy.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import replace
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from shield_fusion import SensorDataFusion
from shield_logger import DetectionEventSink, ShieldLogger
from shield_sensor_hub import SensorHub
from shield_types import (
    AssessmentConfig,
    AssessmentContext,
    AssessmentStats,
    AudioReading,
    CameraReading,
    DetectionEvent,
    MotionReading,
    ProtectionMode,
    ProximityReading,
    SensorSnapshot,
    ShieldConfigError,
    ThreatAssessment,
    ThreatLevel,
    now_ms,
)
from shield_utils import build_assessment_config, clamp, merge_config, DEFAULT_CONFIG

_log = logging.getLogger("AssessmentEngine")

INPUT_DEBOUNCE_MS = 100
HISTORY_SIZE = 10

AssessmentListener = Callable[[ThreatAssessment], None]
DedupKey = Tuple[ThreatLevel, bool, int]


def debounce_snapshots(snapshots: Iterable[SensorSnapshot],
                       window_ms: int = INPUT_DEBOUNCE_MS) -> Iterator[SensorSnapshot]:
    """Drop snapshots superseded within `window_ms` by a newer one.

    A snapshot is released once the next one arrives at least `window_ms`
    later; the final snapshot is always released. Timestamps must be
    non-decreasing.
    """
    pending: Optional[SensorSnapshot] = None
    for snapshot in snapshots:
        if pending is not None and snapshot.timestamp - pending.timestamp >= window_ms:
            yield pending
        pending = snapshot
    if pending is not None:
        yield pending


def dedup_key(assessment: ThreatAssessment) -> DedupKey:
    return (assessment.threat_level,
            assessment.should_trigger_protection,
            assessment.threat_score // 10)


class ThreatAssessmentEngine:
    """
    Temporal policy around SensorDataFusion.
    One logical processing sequence per engine: stream and live paths
    serialise on the same lock.
    """

    def __init__(
        self,
        config: Optional[AssessmentConfig] = None,
        fusion: Optional[SensorDataFusion] = None,
        input_debounce_ms: int = INPUT_DEBOUNCE_MS,
        history_size: int = HISTORY_SIZE,
        clock: Callable[[], int] = now_ms,
        audit_logger: Optional[ShieldLogger] = None,
        event_sink: Optional[DetectionEventSink] = None,
    ):
        if input_debounce_ms < 0:
            raise ShieldConfigError(f"input_debounce_ms must be >= 0, got {input_debounce_ms}")
        if history_size < 1:
            raise ShieldConfigError(f"history_size must be >= 1, got {history_size}")

        self.config = config or AssessmentConfig()
        self.fusion = fusion or SensorDataFusion()
        self.input_debounce_ms = input_debounce_ms
        self._clock = clock
        self.audit_logger = audit_logger
        self.event_sink = event_sink

        # Context: replaced wholesale, never mutated in place
        self._context = self._initial_context()
        self._context_lock = threading.Lock()

        self._process_lock = threading.RLock()
        self._last_assessment: Optional[ThreatAssessment] = None
        self._history: deque = deque(maxlen=history_size)
        self._last_trigger_time: Optional[int] = None
        self._last_key: Optional[DedupKey] = None

        self._listeners: List[AssessmentListener] = []
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, cfg: Optional[dict] = None, **kwargs) -> "ThreatAssessmentEngine":
        """Build from a config dict (see shield_utils.load_config)."""
        cfg = merge_config(DEFAULT_CONFIG, cfg)
        section = cfg["assessment"]
        return cls(
            config=build_assessment_config(cfg),
            input_debounce_ms=int(section["input_debounce_ms"]),
            history_size=int(section["history_size"]),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def context(self) -> AssessmentContext:
        return self._context

    @property
    def last_assessment(self) -> Optional[ThreatAssessment]:
        return self._last_assessment

    @property
    def history(self) -> Tuple[ThreatAssessment, ...]:
        with self._process_lock:
            return tuple(self._history)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    # ------------------------------------------------------------------
    # Context setters (copy-on-write)
    # ------------------------------------------------------------------

    def update_context(self, update: Callable[[AssessmentContext], AssessmentContext]) -> AssessmentContext:
        with self._context_lock:
            self._context = update(self._context)
            return self._context

    def set_protection_mode(self, mode: ProtectionMode) -> None:
        self.update_context(lambda c: replace(c, current_mode=mode))
        _log.info("Protection mode changed to %s (threshold=%d)", mode.name, mode.threshold)

    def set_trust_zone(self, in_trust_zone: bool) -> None:
        self.update_context(lambda c: replace(c, is_in_trust_zone=bool(in_trust_zone)))
        _log.info("Trust zone = %s", bool(in_trust_zone))

    def set_ambient_noise_level(self, level: float) -> None:
        self.update_context(lambda c: replace(c, ambient_noise_level=clamp(level)))

    def set_ambient_light_level(self, level: float) -> None:
        self.update_context(lambda c: replace(c, light_level=clamp(level)))

    def is_threat_sustained(self) -> bool:
        """True once enough consecutive triggering assessments were emitted."""
        return self._context.consecutive_threat_count >= self.config.consecutive_threats_before_action

    # ------------------------------------------------------------------
    # One-shot evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        camera: Optional[CameraReading] = None,
        audio: Optional[AudioReading] = None,
        motion: Optional[MotionReading] = None,
        proximity: Optional[ProximityReading] = None,
    ) -> ThreatAssessment:
        """Fuse the given readings now. No debounce, dedup or history."""
        snapshot = SensorSnapshot(
            timestamp=self._clock(),
            camera=camera,
            audio=audio,
            motion=motion,
            proximity=proximity,
        )
        return self.fusion.evaluate(snapshot, self.config, self._context)

    # ------------------------------------------------------------------
    # Stream processing
    # ------------------------------------------------------------------

    def process_snapshot(self, snapshot: SensorSnapshot,
                         now: Optional[int] = None) -> Optional[ThreatAssessment]:
        """Steps 2-4: reject empty, fuse, trigger debounce. Does not emit.

        `now` is the time the trigger debounce measures against; it
        defaults to the engine clock.
        """
        if snapshot.is_empty:
            _log.debug("No sensor data available, snapshot dropped")
            return None

        assessment = self.fusion.evaluate(snapshot, self.config, self._context)

        if assessment.should_trigger_protection:
            if now is None:
                now = self._clock()
            if (self._last_trigger_time is not None
                    and now - self._last_trigger_time < self.config.debounce_time_ms):
                _log.debug("Trigger debounced (%d ms since last)", now - self._last_trigger_time)
                return assessment.without_trigger()
            self._last_trigger_time = now

        return assessment

    def process_stream(self, snapshots: Iterable[SensorSnapshot]) -> Iterator[ThreatAssessment]:
        """Apply the full temporal policy to a timestamped snapshot stream.

        Both debounces run on snapshot timestamps, so a replay behaves the
        same whatever the engine clock says.
        """
        for snapshot in debounce_snapshots(snapshots, self.input_debounce_ms):
            emitted = self._handle(snapshot, snapshot.timestamp)
            if emitted is not None:
                yield emitted

    def _handle(self, snapshot: SensorSnapshot, now: int) -> Optional[ThreatAssessment]:
        with self._process_lock:
            assessment = self.process_snapshot(snapshot, now)
            if assessment is None:
                return None

            key = dedup_key(assessment)
            if key == self._last_key:
                return None
            self._last_key = key

            self._history.append(assessment)
            self._last_assessment = assessment
            self._update_context_from(assessment)

        self._publish(assessment, snapshot)
        return assessment

    def _update_context_from(self, assessment: ThreatAssessment) -> None:
        if assessment.should_trigger_protection:
            self.update_context(lambda c: replace(
                c,
                last_threat_time=assessment.timestamp,
                consecutive_threat_count=c.consecutive_threat_count + 1,
            ))
        elif self._context.consecutive_threat_count > 0:
            self.update_context(lambda c: replace(c, consecutive_threat_count=0))

    def _publish(self, assessment: ThreatAssessment, snapshot: SensorSnapshot) -> None:
        _log.info("Assessment emitted - score=%d level=%s trigger=%s",
                  assessment.threat_score, assessment.threat_level.name,
                  assessment.should_trigger_protection)
        if assessment.should_trigger_protection:
            _log.warning("THREAT DETECTED - score=%d action=%s reasons=%s",
                         assessment.threat_score, assessment.recommended_action.name,
                         list(assessment.trigger_reasons))

        if self.audit_logger is not None:
            try:
                self.audit_logger.log_assessment(assessment)
            except Exception:
                _log.exception("Audit log write failed")

        if self.event_sink is not None:
            try:
                self.event_sink.record(DetectionEvent.from_assessment(assessment, snapshot))
            except Exception:
                _log.exception("Detection event sink failed")

        for listener in list(self._listeners):
            try:
                listener(assessment)
            except Exception:
                _log.exception("Assessment listener %r failed", listener)

    # ------------------------------------------------------------------
    # Live pipeline
    # ------------------------------------------------------------------

    def add_listener(self, listener: AssessmentListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: AssessmentListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start(self, hub: SensorHub, listener: Optional[AssessmentListener] = None) -> None:
        """Spawn the worker thread consuming `hub`."""
        if self.is_running:
            _log.warning("Engine already running, ignoring start request")
            return
        if listener is not None:
            self.add_listener(listener)
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._run, args=(hub,), name="assessment-engine", daemon=True)
        self._worker.start()
        _log.info("Assessment engine started")

    def stop(self, timeout: float = 1.0) -> None:
        """Cancel the pipeline and join the worker."""
        self._stop_event.set()
        worker, self._worker = self._worker, None
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=timeout)
            if worker.is_alive():
                _log.warning("Assessment worker did not stop within %.1fs", timeout)
        _log.info("Assessment engine stopped")

    def _run(self, hub: SensorHub) -> None:
        poll = 0.1
        quiet = self.input_debounce_ms / 1000.0
        # Version 0 is an untouched hub; anything newer is processed at once
        seen = 0
        while not self._stop_event.is_set():
            changed = hub.wait_for_change(seen, timeout=poll)
            if changed == seen:
                continue

            # Input debounce: wait until the hub stays quiet for one window
            while quiet > 0 and not self._stop_event.is_set():
                latest = hub.wait_for_change(changed, timeout=quiet)
                if latest == changed:
                    break
                changed = latest
            if self._stop_event.is_set():
                break

            snapshot, seen = hub.snapshot_with_version()
            try:
                self._handle(snapshot, self._clock())
            except Exception:
                _log.exception("Assessment pipeline error")

    # ------------------------------------------------------------------
    # Stats / lifecycle
    # ------------------------------------------------------------------

    def get_recent_stats(self) -> AssessmentStats:
        recent = self.history
        scores = [a.threat_score for a in recent]
        return AssessmentStats(
            total_assessments=len(recent),
            threats_detected=sum(1 for a in recent if a.should_trigger_protection),
            average_score=int(np.mean(scores)) if scores else 0,
            last_threat_time=self._context.last_threat_time,
        )

    def reset(self) -> None:
        with self._process_lock:
            with self._context_lock:
                self._context = self._initial_context()
            self._last_assessment = None
            self._history.clear()
            self._last_trigger_time = None
            self._last_key = None
        _log.info("Reset complete")

    def cleanup(self) -> None:
        self.stop()
        self.reset()

    def _initial_context(self) -> AssessmentContext:
        return AssessmentContext(current_mode=self.config.protection_mode)
