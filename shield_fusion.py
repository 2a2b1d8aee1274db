"""
Privacy Shield — Sensor Data Fusion
===================================
Combines the four per-sensor scores into one ThreatAssessment.

Pipeline per snapshot:
  1. Pick weights for the context (noise > light > paranoia > configured)
  2. Score each sensor, redistribute weights over present sensors
  3. Weighted score 0-100
  4. Threat level bands: <20 NONE, <40 LOW, <60 MEDIUM, <80 HIGH, else CRITICAL
  5. Confidence = mean confidence of present readings
  6. Human-readable trigger reasons
  7. Trigger decision: confidence gate, then mode threshold
     (x1.2 capped at 95 inside a trust zone)
  8. Recommended action from the mode's ladder
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np

from shield_scorer import ThreatScorer
from shield_types import (
    AssessmentConfig,
    AssessmentContext,
    ProtectionAction,
    ProtectionMode,
    SensorContributions,
    SensorSnapshot,
    SensorWeights,
    ThreatAssessment,
    ThreatLevel,
)

_log = logging.getLogger("SensorFusion")

TRUST_ZONE_FACTOR_NUM, TRUST_ZONE_FACTOR_DEN = 6, 5   # x1.2, integer arithmetic
TRUST_ZONE_MAX_THRESHOLD = 95

# (minimum score, action), checked top-down
_ACTION_LADDERS = {
    ProtectionMode.PARANOIA: (
        (60, ProtectionAction.INSTANT_LOCK),
        (40, ProtectionAction.DECOY_SCREEN),
        (20, ProtectionAction.SOFT_BLUR),
    ),
    ProtectionMode.BALANCED: (
        (80, ProtectionAction.INSTANT_LOCK),
        (60, ProtectionAction.DECOY_SCREEN),
        (50, ProtectionAction.SOFT_BLUR),
    ),
}
_DEFAULT_LADDER = (
    (90, ProtectionAction.DECOY_SCREEN),
    (75, ProtectionAction.SOFT_BLUR),
)


def weights_for_context(context: AssessmentContext, default: SensorWeights) -> SensorWeights:
    """First matching rule wins; rules are never combined."""
    if context.ambient_noise_level > 0.7:
        return SensorWeights.NOISY_ENVIRONMENT
    if context.light_level < 0.3:
        return SensorWeights.LOW_LIGHT
    if context.current_mode is ProtectionMode.PARANOIA:
        return SensorWeights.PARANOIA
    return default


def score_to_threat_level(score: int) -> ThreatLevel:
    if score < 20:
        return ThreatLevel.NONE
    if score < 40:
        return ThreatLevel.LOW
    if score < 60:
        return ThreatLevel.MEDIUM
    if score < 80:
        return ThreatLevel.HIGH
    return ThreatLevel.CRITICAL


def overall_confidence(snapshot: SensorSnapshot) -> float:
    confidences = [r.confidence for r in snapshot.readings()]
    if not confidences:
        return 0.0
    return float(np.mean(confidences))


def effective_threshold(context: AssessmentContext) -> int:
    threshold = context.current_mode.threshold
    if context.is_in_trust_zone:
        return min(TRUST_ZONE_MAX_THRESHOLD,
                   threshold * TRUST_ZONE_FACTOR_NUM // TRUST_ZONE_FACTOR_DEN)
    return threshold


def should_trigger(score: int, confidence: float,
                   config: AssessmentConfig, context: AssessmentContext) -> bool:
    if confidence < config.min_confidence_threshold:
        _log.debug("confidence too low (%.2f < %.2f)", confidence, config.min_confidence_threshold)
        return False
    return score >= effective_threshold(context)


def recommend_action(score: int, mode: ProtectionMode) -> ProtectionAction:
    for minimum, action in _ACTION_LADDERS.get(mode, _DEFAULT_LADDER):
        if score >= minimum:
            return action
    return ProtectionAction.NONE


def identify_trigger_reasons(snapshot: SensorSnapshot,
                             contributions: SensorContributions) -> Tuple[str, ...]:
    """Ordered reasons. Presence and contribution checks run independently."""
    reasons: List[str] = []

    camera = snapshot.camera
    if camera is not None:
        if camera.faces_detected > 1:
            reasons.append(f"{camera.faces_detected} faces detected")
        if camera.faces_looking_at_screen > 0 and camera.faces_detected > 1:
            reasons.append(f"{camera.faces_looking_at_screen} person(s) looking at the screen")
        if camera.unknown_faces_count > 0:
            reasons.append(f"{camera.unknown_faces_count} unknown face(s)")
        if camera.distance_to_camera is not None and camera.distance_to_camera < 0.5:
            reasons.append(f"Face very close ({int(camera.distance_to_camera * 100)}cm)")

    audio = snapshot.audio
    if audio is not None:
        if audio.is_speech_detected:
            reasons.append("Speech detected")
        if audio.average_decibels > 70.0:
            reasons.append(f"High noise level ({int(audio.average_decibels)}dB)")

    motion = snapshot.motion
    if motion is not None:
        if motion.magnitude > 15.0:
            reasons.append("Sudden movement detected")
        if motion.movement_intensity > 0.7:
            reasons.append("High movement intensity")

    proximity = snapshot.proximity
    if proximity is not None and proximity.is_near:
        reasons.append("Object close to the screen")

    if contributions.camera_score > 0.5:
        reasons.append("Camera: high score")
    if contributions.audio_score > 0.6:
        reasons.append("Audio: high score")

    return tuple(reasons)


class SensorDataFusion:
    """Stateless evaluator: snapshot + config + context -> ThreatAssessment."""

    def __init__(self, scorer: Optional[ThreatScorer] = None):
        self.scorer = scorer or ThreatScorer()

    def evaluate(
        self,
        snapshot: SensorSnapshot,
        config: Optional[AssessmentConfig] = None,
        context: Optional[AssessmentContext] = None,
    ) -> ThreatAssessment:
        config = config or AssessmentConfig()
        context = context or AssessmentContext()

        weights = weights_for_context(context, config.sensor_weights)
        contributions = self.scorer.calculate_score(snapshot, weights)
        score = contributions.calculate_weighted_score()
        level = score_to_threat_level(score)
        confidence = overall_confidence(snapshot)

        assessment = ThreatAssessment(
            timestamp=snapshot.timestamp,
            threat_score=score,
            threat_level=level,
            confidence=confidence,
            should_trigger_protection=should_trigger(score, confidence, config, context),
            recommended_action=recommend_action(score, context.current_mode),
            trigger_reasons=identify_trigger_reasons(snapshot, contributions),
            sensor_contributions=contributions,
        )

        _log.debug("assessment score=%d level=%s trigger=%s action=%s",
                   score, level.name, assessment.should_trigger_protection,
                   assessment.recommended_action.name)
        return assessment
