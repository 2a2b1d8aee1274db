"""
Privacy Shield — Threat Scorer
==============================
Normalises each sensor reading into a suspicion value in [0, 1] and
redistributes the configured weights over the sensors actually present.

Per-sensor curves (before multiplying by the reading's confidence):

  Camera     face count      0 -> 0, 1 -> 0.10, 2 -> 0.35, 3+ -> 0.40
             lookers         0 -> 0, 1 of 1 face -> 0.05,
                             1 of 2+ faces -> 0.40, 2+ -> 0.50
             unknown faces   min(n, 3) / 3 * 0.10
  Audio      avg dB          <35 -> 0, <50 -> 0.15, <60 -> 0.30,
                             <70 -> 0.45, else 0.60
             speech          +0.40
  Motion     moving          +0.30
             intensity       intensity * 0.50
             magnitude       <10 -> 0, <15 -> 0.10, <20 -> 0.15, else 0.20
  Proximity  near            0.70, or 0.90 when distance < 1 on a
                             fine-grained sensor (max range > 5)

A missing reading scores 0 and its weight goes to the others.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from shield_types import (
    AudioReading,
    CameraReading,
    MotionReading,
    ProximityReading,
    SensorContributions,
    SensorKind,
    SensorReading,
    SensorSnapshot,
    SensorWeights,
)
from shield_utils import clamp

_log = logging.getLogger("ThreatScorer")


# ===================================================================
# Per-sensor normalisation
# ===================================================================

def score_camera(reading: Optional[CameraReading]) -> float:
    if reading is None:
        return 0.0

    faces = reading.faces_detected
    looking = reading.faces_looking_at_screen

    if faces <= 0:
        face_score = 0.0
    elif faces == 1:
        face_score = 0.1   # most likely the user
    elif faces == 2:
        face_score = 0.35
    else:
        face_score = 0.4

    if looking <= 0:
        looking_score = 0.0
    elif looking == 1 and faces == 1:
        looking_score = 0.05
    elif looking == 1 and faces >= 2:
        looking_score = 0.4  # someone else is reading the screen
    else:
        looking_score = 0.5

    unknown_score = (min(max(reading.unknown_faces_count, 0), 3) / 3.0) * 0.1

    final = clamp((face_score + looking_score + unknown_score) * reading.confidence)
    _log.debug("camera: faces=%d looking=%d face=%.2f looking=%.2f final=%.3f",
               faces, looking, face_score, looking_score, final)
    return final


def score_audio(reading: Optional[AudioReading]) -> float:
    if reading is None:
        return 0.0

    db = reading.average_decibels
    if db < 35.0:
        db_score = 0.0     # very quiet
    elif db < 50.0:
        db_score = 0.15
    elif db < 60.0:
        db_score = 0.3
    elif db < 70.0:
        db_score = 0.45    # conversation / music
    else:
        db_score = 0.6

    speech_score = 0.4 if reading.is_speech_detected else 0.0

    final = clamp((db_score + speech_score) * reading.confidence)
    _log.debug("audio: dB=%.1f speech=%s final=%.3f", db, reading.is_speech_detected, final)
    return final


def score_motion(reading: Optional[MotionReading]) -> float:
    if reading is None:
        return 0.0

    moving_score = 0.3 if reading.is_moving else 0.0
    intensity_score = reading.movement_intensity * 0.5

    # Gravity alone reads ~9.8 m/s^2
    magnitude = reading.magnitude
    if magnitude < 10.0:
        magnitude_score = 0.0
    elif magnitude < 15.0:
        magnitude_score = 0.1
    elif magnitude < 20.0:
        magnitude_score = 0.15
    else:
        magnitude_score = 0.2   # phone grabbed

    return clamp((moving_score + intensity_score + magnitude_score) * reading.confidence)


def score_proximity(reading: Optional[ProximityReading]) -> float:
    if reading is None:
        return 0.0

    if reading.is_near:
        score = 0.7
        # Binary sensors only report 0 / max range
        if reading.distance < 1.0 and reading.max_range > 5.0:
            score = 0.9
    else:
        score = 0.0

    return clamp(score * reading.confidence)


_SCORERS: Dict[SensorKind, Callable[[Optional[SensorReading]], float]] = {
    SensorKind.CAMERA: score_camera,
    SensorKind.AUDIO: score_audio,
    SensorKind.MOTION: score_motion,
    SensorKind.PROXIMITY: score_proximity,
}


def score_reading(reading: Optional[SensorReading]) -> float:
    """Dispatch on the reading's kind. None scores 0."""
    if reading is None:
        return 0.0
    return _SCORERS[reading.kind](reading)


# ===================================================================
# Weight redistribution
# ===================================================================

def redistribute_weights(
    weights: SensorWeights,
    available: Dict[SensorKind, bool],
) -> Dict[SensorKind, float]:
    """Effective weights for the sensors that reported.

    All available -> configured weights unchanged. None available -> all
    zero. Otherwise each available weight is divided by the sum of the
    available configured weights and the rest are zeroed, so the result
    still sums to 1.0.
    """
    configured = weights.as_dict()
    present = [kind for kind in SensorKind if available.get(kind, False)]

    if len(present) == len(SensorKind):
        return configured
    if not present:
        return {kind: 0.0 for kind in SensorKind}

    total_available = sum(configured[kind] for kind in present)
    if total_available <= 0.0:
        # Only zero-weighted sensors reported
        return {kind: 0.0 for kind in SensorKind}

    scale = 1.0 / total_available
    return {
        kind: configured[kind] * scale if kind in present else 0.0
        for kind in SensorKind
    }


class ThreatScorer:
    """Turns a snapshot into SensorContributions."""

    def calculate_score(
        self,
        snapshot: SensorSnapshot,
        weights: SensorWeights = SensorWeights.DEFAULT,
    ) -> SensorContributions:
        scores = {kind: score_reading(snapshot.get(kind)) for kind in SensorKind}
        effective = redistribute_weights(
            weights, {kind: snapshot.get(kind) is not None for kind in SensorKind})

        contributions = SensorContributions(
            camera_score=scores[SensorKind.CAMERA],
            audio_score=scores[SensorKind.AUDIO],
            motion_score=scores[SensorKind.MOTION],
            proximity_score=scores[SensorKind.PROXIMITY],
            camera_weight=effective[SensorKind.CAMERA],
            audio_weight=effective[SensorKind.AUDIO],
            motion_weight=effective[SensorKind.MOTION],
            proximity_weight=effective[SensorKind.PROXIMITY],
        )

        _log.debug(
            "scores camera=%d%% (w=%d%%) audio=%d%% (w=%d%%) motion=%d%% (w=%d%%) "
            "proximity=%d%% (w=%d%%) total=%d",
            scores[SensorKind.CAMERA] * 100, effective[SensorKind.CAMERA] * 100,
            scores[SensorKind.AUDIO] * 100, effective[SensorKind.AUDIO] * 100,
            scores[SensorKind.MOTION] * 100, effective[SensorKind.MOTION] * 100,
            scores[SensorKind.PROXIMITY] * 100, effective[SensorKind.PROXIMITY] * 100,
            contributions.calculate_weighted_score(),
        )
        return contributions
