"""
Privacy Shield — Sensor Self-Classification
===========================================
Helpers for the sensor collaborators: derive the scalar summaries each
sensor publishes and the coarse (ThreatLevel, confidence) the sensor
assigns to its own reading.

Raw inputs (PCM buffers, head angles, raw acceleration) are reduced to
scalars here and never stored on a reading.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from shield_types import (
    AudioReading,
    CameraReading,
    MotionReading,
    ProximityReading,
    ThreatLevel,
    now_ms,
)
from shield_utils import clamp

_log = logging.getLogger("SensorLevels")

LevelAndConfidence = Tuple[ThreatLevel, float]

# ─── Camera ───────────────────────────────────────────────────
FACE_VERY_CLOSE_PX2 = 50000.0   # bounding-box area
FACE_CLOSE_PX2 = 20000.0
LOOKING_MAX_YAW_DEG = 20.0
LOOKING_MAX_ROLL_DEG = 15.0

# ─── Audio ────────────────────────────────────────────────────
SILENCE_DB = 40.0
CONVERSATION_DB = 60.0
LOUD_DB = 80.0
PCM16_FULL_SCALE = 32768.0

# ─── Motion (m/s^2) ───────────────────────────────────────────
GRAVITY = 9.81
IMMOBILE_THRESHOLD = 0.5
LIGHT_MOVEMENT = 2.0
MODERATE_MOVEMENT = 5.0
STRONG_MOVEMENT = 10.0
SUDDEN_CHANGE = 8.0

# ─── Proximity ────────────────────────────────────────────────
VERY_NEAR = 1.0
NEAR = 3.0


def is_looking_at_screen(yaw_deg: float, roll_deg: float) -> bool:
    return abs(yaw_deg) < LOOKING_MAX_YAW_DEG and abs(roll_deg) < LOOKING_MAX_ROLL_DEG


def classify_camera(faces_count: int, faces_looking: int,
                    closest_face_size: float) -> LevelAndConfidence:
    if faces_count == 0:
        return ThreatLevel.NONE, 1.0
    if faces_looking >= 2:
        return ThreatLevel.CRITICAL, 0.9
    if faces_looking >= 1 and closest_face_size > FACE_VERY_CLOSE_PX2:
        return ThreatLevel.HIGH, 0.85
    if faces_looking >= 1 and closest_face_size > FACE_CLOSE_PX2:
        return ThreatLevel.MEDIUM, 0.75
    if faces_looking >= 1:
        return ThreatLevel.LOW, 0.6
    return ThreatLevel.LOW, 0.4


def pcm_to_decibels(samples: Sequence[int]) -> float:
    """RMS of 16-bit PCM samples mapped to 0-120 dB (full scale = 120)."""
    buf = np.asarray(samples, dtype=np.float64)
    if buf.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(buf * buf)))
    if rms <= 0:
        return 0.0
    db = 20.0 * np.log10(rms / PCM16_FULL_SCALE)
    return clamp(db + 120.0, 0.0, 120.0)


def classify_audio(decibels: float) -> LevelAndConfidence:
    if decibels < SILENCE_DB:
        return ThreatLevel.NONE, 1.0
    if decibels > LOUD_DB:
        return ThreatLevel.HIGH, 0.8
    if decibels > CONVERSATION_DB:
        return ThreatLevel.MEDIUM, 0.7
    return ThreatLevel.LOW, 0.5


def classify_motion(magnitude: float, previous_magnitude: float = 0.0) -> LevelAndConfidence:
    change = abs(magnitude - previous_magnitude)
    if magnitude > STRONG_MOVEMENT or change > SUDDEN_CHANGE:
        return ThreatLevel.HIGH, 0.85
    if magnitude > MODERATE_MOVEMENT:
        return ThreatLevel.MEDIUM, 0.7
    if magnitude > LIGHT_MOVEMENT:
        return ThreatLevel.LOW, 0.5
    return ThreatLevel.NONE, 1.0


def is_binary_proximity(distance: float, max_range: float) -> bool:
    """Binary sensors only ever report 0 or their max range."""
    return max_range > 0 and (distance == 0 or distance == max_range)


def classify_proximity(distance: float, max_range: float) -> LevelAndConfidence:
    if is_binary_proximity(distance, max_range):
        if distance == 0:
            return ThreatLevel.HIGH, 0.9
        return ThreatLevel.NONE, 1.0
    if distance < VERY_NEAR:
        return ThreatLevel.HIGH, 0.9
    if distance < NEAR:
        return ThreatLevel.MEDIUM, 0.75
    if distance < max_range:
        return ThreatLevel.LOW, 0.5
    return ThreatLevel.NONE, 1.0


# ─── Reading factories ────────────────────────────────────────

def make_camera_reading(head_angles: Iterable[Tuple[float, float]],
                        face_sizes: Iterable[float] = (),
                        distance_to_camera: Optional[float] = None,
                        timestamp: Optional[int] = None) -> CameraReading:
    """Build a CameraReading from per-face (yaw, roll) angles and box areas.

    Every detected face counts as unknown until face recognition exists.
    """
    angles = list(head_angles)
    sizes = list(face_sizes)
    faces = len(angles)
    looking = sum(1 for yaw, roll in angles if is_looking_at_screen(yaw, roll))
    closest = min(sizes) if sizes else 0.0
    level, confidence = classify_camera(faces, looking, closest)
    return CameraReading(
        faces_detected=faces,
        faces_looking_at_screen=looking,
        unknown_faces_count=faces,
        distance_to_camera=distance_to_camera,
        confidence=confidence,
        timestamp=now_ms() if timestamp is None else timestamp,
        threat_level=level,
    )


def make_audio_reading(samples: Sequence[int], timestamp: Optional[int] = None) -> AudioReading:
    """Summarise one PCM buffer. Only the derived loudness is kept."""
    decibels = pcm_to_decibels(samples)
    level, confidence = classify_audio(decibels)
    _log.debug("audio %.1f dB -> %s", decibels, level.name)
    return AudioReading(
        average_decibels=decibels,
        peak_decibels=decibels,
        is_speech_detected=decibels > CONVERSATION_DB,
        confidence=confidence,
        timestamp=now_ms() if timestamp is None else timestamp,
        threat_level=level,
    )


def make_motion_reading(x: float, y: float, z: float, previous_magnitude: float = 0.0,
                        timestamp: Optional[int] = None) -> MotionReading:
    """Raw accelerometer values in; gravity is removed from the z axis."""
    z_linear = z - GRAVITY
    magnitude = float(np.sqrt(x * x + y * y + z_linear * z_linear))
    level, confidence = classify_motion(magnitude, previous_magnitude)
    return MotionReading(
        acceleration_x=x,
        acceleration_y=y,
        acceleration_z=z_linear,
        magnitude=magnitude,
        is_moving=magnitude > IMMOBILE_THRESHOLD,
        movement_intensity=clamp(magnitude / STRONG_MOVEMENT),
        confidence=confidence,
        timestamp=now_ms() if timestamp is None else timestamp,
        threat_level=level,
    )


def make_proximity_reading(distance: float, max_range: float,
                           timestamp: Optional[int] = None) -> ProximityReading:
    level, confidence = classify_proximity(distance, max_range)
    return ProximityReading(
        distance=distance,
        is_near=distance < NEAR,
        max_range=max_range,
        confidence=confidence,
        timestamp=now_ms() if timestamp is None else timestamp,
        threat_level=level,
    )
