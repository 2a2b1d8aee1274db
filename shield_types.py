"""
Privacy Shield — Shared Types
=============================
Data model for the sensor-fusion and decision pipeline.

  - Sensor readings (camera / audio / motion / proximity), tagged by SensorKind
  - SensorSnapshot: at most one reading per kind, evaluated together
  - SensorWeights / SensorContributions: weighting and per-sensor scores
  - ThreatAssessment: immutable result of one fusion pass
  - AssessmentContext / AssessmentConfig: engine state and tuning
  - ProtectionMode / ProtectionAction / IndicatorState: decision enums

All records are frozen dataclasses. Context updates go through
dataclasses.replace() so readers always see a whole value.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from enum import Enum, IntEnum
from typing import ClassVar, Dict, Optional, Tuple, Union

import numpy as np


def now_ms() -> int:
    """Wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class ShieldConfigError(ValueError):
    """Raised when a weight set, mode or timing value is invalid."""


# ===================================================================
# Enums
# ===================================================================

class ThreatLevel(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class SensorKind(Enum):
    CAMERA = "camera"
    AUDIO = "audio"
    MOTION = "motion"
    PROXIMITY = "proximity"


class ProtectionMode(Enum):
    """Protection mode with its fixed trigger threshold (0-100)."""

    PARANOIA = (20, "Very sensitive - reacts to the slightest signal")
    BALANCED = (50, "Balanced - reasonable protection")
    DISCRETE = (75, "Discrete - direct threats only")
    TRUST_ZONE = (95, "Trust zone - nearly disabled")

    def __init__(self, threshold: int, description: str):
        self.threshold = threshold
        self.description = description

    @classmethod
    def from_name(cls, name: str) -> "ProtectionMode":
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            valid = ", ".join(m.name for m in cls)
            raise ShieldConfigError(
                f"Unknown protection mode {name!r} (expected one of: {valid})"
            ) from None


class ProtectionAction(Enum):
    """Protective action, ordered by ascending severity."""

    NONE = (0, "No action")
    SOFT_BLUR = (1, "Progressive soft blur")
    DECOY_SCREEN = (2, "Decoy screen")
    INSTANT_LOCK = (3, "Instant lock")
    PANIC_MODE = (4, "Panic mode")

    def __init__(self, priority: int, description: str):
        self.priority = priority
        self.description = description

    def __lt__(self, other: "ProtectionAction") -> bool:
        if not isinstance(other, ProtectionAction):
            return NotImplemented
        return self.priority < other.priority


class IndicatorState(Enum):
    SAFE = "SAFE"              # green
    MONITORING = "MONITORING"  # yellow
    THREAT = "THREAT"          # red


# ===================================================================
# Sensor Readings (tagged union over SensorKind)
# ===================================================================

@dataclass(frozen=True)
class CameraReading:
    """Face statistics derived from one analysed camera frame."""
    kind: ClassVar[SensorKind] = SensorKind.CAMERA

    faces_detected: int
    faces_looking_at_screen: int = 0
    unknown_faces_count: int = 0
    distance_to_camera: Optional[float] = None  # metres, if estimated
    confidence: float = 1.0
    timestamp: int = field(default_factory=now_ms)
    threat_level: ThreatLevel = ThreatLevel.NONE


@dataclass(frozen=True)
class AudioReading:
    """Loudness summary. Never carries waveform samples."""
    kind: ClassVar[SensorKind] = SensorKind.AUDIO

    average_decibels: float
    peak_decibels: float = 0.0
    is_speech_detected: bool = False
    confidence: float = 1.0
    timestamp: int = field(default_factory=now_ms)
    threat_level: ThreatLevel = ThreatLevel.NONE


@dataclass(frozen=True)
class MotionReading:
    """Accelerometer sample (m/s^2) with a normalised intensity."""
    kind: ClassVar[SensorKind] = SensorKind.MOTION

    acceleration_x: float = 0.0
    acceleration_y: float = 0.0
    acceleration_z: float = 0.0
    magnitude: float = 0.0
    is_moving: bool = False
    movement_intensity: float = 0.0  # 0.0 - 1.0
    confidence: float = 1.0
    timestamp: int = field(default_factory=now_ms)
    threat_level: ThreatLevel = ThreatLevel.NONE


@dataclass(frozen=True)
class ProximityReading:
    """Proximity sensor read (distance in device units)."""
    kind: ClassVar[SensorKind] = SensorKind.PROXIMITY

    distance: float
    is_near: bool = False
    max_range: float = 0.0
    confidence: float = 1.0
    timestamp: int = field(default_factory=now_ms)
    threat_level: ThreatLevel = ThreatLevel.NONE


SensorReading = Union[CameraReading, AudioReading, MotionReading, ProximityReading]


# ===================================================================
# Snapshot
# ===================================================================

@dataclass(frozen=True)
class SensorSnapshot:
    """Point-in-time bundle of the latest reading per sensor kind."""

    timestamp: int = field(default_factory=now_ms)
    camera: Optional[CameraReading] = None
    audio: Optional[AudioReading] = None
    motion: Optional[MotionReading] = None
    proximity: Optional[ProximityReading] = None

    @classmethod
    def of(cls, *readings: SensorReading, timestamp: Optional[int] = None) -> "SensorSnapshot":
        """Build a snapshot from readings; a later reading of a kind wins."""
        slots = {reading.kind.value: reading for reading in readings}
        return cls(timestamp=now_ms() if timestamp is None else timestamp, **slots)

    def get(self, kind: SensorKind) -> Optional[SensorReading]:
        return getattr(self, kind.value)

    def readings(self) -> Tuple[SensorReading, ...]:
        """Present readings in camera, audio, motion, proximity order."""
        return tuple(r for r in (self.camera, self.audio, self.motion, self.proximity)
                     if r is not None)

    @property
    def is_empty(self) -> bool:
        return not self.readings()

    def calculate_overall_threat(self) -> Tuple[ThreatLevel, float]:
        """Highest sensor-reported level and mean confidence (pre-fusion)."""
        present = self.readings()
        if not present:
            return ThreatLevel.NONE, 0.0
        level = max(r.threat_level for r in present)
        return ThreatLevel(level), float(np.mean([r.confidence for r in present]))


# ===================================================================
# Weights & Contributions
# ===================================================================

@dataclass(frozen=True)
class SensorWeights:
    """Per-sensor weights. Must sum to 1.0 (+/- 0.01)."""

    camera: float = 0.40     # faces
    audio: float = 0.30      # voices / noise
    motion: float = 0.20     # sudden movement
    proximity: float = 0.10  # object over the screen

    # Presets, assigned below the class
    DEFAULT: ClassVar["SensorWeights"]
    NOISY_ENVIRONMENT: ClassVar["SensorWeights"]
    LOW_LIGHT: ClassVar["SensorWeights"]
    PARANOIA: ClassVar["SensorWeights"]

    def __post_init__(self):
        values = self.as_dict()
        negative = [k.value for k, v in values.items() if v < 0]
        if negative:
            raise ShieldConfigError(f"Sensor weights must be non-negative: {negative}")
        total = sum(values.values())
        if not 0.99 <= total <= 1.01:
            raise ShieldConfigError(f"Sensor weights must sum to 1.0, got {total:.4f}")

    def as_dict(self) -> Dict[SensorKind, float]:
        return {
            SensorKind.CAMERA: self.camera,
            SensorKind.AUDIO: self.audio,
            SensorKind.MOTION: self.motion,
            SensorKind.PROXIMITY: self.proximity,
        }


SensorWeights.DEFAULT = SensorWeights()
# Noisy room: trust audio less
SensorWeights.NOISY_ENVIRONMENT = SensorWeights(camera=0.50, audio=0.15, motion=0.25, proximity=0.10)
# Dark room: trust the camera less
SensorWeights.LOW_LIGHT = SensorWeights(camera=0.20, audio=0.45, motion=0.25, proximity=0.10)
SensorWeights.PARANOIA = SensorWeights(camera=0.35, audio=0.30, motion=0.25, proximity=0.10)


@dataclass(frozen=True)
class SensorContributions:
    """Normalised per-sensor scores (0-1) and the effective weights applied."""

    camera_score: float = 0.0
    audio_score: float = 0.0
    motion_score: float = 0.0
    proximity_score: float = 0.0
    camera_weight: float = 0.0
    audio_weight: float = 0.0
    motion_weight: float = 0.0
    proximity_weight: float = 0.0

    def calculate_weighted_score(self) -> int:
        """Weighted sum as an integer percentage (0-100), half-up rounding."""
        weighted = (self.camera_score * self.camera_weight
                    + self.audio_score * self.audio_weight
                    + self.motion_score * self.motion_weight
                    + self.proximity_score * self.proximity_weight)
        return int(np.clip(np.floor(weighted * 100.0 + 0.5), 0, 100))

    def to_dict(self) -> dict:
        return asdict(self)


# ===================================================================
# Assessment
# ===================================================================

@dataclass(frozen=True)
class ThreatAssessment:
    """Result of one fusion pass. Never mutated after construction."""

    timestamp: int
    threat_score: int                 # 0 - 100
    threat_level: ThreatLevel
    confidence: float                 # 0.0 - 1.0
    should_trigger_protection: bool
    recommended_action: ProtectionAction
    trigger_reasons: Tuple[str, ...]
    sensor_contributions: SensorContributions

    def without_trigger(self) -> "ThreatAssessment":
        return replace(self, should_trigger_protection=False)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "threat_score": self.threat_score,
            "threat_level": self.threat_level.name,
            "confidence": round(self.confidence, 3),
            "should_trigger_protection": self.should_trigger_protection,
            "recommended_action": self.recommended_action.name,
            "trigger_reasons": list(self.trigger_reasons),
            "sensor_contributions": self.sensor_contributions.to_dict(),
        }


@dataclass(frozen=True)
class AssessmentContext:
    """Mutable-by-replacement session state read by every fusion pass."""

    current_mode: ProtectionMode = ProtectionMode.DISCRETE
    ambient_noise_level: float = 0.0  # 0-1
    light_level: float = 1.0          # 0-1
    is_in_trust_zone: bool = False
    last_threat_time: Optional[int] = None
    consecutive_threat_count: int = 0


@dataclass(frozen=True)
class AssessmentConfig:
    protection_mode: ProtectionMode = ProtectionMode.DISCRETE
    sensor_weights: SensorWeights = SensorWeights.DEFAULT
    min_confidence_threshold: float = 0.3
    debounce_time_ms: int = 500
    consecutive_threats_before_action: int = 2

    def __post_init__(self):
        if self.debounce_time_ms < 0:
            raise ShieldConfigError(f"debounce_time_ms must be >= 0, got {self.debounce_time_ms}")
        if not 0.0 <= self.min_confidence_threshold <= 1.0:
            raise ShieldConfigError(
                f"min_confidence_threshold must be in [0, 1], got {self.min_confidence_threshold}")
        if self.consecutive_threats_before_action < 1:
            raise ShieldConfigError("consecutive_threats_before_action must be >= 1")


@dataclass(frozen=True)
class AssessmentStats:
    total_assessments: int
    threats_detected: int
    average_score: int
    last_threat_time: Optional[int]


@dataclass(frozen=True)
class DetectionEvent:
    """Consolidated record handed to the persistence collaborator."""

    id: str
    timestamp: int
    overall_threat_level: ThreatLevel
    overall_confidence: float
    threat_score: int
    sensors: Tuple[str, ...]
    trigger_action: bool = False
    action_taken: Optional[str] = None

    @classmethod
    def from_assessment(cls, assessment: ThreatAssessment,
                        snapshot: Optional[SensorSnapshot] = None) -> "DetectionEvent":
        sensors = tuple(r.kind.value for r in snapshot.readings()) if snapshot else ()
        return cls(
            id=uuid.uuid4().hex,
            timestamp=assessment.timestamp,
            overall_threat_level=assessment.threat_level,
            overall_confidence=assessment.confidence,
            threat_score=assessment.threat_score,
            sensors=sensors,
            trigger_action=assessment.should_trigger_protection,
            action_taken=(assessment.recommended_action.name
                          if assessment.should_trigger_protection else None),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["overall_threat_level"] = self.overall_threat_level.name
        data["sensors"] = list(self.sensors)
        return data
