"""
Privacy Shield -- Threat Scorer Test Suite
==========================================
Per-sensor normalisation curves, confidence scaling and weight
redistribution when sensors are missing.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from shield_scorer import (
    ThreatScorer,
    redistribute_weights,
    score_audio,
    score_camera,
    score_motion,
    score_proximity,
    score_reading,
)
from shield_types import (
    AudioReading,
    CameraReading,
    MotionReading,
    ProximityReading,
    SensorKind,
    SensorSnapshot,
    SensorWeights,
    ShieldConfigError,
)


ALL = {kind: True for kind in SensorKind}


# ═══════════════════════════════════════════════════════════════
# Camera
# ═══════════════════════════════════════════════════════════════

def test_camera_absent_scores_zero():
    assert score_camera(None) == 0.0


def test_camera_no_faces_scores_zero():
    assert score_camera(CameraReading(faces_detected=0)) == 0.0


@pytest.mark.parametrize("faces,expected", [(1, 0.1), (2, 0.35), (3, 0.4), (7, 0.4)])
def test_camera_face_count_curve(faces, expected):
    reading = CameraReading(faces_detected=faces)
    assert score_camera(reading) == pytest.approx(expected)


def test_camera_single_user_looking_is_mild():
    reading = CameraReading(faces_detected=1, faces_looking_at_screen=1)
    assert score_camera(reading) == pytest.approx(0.15)


def test_camera_second_person_looking_is_strong():
    reading = CameraReading(faces_detected=2, faces_looking_at_screen=1)
    assert score_camera(reading) == pytest.approx(0.75)


def test_camera_unknown_faces_capped_at_three():
    three = CameraReading(faces_detected=3, unknown_faces_count=3)
    ten = CameraReading(faces_detected=3, unknown_faces_count=10)
    assert score_camera(three) == pytest.approx(0.5)
    assert score_camera(ten) == pytest.approx(0.5)


def test_camera_scaled_by_confidence_and_clamped():
    reading = CameraReading(faces_detected=5, faces_looking_at_screen=3,
                            unknown_faces_count=5, confidence=1.0)
    assert score_camera(reading) == 1.0
    half = CameraReading(faces_detected=2, faces_looking_at_screen=1, confidence=0.5)
    assert score_camera(half) == pytest.approx(0.375)


# ═══════════════════════════════════════════════════════════════
# Audio
# ═══════════════════════════════════════════════════════════════

@pytest.mark.parametrize("db,expected", [
    (20.0, 0.0), (34.9, 0.0), (35.0, 0.15), (49.9, 0.15),
    (50.0, 0.3), (65.0, 0.45), (70.0, 0.6), (110.0, 0.6),
])
def test_audio_decibel_bands(db, expected):
    assert score_audio(AudioReading(average_decibels=db)) == pytest.approx(expected)


def test_audio_speech_adds_weight():
    reading = AudioReading(average_decibels=55.0, is_speech_detected=True)
    assert score_audio(reading) == pytest.approx(0.7)


def test_audio_loud_speech_scenario():
    reading = AudioReading(average_decibels=80.0, is_speech_detected=True, confidence=0.8)
    assert score_audio(reading) > 0.7


# ═══════════════════════════════════════════════════════════════
# Motion / Proximity
# ═══════════════════════════════════════════════════════════════

def test_motion_still_device_scores_zero():
    assert score_motion(MotionReading()) == 0.0


def test_motion_components_add_up():
    reading = MotionReading(magnitude=12.0, is_moving=True, movement_intensity=0.4)
    assert score_motion(reading) == pytest.approx(0.3 + 0.2 + 0.1)


def test_motion_grab_saturates():
    reading = MotionReading(magnitude=25.0, is_moving=True, movement_intensity=1.0)
    assert score_motion(reading) == 1.0


def test_proximity_far_scores_zero():
    assert score_proximity(ProximityReading(distance=5.0, max_range=5.0)) == 0.0


def test_proximity_near_binary_sensor():
    reading = ProximityReading(distance=0.0, is_near=True, max_range=5.0)
    assert score_proximity(reading) == pytest.approx(0.7)


def test_proximity_very_near_fine_grained_sensor():
    reading = ProximityReading(distance=0.5, is_near=True, max_range=10.0)
    assert score_proximity(reading) == pytest.approx(0.9)


def test_score_reading_dispatches_by_kind():
    audio = AudioReading(average_decibels=72.0)
    assert score_reading(audio) == score_audio(audio)
    assert score_reading(None) == 0.0


# ═══════════════════════════════════════════════════════════════
# Weights
# ═══════════════════════════════════════════════════════════════

def test_weights_must_sum_to_one():
    with pytest.raises(ShieldConfigError):
        SensorWeights(camera=0.5, audio=0.5, motion=0.5, proximity=0.5)


def test_weights_tolerance_band():
    SensorWeights(camera=0.405, audio=0.30, motion=0.20, proximity=0.10)
    with pytest.raises(ShieldConfigError):
        SensorWeights(camera=0.42, audio=0.30, motion=0.20, proximity=0.10)


def test_weights_reject_negative():
    with pytest.raises(ShieldConfigError):
        SensorWeights(camera=1.2, audio=-0.2, motion=0.0, proximity=0.0)


def test_presets_are_valid():
    for preset in (SensorWeights.DEFAULT, SensorWeights.NOISY_ENVIRONMENT,
                   SensorWeights.LOW_LIGHT, SensorWeights.PARANOIA):
        assert sum(preset.as_dict().values()) == pytest.approx(1.0)


def test_redistribute_all_present_keeps_weights():
    assert redistribute_weights(SensorWeights.DEFAULT, ALL) == SensorWeights.DEFAULT.as_dict()


def test_redistribute_none_present_zeroes():
    result = redistribute_weights(SensorWeights.DEFAULT, {})
    assert all(w == 0.0 for w in result.values())


@pytest.mark.parametrize("kind", list(SensorKind))
def test_redistribute_single_sensor_gets_full_weight(kind):
    result = redistribute_weights(SensorWeights.DEFAULT, {kind: True})
    for other, weight in result.items():
        assert weight == pytest.approx(1.0 if other is kind else 0.0)


def test_redistribute_partial_sums_to_one():
    result = redistribute_weights(SensorWeights.DEFAULT,
                                  {SensorKind.CAMERA: True, SensorKind.MOTION: True})
    assert result[SensorKind.CAMERA] == pytest.approx(0.4 / 0.6)
    assert result[SensorKind.MOTION] == pytest.approx(0.2 / 0.6)
    assert sum(result.values()) == pytest.approx(1.0)


# ═══════════════════════════════════════════════════════════════
# ThreatScorer
# ═══════════════════════════════════════════════════════════════

class TestThreatScorer:

    def setup_method(self):
        self.scorer = ThreatScorer()

    def test_audio_only_snapshot(self):
        snapshot = SensorSnapshot.of(
            AudioReading(average_decibels=80.0, is_speech_detected=True, confidence=0.8),
            timestamp=0)
        c = self.scorer.calculate_score(snapshot)
        assert c.audio_score > 0.7
        assert c.camera_weight == 0.0
        assert c.audio_weight == pytest.approx(1.0)
        assert c.calculate_weighted_score() == 80

    def test_lone_empty_camera_scores_zero(self):
        snapshot = SensorSnapshot.of(CameraReading(faces_detected=0), timestamp=0)
        c = self.scorer.calculate_score(snapshot)
        assert c.camera_weight == pytest.approx(1.0)
        assert c.calculate_weighted_score() == 0

    def test_weighted_score_rounds_half_up(self):
        snapshot = SensorSnapshot.of(
            CameraReading(faces_detected=2, faces_looking_at_screen=1, confidence=0.5),
            timestamp=0)
        # 0.375 * 1.0 -> 37.5 -> 38
        assert self.scorer.calculate_score(snapshot).calculate_weighted_score() == 38

    def test_all_sensors_use_configured_weights(self):
        snapshot = SensorSnapshot.of(
            CameraReading(faces_detected=1),
            AudioReading(average_decibels=30.0),
            MotionReading(),
            ProximityReading(distance=5.0, max_range=5.0),
            timestamp=0)
        c = self.scorer.calculate_score(snapshot, SensorWeights.LOW_LIGHT)
        assert c.camera_weight == pytest.approx(0.20)
        assert c.audio_weight == pytest.approx(0.45)
        # 0.1 * 0.2 = 0.02 -> 2
        assert c.calculate_weighted_score() == 2
