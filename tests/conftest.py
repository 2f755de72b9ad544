"""
Shared fixtures: synthetic landmark sets and frames
"""
import numpy as np
import pytest

from liveness_engine.models.data_models import (
    DenseLandmark,
    DetectionResult,
    LandmarkSet,
    PassiveResult,
)

EYE_WIDTH = 30.0
COARSE_EYE_DISTANCE = 60.0


def build_dense(ear=0.3, mouth_width=60.0, nose_z=-20.0, shift=(0.0, 0.0)):
    """
    468-point face mesh with controllable eye opening, mouth width and nose depth.

    Outer eye corners are 100 px apart; cheeks are 180 px apart.
    """
    dx, dy = shift
    points = np.zeros((468, 3))
    points[:, 0] = 150.0
    points[:, 1] = 130.0

    def put(index, x, y, z=0.0):
        points[index] = (x + dx, y + dy, z)

    half_open = ear * EYE_WIDTH / 2.0
    put(DenseLandmark.LEFT_EYE_OUTER, 100.0, 100.0)
    put(DenseLandmark.LEFT_EYE_INNER, 130.0, 100.0)
    put(DenseLandmark.LEFT_EYE_TOP, 115.0, 100.0 - half_open)
    put(DenseLandmark.LEFT_EYE_BOTTOM, 115.0, 100.0 + half_open)
    put(DenseLandmark.RIGHT_EYE_INNER, 170.0, 100.0)
    put(DenseLandmark.RIGHT_EYE_OUTER, 200.0, 100.0)
    put(DenseLandmark.RIGHT_EYE_TOP, 185.0, 100.0 - half_open)
    put(DenseLandmark.RIGHT_EYE_BOTTOM, 185.0, 100.0 + half_open)

    put(DenseLandmark.NOSE_TIP, 150.0, 130.0, nose_z)
    put(DenseLandmark.UPPER_LIP, 150.0, 155.0)
    put(DenseLandmark.LOWER_LIP, 150.0, 165.0)
    put(DenseLandmark.MOUTH_LEFT, 150.0 - mouth_width / 2.0, 160.0)
    put(DenseLandmark.MOUTH_RIGHT, 150.0 + mouth_width / 2.0, 160.0)
    put(DenseLandmark.LEFT_CHEEK, 60.0, 120.0)
    put(DenseLandmark.RIGHT_CHEEK, 240.0, 120.0)
    put(DenseLandmark.FOREHEAD, 150.0, 50.0)
    put(DenseLandmark.CHIN, 150.0, 200.0)
    return LandmarkSet.dense(points)


def build_coarse(nose_offset=0.0, mouth_span=0.0, eye_distance=COARSE_EYE_DISTANCE,
                 eye_y=100.0, nose_y=130.0, mouth_y=160.0, center_x=150.0):
    """
    Six BlazeFace keypoints. ``nose_offset`` and ``mouth_span`` are expressed
    in inter-eye distances relative to the eye center.
    """
    half = eye_distance / 2.0
    return LandmarkSet.coarse([
        (center_x - half, eye_y),
        (center_x + half, eye_y),
        (center_x + nose_offset * eye_distance, nose_y),
        (center_x + mouth_span * eye_distance, mouth_y),
        (center_x - eye_distance, eye_y + 10.0),
        (center_x + eye_distance, eye_y + 10.0),
    ])


def build_passive(moire=90, temporal=90, overall=85):
    return PassiveResult(
        texture_score=80,
        moire_score=moire,
        color_score=80,
        edge_score=80,
        temporal_score=temporal,
        reflection_score=90,
        overall_score=overall,
        is_real=overall > 80,
    )


@pytest.fixture
def dense_face():
    return build_dense


@pytest.fixture
def coarse_face():
    return build_coarse


@pytest.fixture
def passive_result():
    return build_passive


@pytest.fixture
def single_face(coarse_face):
    return DetectionResult(face_count=1, confidence=0.95, landmarks=coarse_face())


@pytest.fixture
def gray_frame():
    """Uniform mid-gray 320x240 RGB frame."""
    return np.full((240, 320, 3), 128, dtype=np.uint8)


@pytest.fixture
def noise_frame():
    """Factory of reproducible random RGB frames."""
    def make(seed=0, height=240, width=320):
        rng = np.random.default_rng(seed)
        return rng.integers(0, 256, (height, width, 3), dtype=np.uint8)
    return make
