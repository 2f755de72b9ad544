"""
Depth/geometry consistency scoring from dense 3D landmarks
"""
import logging
from typing import Optional

import numpy as np

from ..models.data_models import DenseLandmark, DepthFeatures, DepthResult, LandmarkSet
from ..utils.geometry import distance_3d, safe_ratio, to_percent, variance
from ..utils.rolling_history import AnalysisCache, RollingFrameHistory

logger = logging.getLogger(__name__)

KEY_POINTS = (
    DenseLandmark.NOSE_TIP,
    DenseLandmark.LEFT_EYE_OUTER,
    DenseLandmark.RIGHT_EYE_OUTER,
    DenseLandmark.CHIN,
    DenseLandmark.FOREHEAD,
)


def extract_features(landmarks: LandmarkSet) -> DepthFeatures:
    """
    Summarize the 3D shape of a dense landmark set.

    A flat photo yields near-zero nose protrusion and z spread; a real face
    has a protruding nose tip relative to the eye plane.

    Args:
        landmarks: Complete dense landmark set

    Returns:
        DepthFeatures: eye distance, nose protrusion, nose ratio and z spread
    """
    p = landmarks.points
    nose = p[DenseLandmark.NOSE_TIP]
    left_eye = p[DenseLandmark.LEFT_EYE_OUTER]
    right_eye = p[DenseLandmark.RIGHT_EYE_OUTER]

    eye_distance = distance_3d(left_eye, right_eye)
    eye_center_z = (left_eye[2] + right_eye[2]) / 2.0
    nose_protrusion = float(abs(nose[2] - eye_center_z))
    z_values = p[list(KEY_POINTS), 2]

    return DepthFeatures(
        eye_distance=eye_distance,
        nose_protrusion=nose_protrusion,
        nose_ratio=safe_ratio(nose_protrusion, eye_distance),
        z_spread=float(np.std(z_values)),
    )


def structural_score(features: DepthFeatures) -> float:
    score = 0.30
    if features.nose_ratio > 0.05:
        score += 0.25
    if features.nose_ratio > 0.10:
        score += 0.15
    if features.z_spread > 0.01:
        score += 0.20
    if features.z_spread > 0.03:
        score += 0.10
    return min(score, 1.0)


class DepthScorer:
    """
    Scores 3D consistency of the face over a short history.

    Only dense landmark sets carry usable z values; coarse input returns the
    cached result (or None before the first dense frame).
    """

    SKIP_INTERVAL = 2
    HISTORY_CAPACITY = 10
    CONSISTENCY_WINDOW = 5
    REAL_THRESHOLD = 0.6

    def __init__(self):
        self.history: RollingFrameHistory[DepthFeatures] = RollingFrameHistory(self.HISTORY_CAPACITY)
        self.cache = AnalysisCache(self.SKIP_INTERVAL)

    @property
    def last_result(self) -> Optional[DepthResult]:
        return self.cache.value

    @property
    def latest_features(self) -> Optional[DepthFeatures]:
        return self.history.latest

    def score(self, landmarks: Optional[LandmarkSet]) -> Optional[DepthResult]:
        """
        Score one landmark reading.

        Args:
            landmarks: Newest landmark set, or None when no face was found

        Returns:
            DepthResult, the cached result on throttled or coarse-only calls,
            or None before any dense frame has been scored
        """
        if landmarks is not None and (not landmarks.is_dense or not landmarks.is_complete()):
            return self.cache.value
        if not self.cache.tick():
            return self.cache.value

        if landmarks is None:
            return DepthResult(score=0, is_real=False, reason="No face detected")

        features = extract_features(landmarks)
        depth = structural_score(features)
        self.history.append(features)
        consistency = self._consistency_score()

        combined = depth * 0.6 + consistency * 0.4
        result = DepthResult(
            score=to_percent(combined),
            is_real=combined > self.REAL_THRESHOLD,
            depth_score=to_percent(depth),
            consistency_score=to_percent(consistency),
            features=features,
        )
        logger.debug(f"Depth score {result.score} (nose ratio {features.nose_ratio:.3f})")
        return self.cache.store(result)

    def _consistency_score(self) -> float:
        """Some variation proves movement; too much suggests tracking noise."""
        if len(self.history) < 3:
            return 0.5

        v = variance(f.nose_ratio for f in self.history.recent(self.CONSISTENCY_WINDOW))
        if 0.001 < v < 0.05:
            return 0.8
        return max(0.3, 0.7 - v * 10)

    def reset(self) -> None:
        self.history.clear()
        self.cache.reset()
