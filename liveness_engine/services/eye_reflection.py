"""
Specular eye-reflection analysis.

Live eyes show small bright catch-lights from the ambient light source;
printed photos and many screens lose them or render them too large.
"""
import logging
from typing import Optional

import numpy as np

from ..models.data_models import DenseLandmark, EyeReflectionResult, LandmarkSet
from ..utils.frames import downscale, is_valid_frame, to_gray
from ..utils.geometry import to_percent, variance
from ..utils.rolling_history import AnalysisCache, RollingFrameHistory

logger = logging.getLogger(__name__)

MIN_LANDMARKS = 400
WINDOW_RADIUS = 7
BRIGHT_LEVEL = 200


def score_eye_region(gray: np.ndarray, center_x: int, center_y: int) -> float:
    """
    Score the bright-pixel ratio of a 15x15 window around an eye point.

    Windows partially outside the frame are clipped; an empty window is neutral.
    """
    height, width = gray.shape
    top, bottom = max(center_y - WINDOW_RADIUS, 0), min(center_y + WINDOW_RADIUS + 1, height)
    left, right = max(center_x - WINDOW_RADIUS, 0), min(center_x + WINDOW_RADIUS + 1, width)
    if top >= bottom or left >= right:
        return 0.5

    window = gray[top:bottom, left:right]
    ratio = np.count_nonzero(window > BRIGHT_LEVEL) / window.size
    if 0.01 < ratio < 0.15:
        return 0.6 + ratio * 2
    if ratio > 0.15:
        return 0.4
    return 0.3 + ratio * 10


class EyeReflectionAnalyzer:
    """Catch-light presence, left/right symmetry and stability over time."""

    SCALE = 0.5
    SKIP_INTERVAL = 3
    HISTORY_CAPACITY = 8
    TEMPORAL_WINDOW = 5
    REAL_THRESHOLD = 0.70

    def __init__(self):
        self.history: RollingFrameHistory[float] = RollingFrameHistory(self.HISTORY_CAPACITY)
        self.cache = AnalysisCache(self.SKIP_INTERVAL)

    @property
    def last_result(self) -> Optional[EyeReflectionResult]:
        return self.cache.value

    def analyze(
        self,
        frame: np.ndarray,
        landmarks: Optional[LandmarkSet]
    ) -> Optional[EyeReflectionResult]:
        """
        Args:
            frame: RGB or RGBA uint8 frame at source resolution
            landmarks: Dense landmark set in source-frame pixels

        Returns:
            EyeReflectionResult, or the cached result when skipped or when the
            input is insufficient
        """
        if (landmarks is None or not landmarks.is_dense or len(landmarks) < MIN_LANDMARKS
                or not is_valid_frame(frame)):
            return self.cache.value
        if not self.cache.tick():
            return self.cache.value

        gray = to_gray(downscale(frame, self.SCALE))
        left_eye = landmarks.point(DenseLandmark.LEFT_EYE_OUTER)
        right_eye = landmarks.point(DenseLandmark.RIGHT_EYE_OUTER)

        left_score = score_eye_region(
            gray, int(np.floor(left_eye[0] * self.SCALE)), int(np.floor(left_eye[1] * self.SCALE))
        )
        right_score = score_eye_region(
            gray, int(np.floor(right_eye[0] * self.SCALE)), int(np.floor(right_eye[1] * self.SCALE))
        )

        specular = (left_score + right_score) / 2.0
        symmetry = 0.8 if abs(left_score - right_score) < 0.3 else 0.5
        self.history.append(specular)
        temporal = self._temporal_score()

        overall = specular * 0.5 + symmetry * 0.25 + temporal * 0.25
        issues = []
        if specular < 0.5:
            issues.append("Missing eye reflections")

        result = EyeReflectionResult(
            score=to_percent(overall),
            specular_score=to_percent(specular),
            consistency_score=to_percent(symmetry),
            temporal_score=to_percent(temporal),
            is_real=overall > self.REAL_THRESHOLD,
            issues=issues,
        )
        return self.cache.store(result)

    def _temporal_score(self) -> float:
        if len(self.history) < 3:
            return 0.5
        v = variance(self.history.recent(self.TEMPORAL_WINDOW))
        if 0.001 < v < 0.05:
            return 0.8
        return max(0.3, 0.7 - v * 5)

    def reset(self) -> None:
        self.history.clear()
        self.cache.reset()
