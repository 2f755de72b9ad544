"""
Micro-expression analysis: involuntary facial motion of a live face.
"""
import logging
from typing import Optional

import numpy as np

from ..models.data_models import DenseLandmark, LandmarkSet, MicroExpressionResult
from ..utils.geometry import to_percent
from ..utils.rolling_history import AnalysisCache, RollingFrameHistory, freeze

logger = logging.getLogger(__name__)

MIN_LANDMARKS = 400

# nose tip, left eye, right eye, mouth corners
KEY_POINTS = [
    DenseLandmark.NOSE_TIP,
    DenseLandmark.LEFT_EYE_OUTER,
    DenseLandmark.RIGHT_EYE_OUTER,
    DenseLandmark.MOUTH_LEFT,
    DenseLandmark.MOUTH_RIGHT,
]
LEFT_EYE_ROW = 1
RIGHT_EYE_ROW = 2

TWITCH_MIN_MOVE = 0.3
COORDINATION_TOLERANCE = 1.0
MICRO_MOVE_RANGE = (0.2, 2.0)


def score_naturalness(avg_movement: float) -> float:
    """Subtle continuous motion is natural; stillness and large jumps are not."""
    if 0.05 < avg_movement < 3.0:
        return 0.6 + avg_movement / 10
    if avg_movement <= 0.05:
        return 0.3 + avg_movement * 6
    return max(0.3, 1.0 - (avg_movement - 3) / 10)


def score_twitch_ratio(ratio: float) -> float:
    if 0.01 < ratio < 0.15:
        return 0.6 + ratio * 2
    if ratio <= 0.01:
        return 0.3 + ratio * 30
    return max(0.3, 1.0 - ratio * 3)


class MicroExpressionAnalyzer:
    """
    Tracks five key points and scores naturalness, involuntary eye twitches
    and left/right eye coordination.
    """

    SKIP_INTERVAL = 2
    HISTORY_CAPACITY = 20
    MIN_HISTORY = 5
    TWITCH_WINDOW = 10
    TWITCH_MIN_HISTORY = 8
    COORDINATION_WINDOW = 3
    MICRO_MOVE_WINDOW = 5
    REAL_THRESHOLD = 0.7

    def __init__(self):
        self.history: RollingFrameHistory[np.ndarray] = RollingFrameHistory(self.HISTORY_CAPACITY)
        self.cache = AnalysisCache(self.SKIP_INTERVAL)

    @property
    def last_result(self) -> Optional[MicroExpressionResult]:
        return self.cache.value

    def analyze(self, landmarks: Optional[LandmarkSet]) -> Optional[MicroExpressionResult]:
        """
        Record the key points of a dense landmark set and score the motion.

        Returns a neutral "Gathering data..." reading until five frames have
        been recorded; insufficient input returns the cached result.
        """
        if landmarks is None or not landmarks.is_dense or len(landmarks) < MIN_LANDMARKS:
            return self.cache.value
        if not self.cache.tick():
            return self.cache.value

        self.history.append(freeze(landmarks.points[KEY_POINTS]))
        if len(self.history) < self.MIN_HISTORY:
            return MicroExpressionResult(score=50, is_real=True, message="Gathering data...")

        naturalness = score_naturalness(self._average_movement())
        involuntary = self._involuntary_score()
        coordination = self._coordination_score()
        overall = naturalness * 0.35 + involuntary * 0.35 + coordination * 0.30

        issues = []
        if naturalness < 0.5:
            issues.append("Unnatural movement")
        if involuntary < 0.5:
            issues.append("Missing micro-movements")

        result = MicroExpressionResult(
            score=to_percent(overall),
            is_real=overall > self.REAL_THRESHOLD,
            naturalness=to_percent(naturalness),
            involuntary_score=to_percent(involuntary),
            coordination_score=to_percent(coordination),
            micro_movements=self._count_micro_movements(),
            issues=issues,
        )
        return self.cache.store(result)

    def _average_movement(self) -> float:
        previous, current = self.history.recent(2)
        return float(np.hypot(*(current[:, :2] - previous[:, :2]).T).mean())

    def _involuntary_score(self) -> float:
        """Direction reversals of the eye points' vertical position."""
        if len(self.history) < self.TWITCH_MIN_HISTORY:
            return 0.5

        eye_y = np.array([
            frame[[LEFT_EYE_ROW, RIGHT_EYE_ROW], 1]
            for frame in self.history.recent(self.TWITCH_WINDOW)
        ])
        moves = np.diff(eye_y, axis=0)
        first, second = moves[:-1], moves[1:]
        twitches = np.count_nonzero(
            (np.abs(first) > TWITCH_MIN_MOVE) &
            (np.abs(second) > TWITCH_MIN_MOVE) &
            ((first > 0) != (second > 0))
        )
        ratio = twitches / first.size
        return score_twitch_ratio(ratio)

    def _coordination_score(self) -> float:
        """Both eyes should move together."""
        recent = self.history.recent(self.COORDINATION_WINDOW)
        steps = len(recent) - 1
        if steps < 1:
            return 0.5

        correlation = 0.0
        for previous, current in zip(recent, recent[1:]):
            left_move = abs(current[LEFT_EYE_ROW, 1] - previous[LEFT_EYE_ROW, 1])
            right_move = abs(current[RIGHT_EYE_ROW, 1] - previous[RIGHT_EYE_ROW, 1])
            if abs(left_move - right_move) < COORDINATION_TOLERANCE:
                correlation += 0.5
        return 0.5 + min(correlation / steps, 0.5)

    def _count_micro_movements(self) -> int:
        recent = np.array(self.history.recent(self.MICRO_MOVE_WINDOW))
        displacement = np.linalg.norm(np.diff(recent[:, :, :2], axis=0), axis=-1)
        low, high = MICRO_MOVE_RANGE
        return int(np.count_nonzero((displacement > low) & (displacement < high)))

    def reset(self) -> None:
        self.history.clear()
        self.cache.reset()
