"""
Passive liveness analysis over raw frames.

Scores six image cues without any user action: texture, moire, color
distribution, edge density, temporal motion and frame-border reflection.
All cues are computed on a 50% downscaled frame from a strided sample grid.
"""
import logging
from typing import Dict, List, Optional

import numpy as np

from ..models.data_models import PassiveResult
from ..utils.frames import downscale, is_valid_frame, simplified_grid, to_gray
from ..utils.geometry import to_percent
from ..utils.rolling_history import AnalysisCache, RollingFrameHistory, freeze

logger = logging.getLogger(__name__)

SAMPLE_STRIDE = 4
SAMPLE_MARGIN = 10
HISTOGRAM_BINS = 64
MOIRE_ROW_STRIDE = 15
BORDER_WIDTH = 20
BRIGHT_LEVEL = 200


def score_texture(avg_gradient: float) -> float:
    """Natural skin has a moderate gradient; screens are too smooth or too sharp."""
    if 8 <= avg_gradient <= 30:
        return min(1.0, 0.6 + (avg_gradient - 8) / 40)
    if avg_gradient < 8:
        return avg_gradient / 16
    return max(0.2, 1.0 - (avg_gradient - 30) / 40)


def score_edge(avg_edge: float) -> float:
    if 8 <= avg_edge <= 45:
        return 0.7 + (avg_edge - 8) / 123
    return max(0.3, 0.7 - abs(avg_edge - 25) / 50)


def score_temporal(avg_diff: float) -> float:
    """
    Map mean grid difference to a motion score.

    2..15 gray levels is the natural micro-motion band (>= 0.7). Static
    input (photos) and chaotic input (replays, glitches) both score below it.
    """
    if 2 <= avg_diff <= 15:
        return 0.7 + avg_diff / 50
    if avg_diff < 2:
        return 0.2 + avg_diff * 0.2
    return max(0.3, 0.7 - (avg_diff - 15) / 40)


def score_color(histograms: List[np.ndarray]) -> float:
    """Smoothness of the per-channel histograms; print and screen gamuts are spiky."""
    total_diff = 0.0
    count = 0
    for hist in histograms:
        previous, current = hist[:-1], hist[1:]
        populated = (previous > 0) | (current > 0)
        total_diff += float(np.abs(current - previous)[populated].sum())
        count += int(populated.sum())
    if count == 0:
        return 0.5
    return max(0.0, 1.0 - (total_diff / count) / 500)


def score_moire(gray: np.ndarray) -> float:
    """
    Look for periodic brightness oscillation along horizontal scanlines.

    A scanline whose direction-reversal ratio falls in (0.3, 0.6) is flagged
    as a screen-like interference pattern.
    """
    height, width = gray.shape
    rows = np.arange(height >> 2, (height * 3) >> 2, MOIRE_ROW_STRIDE)
    if rows.size == 0:
        return 0.5

    start, end = width >> 2, (width * 3) >> 2
    columns = np.concatenate(([start], np.arange(start + 2, end, 2)))
    half_line = (end - start) >> 1

    lines = gray[np.ix_(rows, columns)]
    rising = lines[:, 1:] > lines[:, :-1]
    # Direction state starts as "rising"
    states = np.hstack([np.ones((rows.size, 1), dtype=bool), rising])
    reversals = np.count_nonzero(states[:, 1:] != states[:, :-1], axis=1)

    if half_line <= 0:
        return 1.0
    ratios = reversals / half_line
    flagged = np.count_nonzero((ratios > 0.3) & (ratios < 0.6))
    return 1.0 - min(flagged / rows.size * 3, 1.0)


class PassiveLivenessAnalyzer:
    """
    Frame-level passive liveness scoring with a rolling motion history.

    Every second call is served from the cache.
    """

    SCALE = 0.5
    SKIP_INTERVAL = 2
    HISTORY_CAPACITY = 15
    TEMPORAL_WINDOW = 5
    REAL_THRESHOLD = 80

    WEIGHTS = {
        "texture": 0.20,
        "moire": 0.20,
        "color": 0.15,
        "edge": 0.15,
        "temporal": 0.20,
        "reflection": 0.10,
    }

    def __init__(self):
        self.history: RollingFrameHistory[np.ndarray] = RollingFrameHistory(self.HISTORY_CAPACITY)
        self.cache = AnalysisCache(self.SKIP_INTERVAL)

    @property
    def last_result(self) -> Optional[PassiveResult]:
        return self.cache.value

    def analyze(self, frame: np.ndarray) -> Optional[PassiveResult]:
        """
        Analyze one frame.

        Args:
            frame: RGB or RGBA uint8 frame at source resolution

        Returns:
            PassiveResult, the cached result on throttled calls, or None when
            no frame has been analyzed yet
        """
        if not is_valid_frame(frame):
            return self.cache.value
        if not self.cache.tick():
            return self.cache.value

        rgb = downscale(frame, self.SCALE)
        gray = to_gray(rgb)

        # Record the motion grid first so the current frame takes part in scoring
        self.history.append(freeze(simplified_grid(gray)))

        scores = self._spatial_scores(rgb, gray)
        scores["moire"] = score_moire(gray)
        scores["temporal"] = self._temporal_score()

        overall = sum(scores[name] * weight for name, weight in self.WEIGHTS.items())
        overall_score = to_percent(overall)

        result = PassiveResult(
            texture_score=to_percent(scores["texture"]),
            moire_score=to_percent(scores["moire"]),
            color_score=to_percent(scores["color"]),
            edge_score=to_percent(scores["edge"]),
            temporal_score=to_percent(scores["temporal"]),
            reflection_score=to_percent(scores["reflection"]),
            overall_score=overall_score,
            is_real=overall_score > self.REAL_THRESHOLD,
            issues=self._issues(scores),
        )
        logger.debug(f"Passive analysis: overall={overall_score} temporal={result.temporal_score}")
        return self.cache.store(result)

    def _spatial_scores(self, rgb: np.ndarray, gray: np.ndarray) -> Dict[str, float]:
        """Texture, color, edge and border reflection from one strided sample grid."""
        height, width = gray.shape
        ys = np.arange(SAMPLE_MARGIN, height - SAMPLE_MARGIN, SAMPLE_STRIDE)
        xs = np.arange(SAMPLE_MARGIN, width - SAMPLE_MARGIN, SAMPLE_STRIDE)
        grid_y, grid_x = np.meshgrid(ys, xs, indexing="ij")

        samples = gray[grid_y, grid_x]
        grad_x = gray[grid_y, grid_x + 1] - samples
        grad_y = gray[grid_y + 1, grid_x] - samples

        center_x, center_y = width >> 1, height >> 1
        half_side = min(width, height) >> 2
        center = (
            (grid_x >= center_x - half_side) & (grid_x < center_x + half_side) &
            (grid_y >= center_y - half_side) & (grid_y < center_y + half_side)
        )
        if center.any():
            avg_gradient = float(np.sqrt(grad_x[center] ** 2 + grad_y[center] ** 2).mean())
            avg_edge = float((np.abs(grad_x[center]) + np.abs(grad_y[center])).mean())
        else:
            avg_gradient = avg_edge = 0.0

        bins = rgb[grid_y, grid_x][..., :3] >> 2
        histograms = [
            np.bincount(bins[..., channel].ravel(), minlength=HISTOGRAM_BINS).astype(np.int64)
            for channel in range(3)
        ]

        border = (grid_x < BORDER_WIDTH) | (grid_x >= width - BORDER_WIDTH)
        border_total = int(border.sum())
        if border_total:
            bright_ratio = np.count_nonzero(samples[border] > BRIGHT_LEVEL) / border_total
            reflection = 1.0 - min(bright_ratio * 1.5, 0.7)
        else:
            reflection = 0.7

        return {
            "texture": score_texture(avg_gradient),
            "color": score_color(histograms),
            "edge": score_edge(avg_edge),
            "reflection": reflection,
        }

    def _temporal_score(self) -> float:
        if len(self.history) < 3:
            return 0.7

        recent = self.history.recent(self.TEMPORAL_WINDOW)
        current = recent[-1]
        diffs = [float(np.mean(np.abs(current - grid))) for grid in recent[:-1]]
        return score_temporal(sum(diffs) / len(diffs))

    @staticmethod
    def _issues(scores: Dict[str, float]) -> List[str]:
        issues = []
        if scores["moire"] < 0.5:
            issues.append("Screen interference pattern")
        if scores["temporal"] < 0.5:
            issues.append("Unnatural motion")
        if scores["texture"] < 0.5:
            issues.append("Flat texture")
        return issues

    def reset(self) -> None:
        self.history.clear()
        self.cache.reset()
