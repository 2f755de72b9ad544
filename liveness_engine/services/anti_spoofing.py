"""
Anti-spoofing fusion: attack-specific classifiers built on top of the depth
and passive analyses, plus two cheap image checks of its own.
"""
import logging
from typing import List, Optional

import cv2
import numpy as np

from ..models.data_models import (
    AntiSpoofResult,
    AttackType,
    ConfidenceTier,
    DepthResult,
    PassiveResult,
)
from ..utils.frames import downscale, is_valid_frame, to_gray
from ..utils.geometry import to_percent, variance
from ..utils.rolling_history import AnalysisCache, RollingFrameHistory

logger = logging.getLogger(__name__)

PHOTO_SAMPLE_STRIDE = 8
PHOTO_SAMPLE_MARGIN = 10
CUTOUT_SAMPLE_STRIDE = 15
CUTOUT_SAMPLE_MARGIN = 5
CUTOUT_TOLERANCE = 5


def _sample_grid(height: int, width: int, margin: int, stride: int):
    ys = np.arange(margin, height - margin, stride)
    xs = np.arange(margin, width - margin, stride)
    return np.meshgrid(ys, xs, indexing="ij")


def skin_ratio(pixels: np.ndarray) -> float:
    """
    Share of sampled pixels with a reddish-yellow, saturated skin hue.

    Args:
        pixels: (rows, cols, 3) uint8 RGB samples

    Returns:
        float: Skin pixel ratio in [0, 1]
    """
    if pixels.size == 0:
        return 0.0
    pixels = np.ascontiguousarray(pixels[..., :3], dtype=np.uint8)
    hsv = cv2.cvtColor(pixels, cv2.COLOR_RGB2HSV).astype(np.float32)
    channels = pixels.astype(np.int16)
    chroma = channels.max(axis=2) - channels.min(axis=2)

    # OpenCV 8-bit hue spans 0..180, saturation 0..255
    hue = hsv[..., 0] / 180.0
    saturation = hsv[..., 1] / 255.0
    skin = (chroma > 10) & ((hue < 0.15) | (hue > 0.95)) & (saturation > 0.15)
    return float(np.count_nonzero(skin)) / skin.size


def score_photo(rgb: np.ndarray, depth_result: Optional[DepthResult]) -> float:
    """
    Printed-photo likelihood inverted: depth structure, uneven lighting,
    skin tones and natural sharpness all push the score up.
    """
    score = 0.5
    if depth_result is not None and depth_result.depth_score:
        score = 0.3 + depth_result.depth_score / 100 * 0.5

    height, width = rgb.shape[:2]
    grid_y, grid_x = _sample_grid(height, width, PHOTO_SAMPLE_MARGIN, PHOTO_SAMPLE_STRIDE)
    if grid_y.size == 0:
        return min(score, 1.0)

    brightness = to_gray(rgb)[grid_y, grid_x]
    left = grid_x < (width >> 1)
    top = grid_y < (height >> 1)
    quadrant_means = [
        brightness[mask].mean()
        for mask in (left & top, ~left & top, left & ~top, ~left & ~top)
        if mask.any()
    ]
    overall = brightness.mean()
    lighting_variance = float(np.mean([(q - overall) ** 2 for q in quadrant_means]))
    if 50 < lighting_variance < 500:
        score += 0.1

    if skin_ratio(rgb[grid_y, grid_x]) > 0.3:
        score += 0.2

    red = rgb[..., 0].astype(np.int16)
    center = red[grid_y, grid_x]
    sharpness = float(np.mean(
        np.abs(center - red[grid_y, grid_x - 1]) + np.abs(center - red[grid_y - 1, grid_x])
    ))
    if 3 < sharpness < 20:
        score += 0.1

    return min(score, 1.0)


def score_screen(passive_result: Optional[PassiveResult]) -> float:
    if passive_result is None:
        return 0.5
    moire = passive_result.moire_score / 100
    return moire * 0.5 if moire < 0.6 else moire


def score_mask(depth_result: Optional[DepthResult]) -> float:
    if depth_result is None or depth_result.features is None:
        return 0.5
    features = depth_result.features
    score = 0.5
    if features.z_spread > 0.05:
        score += 0.25
    if 0.08 < features.nose_ratio < 0.25:
        score += 0.25
    return min(score, 1.0)


def score_deepfake(passive_result: Optional[PassiveResult]) -> float:
    if passive_result is None:
        return 0.5
    return passive_result.temporal_score / 100


def score_cutout(gray: np.ndarray) -> float:
    """
    Detect straight paper edges: samples whose vertical or horizontal
    neighbourhood is almost perfectly uniform.
    """
    height, width = gray.shape
    grid_y, grid_x = _sample_grid(height, width, CUTOUT_SAMPLE_MARGIN, CUTOUT_SAMPLE_STRIDE)
    if grid_y.size == 0:
        return 0.7

    offsets = np.arange(-2, 3)
    center = gray[grid_y, grid_x][..., None]
    vertical = gray[grid_y[..., None] + offsets, grid_x[..., None]]
    horizontal = gray[grid_y[..., None], grid_x[..., None] + offsets]

    vertical_run = np.count_nonzero(np.abs(vertical - center) < CUTOUT_TOLERANCE, axis=-1)
    horizontal_run = np.count_nonzero(np.abs(horizontal - center) < CUTOUT_TOLERANCE, axis=-1)
    rectilinear = np.count_nonzero((vertical_run >= 4) | (horizontal_run >= 4))

    return 1.0 - min(rectilinear / grid_y.size * 2, 0.6)


class AntiSpoofingAnalyzer:
    """
    Fuses attack-specific scores into one anti-spoofing percentage.

    Runs on every third call on a 40% frame; the depth and passive results
    of the same cycle are reused instead of re-analyzing the image.
    """

    SCALE = 0.4
    SKIP_INTERVAL = 3
    HISTORY_CAPACITY = 10
    STABILITY_WINDOW = 5
    REAL_THRESHOLD = 80
    ATTACK_THRESHOLD = 0.5

    WEIGHTS = {
        "photo": 0.25,
        "screen": 0.25,
        "mask": 0.20,
        "deepfake": 0.15,
        "cutout": 0.15,
    }
    TEMPORAL_BONUS_WEIGHT = 0.10

    ATTACK_LABELS = {
        "photo": AttackType.PHOTO_ATTACK,
        "screen": AttackType.SCREEN_REPLAY,
        "mask": AttackType.MASK_DETECTED,
        "deepfake": AttackType.DEEPFAKE_SUSPECTED,
        "cutout": AttackType.CUTOUT_DETECTED,
    }

    def __init__(self):
        self.photo_history: RollingFrameHistory[float] = RollingFrameHistory(self.HISTORY_CAPACITY)
        self.cache = AnalysisCache(self.SKIP_INTERVAL)

    @property
    def last_result(self) -> Optional[AntiSpoofResult]:
        return self.cache.value

    def analyze(
        self,
        frame: np.ndarray,
        depth_result: Optional[DepthResult] = None,
        passive_result: Optional[PassiveResult] = None
    ) -> Optional[AntiSpoofResult]:
        """
        Run the attack classifiers on one frame.

        Args:
            frame: RGB or RGBA uint8 frame at source resolution
            depth_result: Latest depth scorer reading, if any
            passive_result: Latest passive analyzer reading, if any

        Returns:
            AntiSpoofResult, or the cached result on throttled calls
        """
        if not is_valid_frame(frame):
            return self.cache.value
        if not self.cache.tick():
            return self.cache.value

        rgb = downscale(frame, self.SCALE)
        scores = {
            "photo": score_photo(rgb, depth_result),
            "screen": score_screen(passive_result),
            "mask": score_mask(depth_result),
            "deepfake": score_deepfake(passive_result),
            "cutout": score_cutout(to_gray(rgb)),
        }

        self.photo_history.append(scores["photo"])
        bonus = self._temporal_bonus()

        overall = min(
            1.0,
            sum(scores[name] * weight for name, weight in self.WEIGHTS.items())
            + bonus * self.TEMPORAL_BONUS_WEIGHT
        )
        overall_score = to_percent(overall)
        attacks = self._attacks(scores)

        result = AntiSpoofResult(
            photo_score=to_percent(scores["photo"]),
            screen_score=to_percent(scores["screen"]),
            mask_score=to_percent(scores["mask"]),
            deepfake_score=to_percent(scores["deepfake"]),
            cutout_score=to_percent(scores["cutout"]),
            temporal_bonus=to_percent(bonus),
            overall_score=overall_score,
            is_real=overall_score > self.REAL_THRESHOLD,
            attacks_detected=attacks,
            confidence=ConfidenceTier.from_score(overall_score),
        )
        if attacks:
            logger.info(f"Possible attacks: {', '.join(a.value for a in attacks)}")
        return self.cache.store(result)

    def _attacks(self, scores) -> List[AttackType]:
        return [
            label for name, label in self.ATTACK_LABELS.items()
            if scores[name] < self.ATTACK_THRESHOLD
        ]

    def _temporal_bonus(self) -> float:
        """Stable photo scores over recent cycles earn a bonus."""
        if len(self.photo_history) < 3:
            return 0.5
        v = variance(self.photo_history.recent(self.STABILITY_WINDOW))
        return max(0.3, 1.0 - min(v / 0.2, 0.5))

    def reset(self) -> None:
        self.photo_history.clear()
        self.cache.reset()
