"""
Unit tests for AntiSpoofingAnalyzer
"""
import numpy as np
import pytest

from liveness_engine.models.data_models import (
    AttackType,
    ConfidenceTier,
    DepthFeatures,
    DepthResult,
)
from liveness_engine.services.anti_spoofing import (
    AntiSpoofingAnalyzer,
    score_cutout,
    score_deepfake,
    score_mask,
    score_screen,
    skin_ratio,
)

SKIN = (200, 120, 90)


def real_depth():
    features = DepthFeatures(eye_distance=100.0, nose_protrusion=20.0, nose_ratio=0.2, z_spread=8.0)
    return DepthResult(score=80, is_real=True, depth_score=100, consistency_score=50, features=features)


class TestAttackClassifiers:
    """Test the individual attack classifiers"""

    def test_skin_ratio(self):
        skin = np.full((4, 4, 3), SKIN, dtype=np.uint8)
        gray = np.full((4, 4, 3), 128, dtype=np.uint8)
        blue = np.full((4, 4, 3), (50, 80, 200), dtype=np.uint8)

        assert skin_ratio(skin) == pytest.approx(1.0)
        assert skin_ratio(gray) == 0.0
        assert skin_ratio(blue) == 0.0

    def test_screen_score_follows_moire(self, passive_result):
        assert score_screen(None) == 0.5
        assert score_screen(passive_result(moire=90)) == pytest.approx(0.9)
        # strong moire is penalized twice
        assert score_screen(passive_result(moire=40)) == pytest.approx(0.2)

    def test_mask_score(self):
        assert score_mask(None) == 0.5
        assert score_mask(DepthResult(score=0, is_real=False)) == 0.5
        assert score_mask(real_depth()) == pytest.approx(1.0)

    def test_deepfake_score_follows_temporal(self, passive_result):
        assert score_deepfake(None) == 0.5
        assert score_deepfake(passive_result(temporal=30)) == pytest.approx(0.3)

    def test_cutout_on_uniform_image(self):
        assert score_cutout(np.full((96, 128), 128.0)) == pytest.approx(0.4)

    def test_cutout_on_noise(self, noise_frame):
        gray = noise_frame()[..., 0].astype(np.float32)
        assert score_cutout(gray) > 0.9


class TestAntiSpoofingAnalyzer:
    """Test suite for AntiSpoofingAnalyzer"""

    def setup_method(self):
        self.analyzer = AntiSpoofingAnalyzer()

    def test_neutral_inputs(self, gray_frame):
        result = self.analyzer.analyze(gray_frame)

        assert result.photo_score == 50
        assert result.screen_score == 50
        assert result.mask_score == 50
        assert result.deepfake_score == 50
        assert result.cutout_score == 40
        assert result.temporal_bonus == 50
        assert result.attacks_detected == [AttackType.CUTOUT_DETECTED]
        assert result.is_real is False
        assert result.confidence == ConfidenceTier.LOW

    def test_reuses_depth_and_passive_results(self, gray_frame, passive_result):
        result = self.analyzer.analyze(
            gray_frame, depth_result=real_depth(), passive_result=passive_result(moire=90, temporal=90)
        )

        assert result.photo_score == 80
        assert result.screen_score == 90
        assert result.mask_score == 100
        assert result.deepfake_score == 90
        assert AttackType.PHOTO_ATTACK not in result.attacks_detected

    def test_screen_and_deepfake_labels(self, gray_frame, passive_result):
        result = self.analyzer.analyze(gray_frame, passive_result=passive_result(moire=40, temporal=30))

        assert AttackType.SCREEN_REPLAY in result.attacks_detected
        assert AttackType.DEEPFAKE_SUSPECTED in result.attacks_detected

    def test_skin_tones_raise_photo_score(self):
        frame = np.full((240, 320, 3), SKIN, dtype=np.uint8)
        result = self.analyzer.analyze(frame)

        assert result.photo_score == 70

    def test_runs_every_third_call(self, gray_frame):
        first = self.analyzer.analyze(gray_frame)
        second = self.analyzer.analyze(gray_frame)
        third = self.analyzer.analyze(gray_frame)

        assert second is first
        assert third is not first
        assert len(self.analyzer.photo_history) == 2

    def test_stable_photo_scores_earn_bonus(self, gray_frame):
        for _ in range(6):
            result = self.analyzer.analyze(gray_frame)

        assert len(self.analyzer.photo_history) == 3
        assert result.temporal_bonus == 100

    def test_overall_is_bounded(self, noise_frame, passive_result):
        result = self.analyzer.analyze(
            noise_frame(), depth_result=real_depth(), passive_result=passive_result(moire=100, temporal=100)
        )
        assert 0 <= result.overall_score <= 100

    def test_invalid_frame(self):
        assert self.analyzer.analyze(None) is None

    def test_reset(self, gray_frame):
        self.analyzer.analyze(gray_frame)
        self.analyzer.reset()

        assert self.analyzer.last_result is None
        assert len(self.analyzer.photo_history) == 0
