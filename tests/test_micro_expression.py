"""
Unit tests for MicroExpressionAnalyzer
"""
import pytest

from liveness_engine.services.micro_expression import (
    MicroExpressionAnalyzer,
    score_naturalness,
    score_twitch_ratio,
)


class TestScoreFunctions:
    """Test the motion-to-score mappings"""

    def test_naturalness(self):
        assert score_naturalness(0.0) == pytest.approx(0.3)
        assert score_naturalness(1.0) == pytest.approx(0.7)
        assert score_naturalness(13.0) == pytest.approx(0.3)

    def test_twitch_ratio(self):
        assert score_twitch_ratio(0.0) == pytest.approx(0.3)
        assert score_twitch_ratio(0.1) == pytest.approx(0.8)
        assert score_twitch_ratio(0.5) == pytest.approx(0.3)


class TestMicroExpressionAnalyzer:
    """Test suite for MicroExpressionAnalyzer"""

    def setup_method(self):
        self.analyzer = MicroExpressionAnalyzer()

    def test_requires_dense_landmarks(self, coarse_face):
        assert self.analyzer.analyze(None) is None
        assert self.analyzer.analyze(coarse_face()) is None

    def test_gathering_data_until_five_frames(self, dense_face):
        results = [self.analyzer.analyze(dense_face()) for _ in range(4)]

        for result in results:
            assert result.message == "Gathering data..."
            assert result.score == 50
        assert self.analyzer.last_result is None
        assert len(self.analyzer.history) == 4

    def test_static_face_is_unnatural(self, dense_face):
        for _ in range(5):
            result = self.analyzer.analyze(dense_face())

        assert result.message is None
        assert result.naturalness == 30
        assert result.involuntary_score == 50
        assert result.coordination_score == 100
        assert result.micro_movements == 0
        assert result.issues == ["Unnatural movement"]
        assert result.is_real is False

    def test_static_face_lacks_micro_movements(self, dense_face):
        for _ in range(10):
            result = self.analyzer.analyze(dense_face())

        assert len(self.analyzer.history) == 8
        assert "Missing micro-movements" in result.issues

    def test_subtle_jitter_is_natural(self, dense_face):
        shifts = [(0.0, 0.0), (1.0, 0.0)] * 3
        for shift in shifts[:5]:
            result = self.analyzer.analyze(dense_face(shift=shift))

        assert result.naturalness == 70
        assert result.micro_movements == 20
        assert "Unnatural movement" not in result.issues

    def test_throttled_after_first_result(self, dense_face):
        for _ in range(5):
            stored = self.analyzer.analyze(dense_face())

        assert self.analyzer.analyze(dense_face()) is not stored
        assert self.analyzer.analyze(dense_face()) is self.analyzer.last_result

    def test_reset(self, dense_face):
        self.analyzer.analyze(dense_face())
        self.analyzer.reset()

        assert len(self.analyzer.history) == 0
