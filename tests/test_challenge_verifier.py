"""
Unit tests for the per-challenge gesture verifiers
"""
import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from liveness_engine.models.data_models import ChallengeSession, LandmarkSet
from liveness_engine.services import challenge_verifier as cv


def feed(verifier, session, frames):
    """Run a verifier over a frame sequence and return every per-frame outcome."""
    return [verifier(session, frame) for frame in frames]


class TestHelpers:
    """Test landmark measurements used by the verifiers"""

    def test_eye_aspect_ratio_dense(self, dense_face):
        assert cv.eye_aspect_ratio(dense_face(ear=0.3)) == pytest.approx(0.3)

    def test_eye_aspect_ratio_requires_dense(self, coarse_face):
        assert cv.eye_aspect_ratio(coarse_face()) is None

    def test_nose_offset_normalized_by_eye_distance(self, coarse_face):
        assert cv.nose_offset(coarse_face(nose_offset=-0.4)) == pytest.approx(-0.4)

    def test_nose_offset_without_eye_distance(self):
        collapsed = LandmarkSet.coarse([(10, 10)] * 6)
        assert cv.nose_offset(collapsed) is None


class TestBlinkVerifier:
    """Test blink detection for both landmark resolutions"""

    def setup_method(self):
        self.session = ChallengeSession()

    def test_two_dense_closures_succeed(self, dense_face):
        ears = [0.3, 0.1, 0.3, 0.1]
        results = feed(cv.verify_blink, self.session, [dense_face(ear=e) for e in ears])

        assert results == [False, False, False, True]
        assert self.session.blink_count == 2

    def test_one_dense_closure_is_not_enough(self, dense_face):
        ears = [0.3, 0.1, 0.1, 0.1, 0.3, 0.3]
        results = feed(cv.verify_blink, self.session, [dense_face(ear=e) for e in ears])

        assert not any(results)
        assert self.session.blink_count == 1

    def test_eye_must_reopen_before_next_blink(self, dense_face):
        # 0.16 is above the closed threshold but below the re-open level
        ears = [0.3, 0.1, 0.16, 0.1]
        feed(cv.verify_blink, self.session, [dense_face(ear=e) for e in ears])

        assert self.session.blink_count == 1

    def test_coarse_three_frame_window(self, coarse_face):
        distances = [60, 50, 60, 60, 50, 60]
        results = feed(
            cv.verify_blink, self.session, [coarse_face(eye_distance=d) for d in distances]
        )

        assert results == [False, False, False, False, False, True]
        assert self.session.blink_count == 2

    def test_coarse_partial_recovery_is_not_a_blink(self, coarse_face):
        distances = [60, 50, 52]
        feed(cv.verify_blink, self.session, [coarse_face(eye_distance=d) for d in distances])

        assert self.session.blink_count == 0

    def test_incomplete_landmarks_return_false(self):
        assert cv.verify_blink(self.session, LandmarkSet.coarse([(0, 0)] * 3)) is False
        assert cv.verify_blink(self.session, LandmarkSet.dense([(0, 0)] * 3)) is False


class TestSmileVerifier:
    """Test smile detection"""

    def setup_method(self):
        self.session = ChallengeSession()

    def test_dense_wide_mouth_succeeds(self, dense_face):
        assert cv.verify_smile(self.session, dense_face(mouth_width=100.0)) is True

    def test_dense_neutral_mouth_fails(self, dense_face):
        assert cv.verify_smile(self.session, dense_face(mouth_width=60.0)) is False

    def test_coarse_needs_baseline_first(self, coarse_face):
        results = feed(cv.verify_smile, self.session, [coarse_face(mouth_span=0.5)] * 4)

        assert not any(results)
        assert not self.session.baseline.established

    def test_coarse_span_above_baseline_succeeds(self, coarse_face):
        frames = [coarse_face(mouth_span=0.1)] * 5 + [coarse_face(mouth_span=0.2)]
        results = feed(cv.verify_smile, self.session, frames)

        assert results == [False] * 5 + [True]
        assert self.session.baseline.mouth_span == pytest.approx(0.1)

    def test_coarse_baseline_is_floored(self, coarse_face):
        feed(cv.verify_smile, self.session, [coarse_face(mouth_span=0.0)] * 5)

        assert self.session.baseline.mouth_span == pytest.approx(cv.MIN_MOUTH_SPAN)

    def test_baseline_established_only_once(self, coarse_face):
        feed(cv.verify_smile, self.session, [coarse_face(mouth_span=0.1)] * 5)
        feed(cv.verify_smile, self.session, [coarse_face(mouth_span=0.11)] * 5)

        assert self.session.baseline.mouth_span == pytest.approx(0.1)


class TestHeadTurnVerifier:
    """Test head turn detection"""

    def setup_method(self):
        self.session = ChallengeSession()

    def test_left_center_right_succeeds(self, coarse_face):
        offsets = [0.0, -0.40, 0.0, 0.40]
        results = feed(
            cv.verify_head_turn, self.session, [coarse_face(nose_offset=o) for o in offsets]
        )

        assert results == [False, False, False, True]

    def test_one_direction_only_fails(self, coarse_face):
        offsets = [0.0, -0.40, -0.40, -0.40]
        results = feed(
            cv.verify_head_turn, self.session, [coarse_face(nose_offset=o) for o in offsets]
        )

        assert not any(results)
        assert self.session.head_turn.left
        assert not self.session.head_turn.right

    def test_dense_input_goes_through_coarse_projection(self, dense_face):
        cv.verify_head_turn(self.session, dense_face())

        assert self.session.head_turn.center
        assert len(self.session.landmark_history) == 1

    @given(offsets=st.permutations([0.0, -0.45, 0.45]))
    @settings(max_examples=20, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_property_any_order_succeeds(self, coarse_face, offsets):
        """Left, right and center in any order complete the challenge."""
        session = ChallengeSession()
        results = [cv.verify_head_turn(session, coarse_face(nose_offset=o)) for o in offsets]
        assert results[-1] is True


class TestExtendedVerifiers:
    """Test mouth-open, eyebrow-raise and eye-movement detection"""

    def setup_method(self):
        self.session = ChallengeSession()

    def test_mouth_open(self, coarse_face):
        frames = [coarse_face(mouth_y=160.0)] * 5 + [coarse_face(mouth_y=200.0)]
        results = feed(cv.verify_mouth_open, self.session, frames)

        assert results == [False] * 5 + [True]

    def test_mouth_steady_is_not_open(self, coarse_face):
        results = feed(cv.verify_mouth_open, self.session, [coarse_face()] * 12)
        assert not any(results)

    def test_eyebrow_raise(self, coarse_face):
        frames = [coarse_face(eye_y=100.0)] * 10 + [coarse_face(eye_y=110.0)]
        results = feed(cv.verify_eyebrow_raise, self.session, frames)

        assert results == [False] * 10 + [True]

    def test_eye_movement_needs_all_three_directions(self, coarse_face):
        frames = [coarse_face()] * 4 + [
            coarse_face(nose_offset=0.3),
            coarse_face(nose_offset=-0.3),
        ]
        results = feed(cv.verify_eye_movement, self.session, frames)
        assert not any(results)

        assert cv.verify_eye_movement(self.session, coarse_face(nose_offset=0.0)) is True
