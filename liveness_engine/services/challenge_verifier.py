"""
Per-challenge verifiers for active liveness gestures.

Each verifier takes the mutable ChallengeSession and the newest LandmarkSet
and returns True once the gesture has been observed. Verifiers are called
many times per challenge and return False whenever the data is insufficient.

Dense (FaceMesh) and coarse (BlazeFace) landmark sets use independent
detector variants with their own thresholds.
"""
import logging
from typing import Optional

from ..models.data_models import (
    ChallengeSession,
    CoarseLandmark,
    DenseLandmark,
    LandmarkSet,
)
from ..utils.geometry import EPSILON, distance, mean, midpoint, safe_ratio

logger = logging.getLogger(__name__)

BLINKS_REQUIRED = 2

# Dense blink: eye aspect ratio
BLINK_EAR_CLOSED = 0.15
BLINK_EAR_REOPEN = 0.18

# Coarse blink: inter-eye distance over a 3-frame window
BLINK_CLOSURE_RATIO = 0.85
BLINK_RECOVERY_RATIO = 0.95

# Smile
SMILE_DENSE_RATIO = 0.45
SMILE_BASELINE_RATIO = 1.15
MIN_MOUTH_SPAN = 0.05
BASELINE_FRAMES = 5

# Head turn: nose offset normalized by inter-eye distance
HEAD_TURN_LEFT = -0.35
HEAD_TURN_RIGHT = 0.35
HEAD_TURN_CENTER = 0.15

# Extended challenges
MOUTH_OPEN_RATIO = 1.3
EYEBROW_RAISE_RATIO = 0.92
EYEBROW_HISTORY_FRAMES = 10
EYE_MOVEMENT_LEFT = -0.25
EYE_MOVEMENT_RIGHT = 0.25
EYE_MOVEMENT_CENTER = 0.10


def eye_aspect_ratio(landmarks: LandmarkSet) -> Optional[float]:
    """
    Average eye aspect ratio (vertical opening / horizontal width) of both eyes.

    Returns None when the set is not a complete dense set or an eye has no width.
    """
    if not landmarks.is_dense or not landmarks.is_complete():
        return None

    p = landmarks.points
    left_width = distance(p[DenseLandmark.LEFT_EYE_OUTER], p[DenseLandmark.LEFT_EYE_INNER])
    right_width = distance(p[DenseLandmark.RIGHT_EYE_INNER], p[DenseLandmark.RIGHT_EYE_OUTER])
    if left_width < EPSILON or right_width < EPSILON:
        return None

    left_ear = distance(p[DenseLandmark.LEFT_EYE_TOP], p[DenseLandmark.LEFT_EYE_BOTTOM]) / left_width
    right_ear = distance(p[DenseLandmark.RIGHT_EYE_TOP], p[DenseLandmark.RIGHT_EYE_BOTTOM]) / right_width
    return (left_ear + right_ear) / 2.0


def inter_eye_distance(coarse: LandmarkSet) -> float:
    return distance(coarse.points[CoarseLandmark.RIGHT_EYE], coarse.points[CoarseLandmark.LEFT_EYE])


def eye_center(coarse: LandmarkSet):
    return midpoint(coarse.points[CoarseLandmark.RIGHT_EYE], coarse.points[CoarseLandmark.LEFT_EYE])


def nose_offset(coarse: LandmarkSet) -> Optional[float]:
    """Horizontal nose offset from the eye center, in inter-eye distances."""
    offset = coarse.points[CoarseLandmark.NOSE][0] - eye_center(coarse)[0]
    return safe_ratio(offset, inter_eye_distance(coarse), default=None)


def mouth_span(coarse: LandmarkSet) -> Optional[float]:
    """Horizontal mouth-to-eye-center span, in inter-eye distances."""
    span = abs(coarse.points[CoarseLandmark.MOUTH][0] - eye_center(coarse)[0])
    return safe_ratio(span, inter_eye_distance(coarse), default=None)


def establish_baseline(session: ChallengeSession) -> bool:
    """
    Measure the baseline face geometry once enough history exists.

    The baseline is computed a single time per challenge from the first
    BASELINE_FRAMES coarse frames; later calls only report whether it exists.
    """
    if session.baseline.established:
        return True
    if len(session.landmark_history) < BASELINE_FRAMES:
        return False

    frames = session.landmark_history.recent(BASELINE_FRAMES)
    eye_distance = mean(inter_eye_distance(f) for f in frames)
    if eye_distance < EPSILON:
        return False

    spans = [s for s in (mouth_span(f) for f in frames) if s is not None]
    session.baseline.eye_distance = eye_distance
    session.baseline.mouth_span = max(mean(spans), MIN_MOUTH_SPAN)
    logger.debug(
        f"Baseline established: eye_distance={eye_distance:.2f}, "
        f"mouth_span={session.baseline.mouth_span:.3f}"
    )
    return True


def _coarse_frame(session: ChallengeSession, landmarks: LandmarkSet) -> Optional[LandmarkSet]:
    """Project to coarse geometry and record it; None when unusable."""
    coarse = landmarks.to_coarse()
    if not coarse.is_complete():
        return None
    session.landmark_history.append(coarse)
    return coarse


def verify_blink(session: ChallengeSession, landmarks: LandmarkSet) -> bool:
    """Two distinct blinks."""
    if landmarks.is_dense:
        ear = eye_aspect_ratio(landmarks)
        if ear is None:
            return False
        if ear < BLINK_EAR_CLOSED and not session.eyes_closed:
            session.eyes_closed = True
            session.blink_count += 1
            logger.info(f"Blink detected (EAR {ear:.3f}): {session.blink_count}/{BLINKS_REQUIRED}")
        elif ear >= BLINK_EAR_REOPEN:
            session.eyes_closed = False
        return session.blink_count >= BLINKS_REQUIRED

    if not landmarks.is_complete():
        return False
    session.landmark_history.append(landmarks)
    if len(session.landmark_history) < 3:
        return False

    before, during, current = session.landmark_history.recent(3)
    reference = inter_eye_distance(before)
    if reference < EPSILON:
        return False

    if (inter_eye_distance(during) <= reference * BLINK_CLOSURE_RATIO and
            inter_eye_distance(current) >= reference * BLINK_RECOVERY_RATIO):
        session.blink_count += 1
        logger.info(f"Blink detected: {session.blink_count}/{BLINKS_REQUIRED}")

    return session.blink_count >= BLINKS_REQUIRED


def verify_smile(session: ChallengeSession, landmarks: LandmarkSet) -> bool:
    if landmarks.is_dense:
        if not landmarks.is_complete():
            return False
        p = landmarks.points
        mouth_width = distance(p[DenseLandmark.MOUTH_LEFT], p[DenseLandmark.MOUTH_RIGHT])
        face_width = distance(p[DenseLandmark.LEFT_CHEEK], p[DenseLandmark.RIGHT_CHEEK])
        ratio = safe_ratio(mouth_width, face_width)
        if ratio > SMILE_DENSE_RATIO:
            logger.info(f"Smile detected (mouth/face ratio {ratio:.3f})")
            return True
        return False

    if not landmarks.is_complete():
        return False
    session.landmark_history.append(landmarks)
    if not establish_baseline(session):
        return False

    span = mouth_span(landmarks)
    if span is None:
        return False
    ratio = span / session.baseline.mouth_span
    if ratio > SMILE_BASELINE_RATIO:
        logger.info(f"Smile detected (span ratio {ratio:.3f})")
        return True
    return False


def verify_head_turn(session: ChallengeSession, landmarks: LandmarkSet) -> bool:
    """Left, right and centered positions all reached, in any order."""
    coarse = _coarse_frame(session, landmarks)
    if coarse is None:
        return False

    offset = nose_offset(coarse)
    if offset is None:
        return False

    flags = session.head_turn
    if offset < HEAD_TURN_LEFT:
        if not flags.left:
            logger.info("Head turned LEFT")
        flags.left = True
    elif offset > HEAD_TURN_RIGHT:
        if not flags.right:
            logger.info("Head turned RIGHT")
        flags.right = True
    elif abs(offset) < HEAD_TURN_CENTER:
        flags.center = True

    return flags.all_set


def verify_mouth_open(session: ChallengeSession, landmarks: LandmarkSet) -> bool:
    coarse = _coarse_frame(session, landmarks)
    if coarse is None or not establish_baseline(session):
        return session.mouth_open_detected

    history = session.landmark_history
    if len(history) > BASELINE_FRAMES:
        def mouth_to_nose(frame):
            return abs(frame.points[CoarseLandmark.MOUTH][1] - frame.points[CoarseLandmark.NOSE][1])

        average = mean(mouth_to_nose(f) for f in history.recent(BASELINE_FRAMES))
        if mouth_to_nose(coarse) > average * MOUTH_OPEN_RATIO:
            session.mouth_open_detected = True
            logger.info("Mouth opening detected")

    return session.mouth_open_detected


def verify_eyebrow_raise(session: ChallengeSession, landmarks: LandmarkSet) -> bool:
    coarse = _coarse_frame(session, landmarks)
    history = session.landmark_history
    if coarse is None or len(history) < EYEBROW_HISTORY_FRAMES:
        return session.eyebrow_raise_detected

    def eye_to_nose(frame):
        return abs(eye_center(frame)[1] - frame.points[CoarseLandmark.NOSE][1])

    average = mean(eye_to_nose(f) for f in history.recent(EYEBROW_HISTORY_FRAMES))
    # Raised brows lift the eye region relative to the nose
    if eye_to_nose(coarse) < average * EYEBROW_RAISE_RATIO:
        session.eyebrow_raise_detected = True
        logger.info("Eyebrow raise detected")

    return session.eyebrow_raise_detected


def verify_eye_movement(session: ChallengeSession, landmarks: LandmarkSet) -> bool:
    coarse = _coarse_frame(session, landmarks)
    if coarse is None or len(session.landmark_history) < BASELINE_FRAMES:
        return session.eye_movement.all_set

    offset = safe_ratio(
        eye_center(coarse)[0] - coarse.points[CoarseLandmark.NOSE][0],
        inter_eye_distance(coarse),
        default=None,
    )
    if offset is None:
        return False

    flags = session.eye_movement
    if offset < EYE_MOVEMENT_LEFT:
        flags.left = True
    elif offset > EYE_MOVEMENT_RIGHT:
        flags.right = True
    elif abs(offset) < EYE_MOVEMENT_CENTER:
        flags.center = True

    return flags.all_set
