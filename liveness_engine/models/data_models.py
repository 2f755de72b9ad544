"""
Data models for the liveness engine
"""
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from ..utils.rolling_history import RollingFrameHistory

# Minimum point counts for a usable landmark set
COARSE_MIN_POINTS = 6
DENSE_MIN_POINTS = 468

# Challenge landmark history length
CHALLENGE_HISTORY_CAPACITY = 30


class LandmarkResolution(Enum):
    """Which detector produced a landmark set"""
    COARSE = "coarse"
    DENSE = "dense"


class CoarseLandmark:
    """BlazeFace keypoint order"""
    RIGHT_EYE = 0
    LEFT_EYE = 1
    NOSE = 2
    MOUTH = 3
    RIGHT_EAR = 4
    LEFT_EAR = 5


class DenseLandmark:
    """MediaPipe FaceMesh indices used by the analyzers"""
    NOSE_TIP = 1
    FOREHEAD = 10
    UPPER_LIP = 13
    LOWER_LIP = 14
    LEFT_EYE_OUTER = 33
    LEFT_EYE_INNER = 133
    LEFT_EYE_TOP = 159
    LEFT_EYE_BOTTOM = 145
    RIGHT_EYE_OUTER = 263
    RIGHT_EYE_INNER = 362
    RIGHT_EYE_TOP = 386
    RIGHT_EYE_BOTTOM = 374
    MOUTH_LEFT = 61
    MOUTH_RIGHT = 291
    LEFT_CHEEK = 234
    RIGHT_CHEEK = 454
    CHIN = 152


@dataclass(frozen=True, eq=False)
class LandmarkSet:
    """
    Immutable set of face landmarks in source-frame pixel coordinates.

    ``points`` is an (N, 3) array; 2D input gets z = 0. The ``resolution``
    discriminant tells verifiers which detector variant to apply.
    """
    resolution: LandmarkResolution
    points: np.ndarray

    def __post_init__(self):
        points = np.asarray(self.points, dtype=np.float64)
        if points.size == 0:
            points = np.zeros((0, 3), dtype=np.float64)
        if points.ndim != 2 or points.shape[1] not in (2, 3):
            raise ValueError(f"Landmarks must have shape (N, 2) or (N, 3), got {points.shape}")
        if points.shape[1] == 2:
            points = np.hstack([points, np.zeros((points.shape[0], 1))])
        else:
            points = points.copy()
        points.setflags(write=False)
        object.__setattr__(self, 'points', points)

    @classmethod
    def coarse(cls, points) -> "LandmarkSet":
        return cls(LandmarkResolution.COARSE, points)

    @classmethod
    def dense(cls, points) -> "LandmarkSet":
        return cls(LandmarkResolution.DENSE, points)

    @property
    def is_dense(self) -> bool:
        return self.resolution == LandmarkResolution.DENSE

    def is_complete(self) -> bool:
        """True when the set has every point its resolution promises."""
        required = DENSE_MIN_POINTS if self.is_dense else COARSE_MIN_POINTS
        return len(self) >= required

    def point(self, index: int) -> np.ndarray:
        return self.points[index]

    def to_coarse(self) -> "LandmarkSet":
        """
        Project a dense set onto the six coarse anchor points.

        Eye centers come from the eye corners, the mouth point from the lip
        centers and the ear points from the cheek extremes. A coarse set is
        returned unchanged; an incomplete dense set becomes an empty coarse set.
        """
        if not self.is_dense:
            return self
        if not self.is_complete():
            return LandmarkSet.coarse(np.zeros((0, 3)))

        p = self.points
        right_eye = (p[DenseLandmark.LEFT_EYE_OUTER] + p[DenseLandmark.LEFT_EYE_INNER]) / 2.0
        left_eye = (p[DenseLandmark.RIGHT_EYE_OUTER] + p[DenseLandmark.RIGHT_EYE_INNER]) / 2.0
        mouth = (p[DenseLandmark.UPPER_LIP] + p[DenseLandmark.LOWER_LIP]) / 2.0
        return LandmarkSet.coarse(np.vstack([
            right_eye,
            left_eye,
            p[DenseLandmark.NOSE_TIP],
            mouth,
            p[DenseLandmark.LEFT_CHEEK],
            p[DenseLandmark.RIGHT_CHEEK],
        ]))

    def __len__(self) -> int:
        return int(self.points.shape[0])


@dataclass
class DetectionResult:
    """One reading from a landmark source"""
    face_count: int
    confidence: float
    landmarks: Optional[LandmarkSet] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def face_detected(self) -> bool:
        return self.face_count > 0

    @property
    def multiple_faces(self) -> bool:
        return self.face_count > 1


# --------------------------------------------------------------------------
# Challenges
# --------------------------------------------------------------------------

class ChallengeState(Enum):
    """Challenge state machine states"""
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED_SUCCESS = "completed_success"
    COMPLETED_FAILURE = "completed_failure"


@dataclass(frozen=True)
class ChallengeDescriptor:
    """Immutable definition of one behavioral test"""
    challenge_id: str
    name: str
    instruction: str
    icon: str
    duration_seconds: float
    verifier: Callable[["ChallengeSession", LandmarkSet], bool] = field(
        compare=False, repr=False
    )


@dataclass
class Baseline:
    """Face geometry measured once enough challenge history exists"""
    eye_distance: Optional[float] = None
    mouth_span: Optional[float] = None

    @property
    def established(self) -> bool:
        return self.eye_distance is not None


@dataclass
class DirectionFlags:
    """Directions reached during a left/center/right challenge"""
    left: bool = False
    center: bool = False
    right: bool = False

    @property
    def all_set(self) -> bool:
        return self.left and self.center and self.right


@dataclass
class ChallengeSession:
    """Mutable state of the challenge currently being verified"""
    descriptor: Optional[ChallengeDescriptor] = None
    start_time: Optional[float] = None
    active: bool = False
    blink_count: int = 0
    eyes_closed: bool = False
    head_turn: DirectionFlags = field(default_factory=DirectionFlags)
    eye_movement: DirectionFlags = field(default_factory=DirectionFlags)
    mouth_open_detected: bool = False
    eyebrow_raise_detected: bool = False
    baseline: Baseline = field(default_factory=Baseline)
    landmark_history: RollingFrameHistory = field(
        default_factory=lambda: RollingFrameHistory(CHALLENGE_HISTORY_CAPACITY)
    )


@dataclass(frozen=True)
class ChallengeOutcome:
    """Recorded result of one finished challenge"""
    challenge_id: str
    name: str
    success: bool
    duration_seconds: float


# Outbound events

@dataclass(frozen=True)
class ChallengeStarted:
    challenge_id: str
    name: str
    instruction: str
    icon: str


@dataclass(frozen=True)
class Progress:
    challenge_id: str
    percent: float


@dataclass(frozen=True)
class ChallengeResult:
    challenge_id: str
    success: bool
    duration_seconds: float


@dataclass(frozen=True)
class FaceStatus:
    face_count: int
    suspended: bool


@dataclass(frozen=True)
class AttemptFinished:
    result: "VerificationResult"


ChallengeEvent = Union[ChallengeStarted, Progress, ChallengeResult]
AttemptEvent = Union[ChallengeStarted, Progress, ChallengeResult, FaceStatus, AttemptFinished]


# --------------------------------------------------------------------------
# Scores and verdict
# --------------------------------------------------------------------------

class ConfidenceTier(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceTier":
        if score > 85:
            return cls.HIGH
        if score > 70:
            return cls.MEDIUM
        return cls.LOW


class AttackType(Enum):
    PHOTO_ATTACK = "PHOTO_ATTACK"
    SCREEN_REPLAY = "SCREEN_REPLAY"
    MASK_DETECTED = "MASK_DETECTED"
    DEEPFAKE_SUSPECTED = "DEEPFAKE_SUSPECTED"
    CUTOUT_DETECTED = "CUTOUT_DETECTED"


class ReasonCode(Enum):
    """Why an attempt ended the way it did"""
    ACCEPTED = "accepted"
    SCORE_BELOW_THRESHOLD = "score_below_threshold"
    CHALLENGES_INCOMPLETE = "challenges_incomplete"
    TIME_BUDGET_EXCEEDED = "time_budget_exceeded"
    MODEL_UNAVAILABLE = "model_unavailable"
    CANCELLED = "cancelled"


SCORE_DIMENSIONS = (
    "active",
    "passive",
    "anti_spoof",
    "depth",
    "eye_reflection",
    "micro_expression",
)


@dataclass
class SecurityScoreSet:
    """Latest integer percentage per scoring dimension"""
    active: int = 0
    passive: int = 0
    anti_spoof: int = 0
    depth: int = 0
    eye_reflection: int = 0
    micro_expression: int = 0

    def update(self, dimension: str, value: float) -> None:
        """Overwrite one dimension with its latest reading, clamped to [0, 100]."""
        if dimension not in SCORE_DIMENSIONS:
            raise ValueError(f"Unknown score dimension: {dimension}")
        setattr(self, dimension, int(min(max(round(value), 0), 100)))

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class VerificationResult:
    """Terminal record of a verification attempt"""
    combined_score: int
    scores: Dict[str, int]
    accepted: bool
    attacks_detected: Tuple[AttackType, ...]
    confidence: ConfidenceTier
    reason: ReasonCode
    challenges_completed: int
    challenges_required: int
    duration_seconds: float = 0.0
    timestamp: float = field(default_factory=time.time)


# --------------------------------------------------------------------------
# Analyzer results
# --------------------------------------------------------------------------

@dataclass
class PassiveResult:
    texture_score: int
    moire_score: int
    color_score: int
    edge_score: int
    temporal_score: int
    reflection_score: int
    overall_score: int
    is_real: bool
    issues: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DepthFeatures:
    """3D-consistency features of one dense landmark set"""
    eye_distance: float
    nose_protrusion: float
    nose_ratio: float
    z_spread: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class DepthResult:
    score: int
    is_real: bool
    depth_score: int = 0
    consistency_score: int = 0
    features: Optional[DepthFeatures] = None
    reason: Optional[str] = None


@dataclass
class AntiSpoofResult:
    photo_score: int
    screen_score: int
    mask_score: int
    deepfake_score: int
    cutout_score: int
    temporal_bonus: int
    overall_score: int
    is_real: bool
    attacks_detected: List[AttackType] = field(default_factory=list)
    confidence: ConfidenceTier = ConfidenceTier.LOW


@dataclass
class EyeReflectionResult:
    score: int
    specular_score: int
    consistency_score: int
    temporal_score: int
    is_real: bool
    issues: List[str] = field(default_factory=list)


@dataclass
class MicroExpressionResult:
    score: int
    is_real: bool
    naturalness: int = 50
    involuntary_score: int = 50
    coordination_score: int = 50
    micro_movements: int = 0
    issues: List[str] = field(default_factory=list)
    message: Optional[str] = None
