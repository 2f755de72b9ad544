from .data_models import (
    AttackType,
    ChallengeDescriptor,
    ChallengeState,
    ConfidenceTier,
    DetectionResult,
    LandmarkResolution,
    LandmarkSet,
    ReasonCode,
    SecurityScoreSet,
    VerificationResult,
)
