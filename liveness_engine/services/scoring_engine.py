"""
Scoring Engine for the final liveness decision
"""
import logging
import time
from dataclasses import replace
from typing import Iterable, Optional

from ..config import config
from ..models.data_models import (
    AttackType,
    ConfidenceTier,
    ReasonCode,
    SecurityScoreSet,
    VerificationResult,
)

logger = logging.getLogger(__name__)


class ScoringEngine:
    """
    Fuses the six security dimensions into one combined score and verdict.

    Weights are in percentage points and sum to 100:
        active 30, passive 25, anti_spoof 25, depth 10,
        eye_reflection 5, micro_expression 5

    An attempt is accepted only when every required challenge succeeded and
    the combined score reaches the acceptance threshold.
    """

    WEIGHTS = {
        "active": 30,
        "passive": 25,
        "anti_spoof": 25,
        "depth": 10,
        "eye_reflection": 5,
        "micro_expression": 5,
    }

    def __init__(self, threshold: Optional[int] = None):
        self.threshold = config.ACCEPTANCE_THRESHOLD if threshold is None else threshold

    @staticmethod
    def compute_active_score(completed: int, required: int) -> int:
        """Share of required challenges completed, as a rounded percentage."""
        if required <= 0:
            return 100
        completed = min(max(completed, 0), required)
        return (completed * 200 + required) // (required * 2)

    def combined_score(self, scores: SecurityScoreSet) -> int:
        """
        Weighted sum of all dimensions, rounded half up.

        Args:
            scores: Latest percentage per dimension

        Returns:
            int: Combined score in [0, 100]
        """
        values = scores.as_dict()
        weighted = sum(values[name] * weight for name, weight in self.WEIGHTS.items())
        return (weighted + 50) // 100

    def compute_final_score(
        self,
        scores: SecurityScoreSet,
        challenges_completed: int,
        challenges_required: int,
        attacks_detected: Iterable[AttackType] = (),
        reason: Optional[ReasonCode] = None,
        duration_seconds: float = 0.0
    ) -> VerificationResult:
        """
        Produce the verdict for a finished attempt.

        The active dimension is derived from the challenge counts; the other
        dimensions are taken as-is. ``reason`` forces a rejection for attempts
        that ended abnormally (time budget, model failure, cancellation).

        Args:
            scores: Latest readings of every analyzer
            challenges_completed: Challenges that succeeded
            challenges_required: Challenges the attempt needed
            attacks_detected: Attack labels from the anti-spoofing analyzer
            reason: Abnormal termination reason, if any
            duration_seconds: Attempt wall time

        Returns:
            VerificationResult: Frozen verdict record
        """
        final_scores = replace(scores)
        final_scores.update(
            "active", self.compute_active_score(challenges_completed, challenges_required)
        )
        combined = self.combined_score(final_scores)

        if reason is not None and reason != ReasonCode.ACCEPTED:
            accepted = False
        elif challenges_completed < challenges_required:
            reason = ReasonCode.CHALLENGES_INCOMPLETE
            accepted = False
        elif combined < self.threshold:
            reason = ReasonCode.SCORE_BELOW_THRESHOLD
            accepted = False
        else:
            reason = ReasonCode.ACCEPTED
            accepted = True

        result = VerificationResult(
            combined_score=combined,
            scores=final_scores.as_dict(),
            accepted=accepted,
            attacks_detected=tuple(dict.fromkeys(attacks_detected)),
            confidence=ConfidenceTier.from_score(combined),
            reason=reason,
            challenges_completed=challenges_completed,
            challenges_required=challenges_required,
            duration_seconds=duration_seconds,
            timestamp=time.time(),
        )
        logger.info(
            f"Final score {combined} ({'ACCEPTED' if accepted else 'REJECTED'}, "
            f"reason={reason.value})"
        )
        return result
