"""
Session Manager for verification attempts.

A VerificationSession owns every piece of per-attempt state: the challenge
state machine, the five passive analyzers and the security score set. The
SessionManager allows exactly one attempt at a time.
"""
import logging
import time
from typing import Callable, List, Optional

import numpy as np

from ..config import config
from ..exceptions import AttemptInProgressError
from ..models.data_models import (
    AttackType,
    AttemptEvent,
    AttemptFinished,
    ChallengeDescriptor,
    ChallengeResult,
    DetectionResult,
    FaceStatus,
    LandmarkSet,
    ReasonCode,
    SecurityScoreSet,
    VerificationResult,
)
from .anti_spoofing import AntiSpoofingAnalyzer
from .challenge_state_machine import ChallengeStateMachine
from .depth_scorer import DepthScorer
from .eye_reflection import EyeReflectionAnalyzer
from .micro_expression import MicroExpressionAnalyzer
from .passive_analyzer import PassiveLivenessAnalyzer
from .scoring_engine import ScoringEngine

logger = logging.getLogger(__name__)


class VerificationSession:
    """
    One verification attempt.

    Drive it with three calls from the owning loop:
        on_detection(): every detection tick, with the newest face reading
        on_frame():     every passive tick, with the frame and dense landmarks
        poll():         whenever a tick has no fresh data

    Each call returns the events it produced. The attempt ends with exactly
    one AttemptFinished event carrying the VerificationResult.
    """

    def __init__(
        self,
        state_machine: Optional[ChallengeStateMachine] = None,
        scoring_engine: Optional[ScoringEngine] = None,
        required_challenges: Optional[int] = None,
        max_duration: Optional[float] = None,
        first_challenge_delay: Optional[float] = None,
        next_challenge_delay: Optional[float] = None,
        retry_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.clock = clock
        self.state_machine = state_machine or ChallengeStateMachine(clock=clock)
        self.scoring_engine = scoring_engine or ScoringEngine()

        self.required_challenges = (
            config.REQUIRED_CHALLENGES if required_challenges is None else required_challenges
        )
        self.max_duration = (
            config.MAX_ATTEMPT_DURATION_SECONDS if max_duration is None else max_duration
        )
        self.first_challenge_delay = (
            config.FIRST_CHALLENGE_DELAY_SECONDS if first_challenge_delay is None
            else first_challenge_delay
        )
        self.next_challenge_delay = (
            config.NEXT_CHALLENGE_DELAY_SECONDS if next_challenge_delay is None
            else next_challenge_delay
        )
        self.retry_delay = config.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

        self.depth_scorer = DepthScorer()
        self.passive_analyzer = PassiveLivenessAnalyzer()
        self.anti_spoofing = AntiSpoofingAnalyzer()
        self.eye_reflection = EyeReflectionAnalyzer()
        self.micro_expression = MicroExpressionAnalyzer()

        self._clear()

    def _clear(self) -> None:
        self.scores = SecurityScoreSet()
        self.attacks_detected: List[AttackType] = []
        self.challenges_completed = 0
        self.started_at: Optional[float] = None
        self.result: Optional[VerificationResult] = None
        self.face_count = 0
        self.suspended = False
        self.latest_dense: Optional[LandmarkSet] = None
        self.confidence_history: List[float] = []
        self._next_challenge_at: Optional[float] = None
        self._retry_descriptor: Optional[ChallengeDescriptor] = None

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    @property
    def is_running(self) -> bool:
        return self.started_at is not None and self.result is None

    @property
    def is_finished(self) -> bool:
        return self.result is not None

    @property
    def _sequence_complete(self) -> bool:
        return self._retry_descriptor is None and self.challenges_completed >= self.required_challenges

    def start(self, now: Optional[float] = None) -> None:
        """
        Begin the attempt. The first challenge is issued by the first poll
        after the first-challenge delay.
        """
        if self.is_running:
            raise AttemptInProgressError("Verification attempt already running")

        self.reset()
        now = self._now(now)
        self.started_at = now
        self._next_challenge_at = now + self.first_challenge_delay
        logger.info(
            f"Verification started: {self.required_challenges} challenges, "
            f"budget {self.max_duration:.0f}s"
        )

    def poll(self, now: Optional[float] = None) -> List[AttemptEvent]:
        """Advance timers: time budget, scheduled challenge starts, progress and timeouts."""
        if not self.is_running:
            return []

        now = self._now(now)
        if now - self.started_at >= self.max_duration:
            if self._sequence_complete:
                # Only the pause before finishing was left
                return self.finish(None, now)
            logger.warning(f"Verification time budget of {self.max_duration:.0f}s exhausted")
            return self.finish(ReasonCode.TIME_BUDGET_EXCEEDED, now)

        events: List[AttemptEvent] = []
        if self._next_challenge_at is not None and now >= self._next_challenge_at:
            events.extend(self._start_next_challenge(now))
            if not self.is_running:
                return events

        events.extend(self._handle(self.state_machine.poll(now), now))
        return events

    def on_detection(
        self,
        detection: Optional[DetectionResult],
        now: Optional[float] = None
    ) -> List[AttemptEvent]:
        """
        Process one detection tick.

        With exactly one face the active challenge verifier sees the newest
        landmarks, preferring the latest dense mesh over coarse keypoints.
        Two or more faces suspend verification until one face remains.
        """
        if not self.is_running:
            return []

        now = self._now(now)
        events = self._update_face_status(detection)

        if (detection is not None and detection.face_detected and not self.suspended
                and self.state_machine.is_active):
            self.confidence_history.append(detection.confidence)
            landmarks = self.latest_dense if self.latest_dense is not None else detection.landmarks
            events.extend(self._handle(self.state_machine.submit_frame(landmarks, now), now))

        if self.is_running:
            events.extend(self.poll(now))
        return events

    def _update_face_status(self, detection: Optional[DetectionResult]) -> List[AttemptEvent]:
        face_count = detection.face_count if detection is not None else 0
        suspended = detection is not None and detection.multiple_faces
        if face_count == self.face_count and suspended == self.suspended:
            return []

        if suspended and not self.suspended:
            logger.warning(f"{face_count} faces in view, verification suspended")
        elif self.suspended and not suspended:
            logger.info("Single face restored, verification resumed")

        self.face_count = face_count
        self.suspended = suspended
        return [FaceStatus(face_count=face_count, suspended=suspended)]

    def on_frame(
        self,
        frame: np.ndarray,
        dense: Optional[LandmarkSet] = None,
        now: Optional[float] = None
    ) -> List[AttemptEvent]:
        """
        Run one passive analysis cycle: depth, passive, anti-spoof, eye
        reflection, micro-expression, in that order.

        A failing analyzer is logged and its dimension keeps the last reading.
        """
        if not self.is_running:
            return []

        now = self._now(now)
        self.latest_dense = dense if dense is not None and dense.is_dense else None

        depth_result = self._run("depth", self.depth_scorer.score, self.latest_dense)
        if depth_result is not None:
            self.scores.update("depth", depth_result.score)

        passive_result = self._run("passive", self.passive_analyzer.analyze, frame)
        if passive_result is not None:
            self.scores.update("passive", passive_result.overall_score)

        anti_spoof_result = self._run(
            "anti_spoof", self.anti_spoofing.analyze, frame, depth_result, passive_result
        )
        if anti_spoof_result is not None:
            self.scores.update("anti_spoof", anti_spoof_result.overall_score)
            self.attacks_detected = list(anti_spoof_result.attacks_detected)

        if self.latest_dense is not None:
            eye_result = self._run(
                "eye_reflection", self.eye_reflection.analyze, frame, self.latest_dense
            )
            if eye_result is not None:
                self.scores.update("eye_reflection", eye_result.score)

            micro_result = self._run(
                "micro_expression", self.micro_expression.analyze, self.latest_dense
            )
            if micro_result is not None:
                self.scores.update("micro_expression", micro_result.score)

        return self.poll(now)

    @staticmethod
    def _run(name: str, analyze, *args):
        try:
            return analyze(*args)
        except Exception as e:
            logger.error(f"Error in {name} analysis: {e}")
            cached = getattr(analyze, "__self__", None)
            return getattr(cached, "last_result", None)

    def _start_next_challenge(self, now: float) -> List[AttemptEvent]:
        self._next_challenge_at = None
        if self._sequence_complete:
            return self.finish(None, now)

        descriptor = self._retry_descriptor
        self._retry_descriptor = None
        if descriptor is not None:
            logger.info(f"Retrying challenge: {descriptor.name}")
        return list(self.state_machine.start(descriptor, now))

    def _handle(self, challenge_events, now: float) -> List[AttemptEvent]:
        """Forward challenge events and schedule what comes after a result."""
        events: List[AttemptEvent] = []
        for event in challenge_events:
            events.append(event)
            if not isinstance(event, ChallengeResult):
                continue

            descriptor = self.state_machine.session.descriptor
            self.state_machine.acknowledge()
            if event.success:
                self.challenges_completed += 1
                self.scores.update(
                    "active",
                    self.scoring_engine.compute_active_score(
                        self.challenges_completed, self.required_challenges
                    ),
                )
                self._next_challenge_at = now + self.next_challenge_delay
            else:
                # The same challenge is offered again, not a new random one
                self._retry_descriptor = descriptor
                self._next_challenge_at = now + self.retry_delay
        return events

    def finish(self, reason: Optional[ReasonCode] = None, now: Optional[float] = None) -> List[AttemptEvent]:
        """
        End the attempt and compute the verdict.

        Args:
            reason: Abnormal termination reason; None for a normal finish

        Returns:
            A single AttemptFinished event, or nothing if already finished
        """
        if not self.is_running:
            return []

        now = self._now(now)
        if self.state_machine.is_active:
            self.state_machine.complete(False, now)
            self.state_machine.acknowledge()
        self._next_challenge_at = None
        self._retry_descriptor = None

        if self.confidence_history:
            logger.info(
                f"Average detection confidence: "
                f"{sum(self.confidence_history) / len(self.confidence_history):.2f}"
            )

        self.result = self.scoring_engine.compute_final_score(
            self.scores,
            challenges_completed=self.challenges_completed,
            challenges_required=self.required_challenges,
            attacks_detected=self.attacks_detected,
            reason=reason,
            duration_seconds=max(now - self.started_at, 0.0),
        )
        return [AttemptFinished(result=self.result)]

    def cancel(self, now: Optional[float] = None) -> List[AttemptEvent]:
        return self.finish(ReasonCode.CANCELLED, now)

    def fail(self, reason: ReasonCode, now: Optional[float] = None) -> List[AttemptEvent]:
        """Terminate the attempt because of an attempt-level failure."""
        logger.error(f"Verification terminated: {reason.value}")
        return self.finish(reason, now)

    def reset(self) -> None:
        """Drop all attempt state so the session can be started again."""
        self.state_machine.reset()
        self.depth_scorer.reset()
        self.passive_analyzer.reset()
        self.anti_spoofing.reset()
        self.eye_reflection.reset()
        self.micro_expression.reset()
        self._clear()


class SessionManager:
    """
    Hands out verification sessions, one at a time.

    A new attempt can only begin once the previous one has been released.
    """

    def __init__(self, session_factory: Callable[..., VerificationSession] = VerificationSession, **session_kwargs):
        self.session_factory = session_factory
        self.session_kwargs = session_kwargs
        self.current: Optional[VerificationSession] = None

    def begin(self, now: Optional[float] = None) -> VerificationSession:
        """
        Create and start a new attempt.

        Raises:
            AttemptInProgressError: If the previous attempt was not released
        """
        if self.current is not None:
            state = "running" if self.current.is_running else "finished but not reset"
            raise AttemptInProgressError(f"Previous verification attempt is {state}")

        session = self.session_factory(**self.session_kwargs)
        session.start(now)
        self.current = session
        return session

    def cancel(self, now: Optional[float] = None) -> List[AttemptEvent]:
        if self.current is None:
            return []
        return self.current.cancel(now)

    def release(self) -> Optional[VerificationResult]:
        """
        Stop and fully reset the current attempt.

        Returns:
            The finished attempt's result, if it had one
        """
        if self.current is None:
            return None
        session = self.current
        if session.is_running:
            session.cancel()
        result = session.result
        session.reset()
        self.current = None
        return result
