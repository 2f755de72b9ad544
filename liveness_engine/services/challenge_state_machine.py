"""
Challenge state machine driving one active-gesture challenge at a time.

Timers are expressed as explicit polling: the owning loop calls ``poll()``
on its tick and every operation returns the events it produced, so there are
no re-entrant callbacks.

    IDLE -> ACTIVE -> COMPLETED_SUCCESS | COMPLETED_FAILURE -> IDLE
"""
import logging
import time
from typing import Callable, Dict, List, Optional

from ..config import config
from ..models.data_models import (
    ChallengeDescriptor,
    ChallengeEvent,
    ChallengeOutcome,
    ChallengeResult,
    ChallengeSession,
    ChallengeStarted,
    ChallengeState,
    LandmarkSet,
    Progress,
)
from .challenge_engine import ChallengeEngine

logger = logging.getLogger(__name__)


class ChallengeStateMachine:
    """
    Issues challenges from a ChallengeEngine and verifies them against
    streamed landmark sets.
    """

    def __init__(
        self,
        engine: Optional[ChallengeEngine] = None,
        progress_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.engine = engine or ChallengeEngine()
        self.progress_interval = (
            config.PROGRESS_INTERVAL_SECONDS if progress_interval is None else progress_interval
        )
        self._clock = clock

        self.state = ChallengeState.IDLE
        self.session = ChallengeSession()
        self.history: List[ChallengeOutcome] = []
        self._last_progress_at: Optional[float] = None

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    @property
    def is_active(self) -> bool:
        return self.state == ChallengeState.ACTIVE

    @property
    def current_challenge(self) -> Optional[ChallengeDescriptor]:
        return self.session.descriptor if self.is_active else None

    def select_next(self) -> Optional[ChallengeDescriptor]:
        return self.engine.select_next()

    def start(
        self,
        descriptor: Optional[ChallengeDescriptor] = None,
        now: Optional[float] = None
    ) -> List[ChallengeEvent]:
        """
        Start a challenge, resetting all gesture counters and the baseline.

        Args:
            descriptor: Challenge to run; a fresh random one when omitted
            now: Start timestamp (defaults to the clock)

        Returns:
            Events: ChallengeStarted followed by an initial 0% Progress
        """
        if self.is_active:
            raise RuntimeError(
                f"Challenge {self.session.descriptor.challenge_id} is still active"
            )
        self.acknowledge()

        if descriptor is None:
            descriptor = self.select_next()
            if descriptor is None:
                logger.warning("Challenge pool is empty, nothing to start")
                return []

        now = self._now(now)
        self.session = ChallengeSession(descriptor=descriptor, start_time=now, active=True)
        self.state = ChallengeState.ACTIVE
        self._last_progress_at = now

        logger.info(f"Starting challenge: {descriptor.name}")
        return [
            ChallengeStarted(
                challenge_id=descriptor.challenge_id,
                name=descriptor.name,
                instruction=descriptor.instruction,
                icon=descriptor.icon,
            ),
            Progress(challenge_id=descriptor.challenge_id, percent=0.0),
        ]

    def progress(self, now: Optional[float] = None) -> float:
        """Elapsed share of the challenge duration as a percentage in [0, 100]."""
        if self.session.descriptor is None or self.session.start_time is None:
            return 0.0
        elapsed = self._now(now) - self.session.start_time
        duration = self.session.descriptor.duration_seconds
        if duration <= 0:
            return 100.0
        return min(max(elapsed / duration * 100.0, 0.0), 100.0)

    def submit_frame(
        self,
        landmarks: Optional[LandmarkSet],
        now: Optional[float] = None
    ) -> List[ChallengeEvent]:
        """
        Apply the active verifier to the newest landmark set.

        A successful verification completes the challenge immediately. A
        frame that arrives after the timeout fails the challenge instead.
        """
        if not self.is_active or landmarks is None:
            return []

        now = self._now(now)
        expired = self._check_timeout(now)
        if expired:
            return expired

        descriptor = self.session.descriptor
        try:
            verified = descriptor.verifier(self.session, landmarks)
        except Exception as e:
            logger.error(f"Verifier for {descriptor.challenge_id} failed: {e}")
            verified = False

        if verified:
            return self.complete(True, now)
        return []

    def poll(self, now: Optional[float] = None) -> List[ChallengeEvent]:
        """Emit due progress updates and fire the timeout when it has elapsed."""
        if not self.is_active:
            return []

        now = self._now(now)
        events: List[ChallengeEvent] = []
        if self._last_progress_at is None or now - self._last_progress_at >= self.progress_interval:
            events.append(Progress(
                challenge_id=self.session.descriptor.challenge_id,
                percent=self.progress(now),
            ))
            self._last_progress_at = now

        events.extend(self._check_timeout(now))
        return events

    def _check_timeout(self, now: float) -> List[ChallengeEvent]:
        elapsed = now - self.session.start_time
        if elapsed >= self.session.descriptor.duration_seconds:
            logger.info(f"Challenge {self.session.descriptor.name} timed out after {elapsed:.1f}s")
            return self.complete(False, now)
        return []

    def complete(self, success: bool, now: Optional[float] = None) -> List[ChallengeEvent]:
        """
        Record the outcome of the active challenge and deactivate it.

        Emits exactly one ChallengeResult per challenge; calling it again
        after completion is a no-op.
        """
        if not self.is_active or self.session.descriptor is None:
            return []

        now = self._now(now)
        descriptor = self.session.descriptor
        duration = max(now - self.session.start_time, 0.0)

        self.history.append(ChallengeOutcome(
            challenge_id=descriptor.challenge_id,
            name=descriptor.name,
            success=success,
            duration_seconds=duration,
        ))
        self.session.active = False
        self.state = (
            ChallengeState.COMPLETED_SUCCESS if success else ChallengeState.COMPLETED_FAILURE
        )

        logger.info(f"Challenge {descriptor.name}: {'SUCCESS' if success else 'FAILED'}")
        return [ChallengeResult(
            challenge_id=descriptor.challenge_id,
            success=success,
            duration_seconds=duration,
        )]

    def acknowledge(self) -> None:
        """Move a completed challenge back to IDLE."""
        if self.state in (ChallengeState.COMPLETED_SUCCESS, ChallengeState.COMPLETED_FAILURE):
            self.state = ChallengeState.IDLE

    def statistics(self) -> Dict[str, float]:
        total = len(self.history)
        successful = sum(1 for outcome in self.history if outcome.success)
        return {
            "total": total,
            "successful": successful,
            "failed": total - successful,
            "success_rate": round(successful / total * 100) if total else 0,
            "average_duration": (
                sum(o.duration_seconds for o in self.history) / total if total else 0.0
            ),
        }

    def reset(self) -> None:
        """Forget all challenges, outcomes and used-pool state."""
        self.state = ChallengeState.IDLE
        self.session = ChallengeSession()
        self.history = []
        self._last_progress_at = None
        self.engine.reset()
