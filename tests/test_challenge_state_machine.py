"""
Unit tests for ChallengeStateMachine
"""
import pytest

from liveness_engine.models.data_models import (
    ChallengeDescriptor,
    ChallengeResult,
    ChallengeStarted,
    ChallengeState,
    Progress,
)
from liveness_engine.services.challenge_engine import ChallengeEngine
from liveness_engine.services.challenge_state_machine import ChallengeStateMachine


def descriptor(challenge_id="wave", duration=10.0, verifier=None):
    return ChallengeDescriptor(
        challenge_id=challenge_id,
        name=challenge_id.title(),
        instruction=f"Please {challenge_id}",
        icon="*",
        duration_seconds=duration,
        verifier=verifier or (lambda session, landmarks: False),
    )


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestChallengeLifecycle:
    """Test state transitions and emitted events"""

    def setup_method(self):
        self.clock = FakeClock(100.0)
        self.engine = ChallengeEngine(descriptors=[descriptor()])
        self.machine = ChallengeStateMachine(
            engine=self.engine, progress_interval=0.1, clock=self.clock
        )

    def test_initial_state_is_idle(self):
        assert self.machine.state == ChallengeState.IDLE
        assert self.machine.current_challenge is None

    def test_start_emits_started_and_zero_progress(self):
        events = self.machine.start()

        assert events == [
            ChallengeStarted(challenge_id="wave", name="Wave", instruction="Please wave", icon="*"),
            Progress(challenge_id="wave", percent=0.0),
        ]
        assert self.machine.state == ChallengeState.ACTIVE
        assert self.machine.session.start_time == 100.0

    def test_start_while_active_raises(self):
        self.machine.start()
        with pytest.raises(RuntimeError):
            self.machine.start()

    def test_start_resets_counters(self):
        self.machine.start(now=0.0)
        self.machine.session.blink_count = 1
        self.machine.complete(False, now=1.0)

        self.machine.start(now=2.0)
        assert self.machine.session.blink_count == 0
        assert not self.machine.session.baseline.established

    def test_progress_cadence(self):
        self.machine.start(now=0.0)

        assert self.machine.poll(now=0.05) == []
        events = self.machine.poll(now=1.0)
        assert events == [Progress(challenge_id="wave", percent=pytest.approx(10.0))]

    def test_progress_is_clamped(self):
        self.machine.start(now=0.0)
        assert self.machine.progress(now=-5.0) == 0.0
        assert self.machine.progress(now=50.0) == 100.0

    def test_timeout_fails_challenge_once(self):
        self.machine.start(now=0.0)
        events = self.machine.poll(now=10.0)

        results = [e for e in events if isinstance(e, ChallengeResult)]
        assert results == [ChallengeResult(challenge_id="wave", success=False, duration_seconds=10.0)]
        assert self.machine.state == ChallengeState.COMPLETED_FAILURE
        assert self.machine.poll(now=11.0) == []

    def test_successful_frame_completes_immediately(self, coarse_face):
        engine = ChallengeEngine(descriptors=[descriptor(verifier=lambda s, l: True)])
        machine = ChallengeStateMachine(engine=engine, clock=self.clock)
        machine.start(now=0.0)

        events = machine.submit_frame(coarse_face(), now=2.5)

        assert events == [ChallengeResult(challenge_id="wave", success=True, duration_seconds=2.5)]
        assert machine.state == ChallengeState.COMPLETED_SUCCESS

    def test_frame_after_timeout_fails(self, coarse_face):
        engine = ChallengeEngine(descriptors=[descriptor(verifier=lambda s, l: True)])
        machine = ChallengeStateMachine(engine=engine, clock=self.clock)
        machine.start(now=0.0)

        events = machine.submit_frame(coarse_face(), now=12.0)

        assert events[0].success is False

    def test_complete_is_emitted_exactly_once(self):
        self.machine.start(now=0.0)

        assert len(self.machine.complete(True, now=1.0)) == 1
        assert self.machine.complete(True, now=2.0) == []
        assert self.machine.complete(False, now=3.0) == []
        assert len(self.machine.history) == 1

    def test_verifier_error_counts_as_not_verified(self, coarse_face):
        def broken(session, landmarks):
            raise ZeroDivisionError("bad geometry")

        engine = ChallengeEngine(descriptors=[descriptor(verifier=broken)])
        machine = ChallengeStateMachine(engine=engine, clock=self.clock)
        machine.start(now=0.0)

        assert machine.submit_frame(coarse_face(), now=1.0) == []
        assert machine.is_active

    def test_no_frame_is_ignored(self):
        self.machine.start(now=0.0)
        assert self.machine.submit_frame(None, now=1.0) == []

    def test_acknowledge_returns_to_idle(self):
        self.machine.start(now=0.0)
        self.machine.complete(False, now=1.0)
        self.machine.acknowledge()

        assert self.machine.state == ChallengeState.IDLE

    def test_empty_pool_starts_nothing(self):
        machine = ChallengeStateMachine(engine=ChallengeEngine(descriptors=[]))
        assert machine.start() == []
        assert machine.state == ChallengeState.IDLE


class TestStatistics:
    """Test outcome history statistics"""

    def test_statistics(self):
        clock = FakeClock()
        machine = ChallengeStateMachine(
            engine=ChallengeEngine(descriptors=[descriptor("a"), descriptor("b")]), clock=clock
        )
        machine.start(now=0.0)
        machine.complete(True, now=2.0)
        machine.start(now=3.0)
        machine.complete(False, now=7.0)

        stats = machine.statistics()

        assert stats["total"] == 2
        assert stats["successful"] == 1
        assert stats["failed"] == 1
        assert stats["success_rate"] == 50
        assert stats["average_duration"] == pytest.approx(3.0)

    def test_statistics_empty(self):
        stats = ChallengeStateMachine().statistics()
        assert stats["total"] == 0
        assert stats["success_rate"] == 0

    def test_reset_clears_history(self):
        machine = ChallengeStateMachine(engine=ChallengeEngine(descriptors=[descriptor()]))
        machine.start(now=0.0)
        machine.complete(True, now=1.0)
        machine.reset()

        assert machine.history == []
        assert machine.state == ChallengeState.IDLE
        assert machine.engine.used_ids == set()
