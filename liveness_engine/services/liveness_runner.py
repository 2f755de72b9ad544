"""
Asyncio loop driving a verification session from live frames
"""
import asyncio
import logging
from typing import Callable, List, Optional

import numpy as np

from ..config import config
from ..exceptions import ModelUnavailableError
from ..models.data_models import AttemptEvent, ReasonCode, VerificationResult
from .landmark_source import EvidenceSink, FrameSource, LandmarkSource, encode_evidence
from .session_manager import VerificationSession

logger = logging.getLogger(__name__)


class LivenessRunner:
    """
    Runs two periodic ticks against one VerificationSession:

    - detection tick: read a frame, detect faces, verify the active challenge
    - passive tick: dense landmarks plus the passive analyzer chain

    Model inference runs in worker threads via ``asyncio.to_thread``. A tick
    that finds its previous inference still in flight only advances the
    session timers. Events are published on ``self.events``.
    """

    def __init__(
        self,
        session: VerificationSession,
        frame_source: FrameSource,
        detector: LandmarkSource,
        landmarker: Optional[LandmarkSource] = None,
        evidence_sink: Optional[EvidenceSink] = None,
        detection_interval: Optional[float] = None,
        passive_interval: Optional[float] = None
    ):
        self.session = session
        self.frame_source = frame_source
        self.detector = detector
        self.landmarker = landmarker
        self.evidence_sink = evidence_sink
        self.detection_interval = (
            config.DETECTION_INTERVAL_SECONDS if detection_interval is None else detection_interval
        )
        self.passive_interval = (
            config.PASSIVE_INTERVAL_SECONDS if passive_interval is None else passive_interval
        )

        self.events: Optional["asyncio.Queue[AttemptEvent]"] = None
        self.latest_frame: Optional[np.ndarray] = None
        self._stopped: Optional[asyncio.Event] = None
        self._jobs = {}
        self._loops: List[asyncio.Task] = []

    @property
    def clock(self) -> Callable[[], float]:
        return self.session.clock

    async def run(self) -> Optional[VerificationResult]:
        """
        Start the session and run until it finishes or ``stop()`` is called.

        Returns:
            The attempt's VerificationResult, or None if stopped before a verdict
        """
        # Each attempt gets its own queue and frame, created inside the running loop
        self.events = asyncio.Queue()
        self.latest_frame = None
        self._jobs = {}
        self._stopped = asyncio.Event()
        self.session.start()
        self._emit(self.session.poll())

        self._loops = [
            asyncio.create_task(self._periodic(self.detection_interval, self._detection_tick)),
            asyncio.create_task(self._periodic(self.passive_interval, self._passive_tick)),
        ]
        try:
            await self._stopped.wait()
        finally:
            await self._shutdown()

        result = self.session.result
        if result is not None and self.evidence_sink is not None:
            self._store_evidence(result)
        return result

    def stop(self, cancel: bool = True) -> None:
        """Stop both ticks; a still-running attempt is cancelled."""
        if cancel and self.session.is_running:
            self._emit(self.session.cancel(self.clock()))
        if self._stopped is not None:
            self._stopped.set()

    async def _shutdown(self) -> None:
        # In-flight inference results are discarded once stopped
        tasks = self._loops + [job for job in self._jobs.values() if not job.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops = []
        self._jobs = {}

    async def _periodic(self, interval: float, tick) -> None:
        while not self._stopped.is_set():
            tick()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def _start_job(self, name: str, coro_factory) -> bool:
        job = self._jobs.get(name)
        if job is not None and not job.done():
            return False
        self._jobs[name] = asyncio.create_task(self._guarded(coro_factory()))
        return True

    async def _guarded(self, coro) -> None:
        try:
            await coro
        except ModelUnavailableError as e:
            logger.error(f"Landmark model unavailable: {e}")
            self._emit(self.session.fail(ReasonCode.MODEL_UNAVAILABLE, self.clock()))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in liveness tick: {e}")

    def _detection_tick(self) -> None:
        if not self._start_job("detection", self._detect):
            self._emit(self.session.poll(self.clock()))

    def _passive_tick(self) -> None:
        if not self._start_job("passive", self._analyze):
            self._emit(self.session.poll(self.clock()))

    async def _detect(self) -> None:
        frame = await asyncio.to_thread(self.frame_source.read)
        if self._stopped.is_set():
            return
        if frame is None:
            self._emit(self.session.poll(self.clock()))
            return

        self.latest_frame = frame
        detection = await asyncio.to_thread(self.detector.detect, frame)
        if self._stopped.is_set():
            return
        self._emit(self.session.on_detection(detection, self.clock()))

    async def _analyze(self) -> None:
        frame = self.latest_frame
        if frame is None:
            return

        dense = None
        if self.landmarker is not None:
            detection = await asyncio.to_thread(self.landmarker.detect, frame)
            if self._stopped.is_set():
                return
            dense = detection.landmarks
        self._emit(self.session.on_frame(frame, dense, self.clock()))

    def _emit(self, events: List[AttemptEvent]) -> None:
        if self.events is not None:
            for event in events:
                self.events.put_nowait(event)
        if self.session.is_finished and self._stopped is not None:
            self._stopped.set()

    def _store_evidence(self, result: VerificationResult) -> None:
        blob = encode_evidence(self.latest_frame) if self.latest_frame is not None else None
        if blob is None:
            return
        try:
            self.evidence_sink.store(blob, result)
        except Exception as e:
            logger.error(f"Failed to store verification evidence: {e}")
