import asyncio
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .config import SamplerConfig
from .errors import DetectorUnavailable, SessionStateError
from .logger import SampleLogger
from .report import summarize_session
from .scoring import AttentionScorer
from .states import classify_state, describe_state
from .types import AttentionReading, Landmark, Report, Sample, Session


STOPPED = "stopped"
STARTING = "starting"
ACTIVE = "active"

SampleListener = Callable[[Sample, AttentionReading], None]

# Consecutive frame timeouts before the camera is reported as stalled
FRAME_STALL_WARNING = 30


def new_session_id(start: datetime) -> str:
    return f"{start:%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


class AttentionSampler:
    """
    Ties together frame capture, landmark detection, scoring, classification and logging.

    While a session is active a single asyncio task waits for each frame, hands it to
    the landmark source and, when a face was found, appends one Sample to the session.
    Blocking detector work runs on one worker thread, so at most one detection is in
    flight and only the loop task ever appends to the history.

    The landmark source factory is called on every start; it may raise
    DetectorUnavailable (or anything else, which is wrapped into it).
    """

    def __init__(
        self,
        landmark_source_factory: Callable[[], object],
        frame_source,
        scorer: Optional[AttentionScorer] = None,
        config: Optional[SamplerConfig] = None,
        sample_logger: Optional[SampleLogger] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or SamplerConfig()
        self.landmark_source_factory = landmark_source_factory
        self.frame_source = frame_source
        self.scorer = scorer or AttentionScorer(self.config.conventions)
        self.sample_logger = sample_logger
        self.clock = clock

        self.state = STOPPED
        self.session: Optional[Session] = None
        self.current: Optional[AttentionReading] = None

        self._landmark_source = None
        self._task: Optional[asyncio.Task] = None
        self._starting: Optional[asyncio.Future] = None
        self._start_generation = 0
        self._pending_frame: Optional[asyncio.Future] = None
        self._frame_timeouts = 0
        self._listeners: List[SampleListener] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="landmarks")
        self._frame_index = 0

    # ----------------------------
    # Session control
    # ----------------------------

    async def start_session(self) -> Optional[Session]:
        """
        Acquire the landmark source and begin sampling. Returns the running session
        if one is already active. Returns None when stop_session() was called while
        the detector was still loading.
        """
        if self.state == ACTIVE:
            return self.session
        if self._starting is None:
            self._starting = asyncio.ensure_future(self._start())
        starting = self._starting
        try:
            return await asyncio.shield(starting)
        finally:
            if starting.done() and self._starting is starting:
                self._starting = None

    async def stop_session(self) -> Optional[Session]:
        """
        Stop sampling. No sample is appended once this is called; a detection
        already in flight is allowed to finish and its result is dropped.
        Re-raises an error that crashed the sampling loop.
        """
        if self.state == STOPPED and self._task is None:
            return self.session

        was_active = self.state == ACTIVE
        self.state = STOPPED
        self.current = None
        # A start still loading the detector is abandoned; the next start_session() begins afresh
        self._start_generation += 1
        self._starting = None
        session = self.session
        if was_active and session is not None:
            session.close(self.clock())
            print(f"[Sampler] Session {session.session_id} stopped with {len(session.samples)} samples")

        task, self._task = self._task, None
        loop_error = None
        if task is not None and task is not asyncio.current_task():
            done, _ = await asyncio.wait({task}, timeout=self.config.stop_timeout)
            if not done:
                print("[Sampler] Sampling loop did not stop in time; cancelling it")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            elif not task.cancelled():
                loop_error = task.exception()

        await self._release_source()
        if loop_error is not None:
            raise loop_error
        return session

    def current_state(self) -> Optional[AttentionReading]:
        return self.current

    def generate_report(self) -> Report:
        """Reduce the last stopped session to a Report and drop it."""
        if self.state != STOPPED or self.session is None:
            raise SessionStateError("No stopped session to report on")
        if self.session.end is None:
            raise SessionStateError(f"Session {self.session.session_id} was never closed")
        session = self.session
        report = summarize_session(session)
        self.session = None
        print(
            f"[Sampler] Report for {session.session_id}: "
            f"{report.average_attention_percentage:.1f}% attentive over {report.total_samples} samples"
        )
        return report

    def add_listener(self, callback: SampleListener):
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: SampleListener):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def close(self):
        self._executor.shutdown(wait=False)

    # ----------------------------
    # Per-frame processing
    # ----------------------------

    def process_landmarks(self, landmarks: Sequence[Landmark], session: Optional[Session] = None) -> Optional[Sample]:
        """Score, classify and record one detected face. Returns None when not sampling."""
        session = session or self.session
        if not self._sampling(session):
            return None

        score = self.scorer.score(landmarks)
        label, confidence = classify_state(score)
        descriptor = describe_state(label)

        sample = Sample(label=label, confidence=confidence, timestamp=self.clock(), attention_score=score)
        session.record(sample)
        reading = AttentionReading(label=label, confidence=confidence, attention_score=score, descriptor=descriptor)
        self.current = reading

        self._frame_index += 1
        if self._frame_index <= self.config.debug_frames:
            print(
                f"[Sampler][Frame {self._frame_index}] score={score:.2f} "
                f"state={descriptor.name} confidence={confidence:.2f}"
            )

        if self.sample_logger is not None:
            self.sample_logger.log_sample(session, sample)
        self._notify(sample, reading)
        return sample

    # ----------------------------
    # Internal helpers
    # ----------------------------

    def _sampling(self, session: Optional[Session]) -> bool:
        return self.state == ACTIVE and session is not None and self.session is session and session.active

    async def _start(self) -> Optional[Session]:
        generation = self._start_generation
        self.state = STARTING
        loop = asyncio.get_running_loop()
        try:
            source = await loop.run_in_executor(self._executor, self.landmark_source_factory)
            if source is None:
                raise DetectorUnavailable("Landmark source factory returned no detector")
        except Exception as exc:
            if generation != self._start_generation:
                print(f"[Sampler] Abandoned start failed: {exc}")
                return None
            self.state = STOPPED
            print(f"[Sampler] Could not start session: {exc}")
            if isinstance(exc, DetectorUnavailable):
                raise
            raise DetectorUnavailable(f"Could not acquire landmark source: {exc}") from exc

        if generation != self._start_generation or self.state != STARTING:
            print("[Sampler] Stop requested while the detector was loading; not starting")
            await self._close_source(source)
            return None

        if self.session is not None and self.session.samples:
            print(f"[Sampler] Discarding unreported session {self.session.session_id}")

        start = self.clock()
        session = Session(session_id=new_session_id(start), start=start)
        self._landmark_source = source
        self.session = session
        self.current = None
        self._frame_index = 0
        self._frame_timeouts = 0
        self.state = ACTIVE
        self._task = asyncio.create_task(self._run(session))
        print(f"[Sampler] Session {session.session_id} started (conventions={self.scorer.name})")
        return session

    async def _run(self, session: Session):
        try:
            while self._sampling(session):
                frame = await self._next_frame()
                if not self._sampling(session):
                    break
                if frame is None:
                    await asyncio.sleep(self.config.idle_delay)
                    continue

                detection = await self._detect(frame)
                if not self._sampling(session):
                    # Stopped while the detector was busy; drop its result
                    break
                if detection is None:
                    continue
                try:
                    found, landmarks = detection
                except (TypeError, ValueError):
                    print(f"[Sampler] Landmark source returned malformed result: {detection!r}")
                    continue
                if found:
                    self.process_landmarks(landmarks, session)
                await asyncio.sleep(0)
        except Exception as exc:
            print(f"[Sampler] Sampling loop crashed: {exc}")
            traceback.print_exc()
            if self.session is session and self.state == ACTIVE:
                self.state = STOPPED
                self.current = None
                session.close(self.clock())
            raise
        finally:
            self._drop_pending_frame()

    async def _next_frame(self):
        """
        Wait up to frame_timeout for the next frame. A grab that takes longer is
        kept and awaited again on the next call, so a slow camera still delivers.
        """
        if self._pending_frame is None:
            self._pending_frame = asyncio.ensure_future(self.frame_source.next_frame())
        pending = self._pending_frame
        try:
            frame = await asyncio.wait_for(asyncio.shield(pending), timeout=self.config.frame_timeout)
        except asyncio.TimeoutError:
            self._frame_timeouts += 1
            if self._frame_timeouts == FRAME_STALL_WARNING:
                print(
                    f"[Sampler] No frame from the camera for {self._frame_timeouts} waits "
                    f"of {self.config.frame_timeout:.3f}s; is it still connected?"
                )
            return None
        except Exception as exc:
            self._pending_frame = None
            print(f"[Sampler] Frame source error: {exc}")
            return None
        self._pending_frame = None
        self._frame_timeouts = 0
        return frame

    def _drop_pending_frame(self):
        pending, self._pending_frame = self._pending_frame, None
        if pending is None:
            return
        if not pending.done():
            pending.cancel()
        elif not pending.cancelled():
            # Mark a late failure as retrieved
            pending.exception()

    async def _detect(self, frame):
        source = self._landmark_source
        if source is None:
            return None
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, source.detect_face, frame),
                timeout=self.config.detect_timeout,
            )
        except asyncio.TimeoutError:
            print(f"[Sampler] Landmark detection took longer than {self.config.detect_timeout:.2f}s; skipping frame")
        except Exception as exc:
            print(f"[Sampler] Landmark detection error: {exc}")
        return None

    async def _release_source(self):
        source, self._landmark_source = self._landmark_source, None
        await self._close_source(source)

    async def _close_source(self, source):
        close = getattr(source, "close", None)
        if close is None:
            return
        loop = asyncio.get_running_loop()
        try:
            # Queued behind any in-flight detection on the same worker
            await asyncio.wait_for(loop.run_in_executor(self._executor, close), timeout=self.config.stop_timeout)
        except asyncio.TimeoutError:
            print("[Sampler] Landmark source is still busy; it will be closed when the detection finishes")
        except Exception as exc:
            print(f"[Sampler] Error closing landmark source: {exc}")

    def _notify(self, sample: Sample, reading: AttentionReading):
        for callback in list(self._listeners):
            try:
                callback(sample, reading)
            except Exception as exc:
                print(f"[Sampler] Listener error: {exc}")
