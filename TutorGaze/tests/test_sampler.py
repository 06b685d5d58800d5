import asyncio
import threading
import time
from datetime import datetime, timedelta

import pytest

from tutorgaze_attention.capture import AsyncFrameSource
from tutorgaze_attention.config import SamplerConfig
from tutorgaze_attention.errors import DescriptorLookupError, DetectorUnavailable, SessionStateError
from tutorgaze_attention.logger import SampleLogger
from tutorgaze_attention.sampler import ACTIVE, STOPPED, AttentionSampler
from tutorgaze_attention.types import Landmark


OPEN_FACE = [
    Landmark(0.40, 0.50, name="left_eye_0"),
    Landmark(0.43, 0.485, name="left_eye_1"),
    Landmark(0.47, 0.485, name="left_eye_2"),
    Landmark(0.50, 0.50, name="left_eye_3"),
    Landmark(0.47, 0.515, name="left_eye_4"),
    Landmark(0.43, 0.515, name="left_eye_5"),
    Landmark(0.5, 0.6, 0.0, name="nose_tip"),
]
TURNED_FACE = OPEN_FACE[:-1] + [Landmark(0.5, 0.6, 0.4, name="nose_tip")]


class FakeFrames:
    def __init__(self):
        self.served = 0

    async def next_frame(self):
        self.served += 1
        await asyncio.sleep(0)
        return f"frame-{self.served}"


class FakeSource:
    """Returns scripted detections in order, then repeats the last one."""

    def __init__(self, detections=None):
        self.detections = list(detections or [(True, OPEN_FACE)])
        self.calls = 0
        self.closed = False

    def detect_face(self, frame):
        result = self.detections[min(self.calls, len(self.detections) - 1)]
        self.calls += 1
        return result

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=datetime(2024, 5, 1, 14, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_sampler(source=None, factory=None, **kwargs):
    source = source or FakeSource()
    config = kwargs.pop("config", SamplerConfig(frame_timeout=0.5, detect_timeout=0.5, idle_delay=0.001, debug_frames=0))
    sampler = AttentionSampler(factory or (lambda: source), FakeFrames(), config=config, **kwargs)
    return sampler, source


async def wait_for_samples(sampler, count, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while len(sampler.session.samples) < count:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"only {len(sampler.session.samples)} samples collected")
        await asyncio.sleep(0.005)


def test_session_collects_samples_and_reports():
    async def scenario():
        clock = FakeClock()
        sampler, source = make_sampler(clock=clock)
        session = await sampler.start_session()
        assert sampler.state == ACTIVE
        await wait_for_samples(sampler, 5)

        reading = sampler.current_state()
        assert reading.label == "attentive"
        assert reading.attention_score == pytest.approx(1.0)
        assert reading.descriptor.name == "Attentive"

        clock.advance(minutes=10)
        stopped = await sampler.stop_session()
        assert stopped is session
        assert sampler.state == STOPPED
        assert sampler.current_state() is None
        assert source.closed

        report = sampler.generate_report()
        sampler.close()
        return report, session

    report, session = asyncio.run(scenario())
    assert report.average_attention_percentage == pytest.approx(100.0)
    assert report.attentive_minutes == pytest.approx(10.0)
    assert report.distracted_minutes == pytest.approx(0.0)
    assert report.emotion_breakdown["attentive"] == report.total_samples
    assert session.samples == []


def test_no_samples_after_stop():
    async def scenario():
        sampler, _ = make_sampler()
        await sampler.start_session()
        await wait_for_samples(sampler, 3)
        session = await sampler.stop_session()
        count = len(session.samples)
        for _ in range(20):
            await asyncio.sleep(0.005)
        sampler.close()
        return count, len(session.samples)

    before, after = asyncio.run(scenario())
    assert before >= 3
    assert after == before


def test_frames_without_a_face_append_nothing():
    async def scenario():
        source = FakeSource([(False, []), (False, []), (False, []), (True, TURNED_FACE)])
        sampler, _ = make_sampler(source=source)
        await sampler.start_session()
        await wait_for_samples(sampler, 1)
        session = await sampler.stop_session()
        sampler.close()
        return session, source

    session, source = asyncio.run(scenario())
    assert source.calls >= 4
    assert len(session.samples) <= source.calls - 3
    assert session.samples[0].label == "neutral"
    assert session.samples[0].confidence == pytest.approx(0.6)
    assert session.samples[0].attention_score == pytest.approx(0.7)


def test_detector_unavailable_leaves_sampler_stopped():
    def broken_factory():
        raise RuntimeError("no webcam model")

    async def scenario():
        sampler, _ = make_sampler(factory=broken_factory)
        with pytest.raises(DetectorUnavailable):
            await sampler.start_session()
        state = sampler.state
        session = sampler.session
        sampler.close()
        return state, session

    state, session = asyncio.run(scenario())
    assert state == STOPPED
    assert session is None


def test_start_can_be_retried_after_failure():
    attempts = {"n": 0}
    source = FakeSource()

    def flaky_factory():
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise DetectorUnavailable("model still downloading")
        return source

    async def scenario():
        sampler, _ = make_sampler(factory=flaky_factory)
        with pytest.raises(DetectorUnavailable):
            await sampler.start_session()
        session = await sampler.start_session()
        state = sampler.state
        await sampler.stop_session()
        sampler.close()
        return session, state

    session, state = asyncio.run(scenario())
    assert session is not None
    assert state == ACTIVE
    assert attempts["n"] == 2


def test_start_and_stop_are_idempotent():
    async def scenario():
        sampler, _ = make_sampler()
        first = await sampler.start_session()
        second = await sampler.start_session()
        stopped = await sampler.stop_session()
        again = await sampler.stop_session()
        sampler.close()
        return first, second, stopped, again

    first, second, stopped, again = asyncio.run(scenario())
    assert first is second
    assert stopped is first
    assert again is first


def test_in_flight_detection_is_discarded_after_stop():
    release = threading.Event()
    entered = threading.Event()

    class SlowSource(FakeSource):
        def detect_face(self, frame):
            entered.set()
            release.wait(timeout=2)
            return True, OPEN_FACE

    async def scenario():
        config = SamplerConfig(frame_timeout=0.5, detect_timeout=5.0, stop_timeout=2.0, debug_frames=0)
        sampler, _ = make_sampler(source=SlowSource(), config=config)
        await sampler.start_session()
        while not entered.is_set():
            await asyncio.sleep(0.005)
        stopping = asyncio.ensure_future(sampler.stop_session())
        await asyncio.sleep(0.01)
        release.set()
        session = await stopping
        sampler.close()
        return session

    session = asyncio.run(scenario())
    assert session.samples == []


def test_stalled_detector_skips_frame_and_continues():
    class StallingSource(FakeSource):
        def detect_face(self, frame):
            self.calls += 1
            if self.calls == 1:
                threading.Event().wait(0.2)
            return True, OPEN_FACE

    async def scenario():
        config = SamplerConfig(frame_timeout=0.5, detect_timeout=0.05, debug_frames=0)
        sampler, source = make_sampler(source=StallingSource(), config=config)
        await sampler.start_session()
        await wait_for_samples(sampler, 2)
        session = await sampler.stop_session()
        sampler.close()
        return session, source

    session, source = asyncio.run(scenario())
    assert len(session.samples) >= 2
    assert len(session.samples) < source.calls


def test_detector_errors_are_absorbed():
    class FlakySource(FakeSource):
        def detect_face(self, frame):
            self.calls += 1
            if self.calls % 2:
                raise RuntimeError("bad frame")
            return True, OPEN_FACE

    async def scenario():
        sampler, _ = make_sampler(source=FlakySource())
        await sampler.start_session()
        await wait_for_samples(sampler, 3)
        state = sampler.state
        await sampler.stop_session()
        sampler.close()
        return state

    assert asyncio.run(scenario()) == ACTIVE


def test_descriptor_violation_fails_fast(monkeypatch):
    import tutorgaze_attention.sampler as sampler_module

    monkeypatch.setattr(sampler_module, "classify_state", lambda score: ("bored", 1.0))

    async def scenario():
        sampler, _ = make_sampler()
        await sampler.start_session()
        for _ in range(100):
            if sampler.state == STOPPED:
                break
            await asyncio.sleep(0.005)
        state = sampler.state
        try:
            await sampler.stop_session()
        finally:
            sampler.close()
        return state

    with pytest.raises(DescriptorLookupError):
        asyncio.run(scenario())


def test_listeners_receive_samples_and_errors_are_contained():
    received = []

    def good(sample, reading):
        received.append((sample.label, reading.descriptor.color))

    def bad(sample, reading):
        raise ValueError("ui went away")

    async def scenario():
        sampler, _ = make_sampler()
        sampler.add_listener(bad)
        sampler.add_listener(good)
        await sampler.start_session()
        await wait_for_samples(sampler, 2)
        await sampler.stop_session()
        sampler.remove_listener(good)
        sampler.close()

    asyncio.run(scenario())
    assert len(received) >= 2
    assert received[0] == ("attentive", "green")


def test_samples_are_logged(tmp_path):
    logger = SampleLogger(str(tmp_path / "log.csv"), conventions="eye_aspect_ratio")

    async def scenario():
        sampler, _ = make_sampler(sample_logger=logger)
        await sampler.start_session()
        await wait_for_samples(sampler, 3)
        session = await sampler.stop_session()
        sampler.close()
        return session

    session = asyncio.run(scenario())
    df = logger.to_dataframe()
    assert len(df) == len(session.samples)
    assert set(df["label"]) == {"attentive"}
    assert set(df["session_id"]) == {session.session_id}


def test_report_requires_a_stopped_session():
    async def scenario():
        sampler, _ = make_sampler()
        with pytest.raises(SessionStateError):
            sampler.generate_report()
        await sampler.start_session()
        with pytest.raises(SessionStateError):
            sampler.generate_report()
        await sampler.stop_session()
        report = sampler.generate_report()
        with pytest.raises(SessionStateError):
            sampler.generate_report()
        sampler.close()
        return report

    assert asyncio.run(scenario()) is not None


def test_process_landmarks_ignored_when_stopped():
    sampler, _ = make_sampler()
    assert sampler.process_landmarks(OPEN_FACE) is None
    sampler.close()


def test_camera_slower_than_frame_timeout_still_samples():
    class SlowCamera:
        def __init__(self):
            self.grabs = 0

        def grab(self):
            time.sleep(0.1)
            self.grabs += 1
            return f"frame-{self.grabs}"

        def close(self):
            pass

    async def scenario():
        camera = SlowCamera()
        sampler = AttentionSampler(
            lambda: FakeSource(),
            AsyncFrameSource(camera),
            config=SamplerConfig(debug_frames=0),
        )
        await sampler.start_session()
        await wait_for_samples(sampler, 3, timeout=3.0)
        session = await sampler.stop_session()
        sampler.close()
        return session, camera

    session, camera = asyncio.run(scenario())
    assert len(session.samples) >= 3
    assert camera.grabs >= len(session.samples)


def test_stalled_camera_is_reported(capsys):
    class FrozenFrames:
        async def next_frame(self):
            await asyncio.sleep(10)

    async def scenario():
        config = SamplerConfig(frame_timeout=0.001, idle_delay=0.001, stop_timeout=1.0, debug_frames=0)
        sampler = AttentionSampler(lambda: FakeSource(), FrozenFrames(), config=config)
        await sampler.start_session()
        await asyncio.sleep(0.3)
        session = await sampler.stop_session()
        sampler.close()
        return session

    session = asyncio.run(scenario())
    assert session.samples == []
    assert "No frame from the camera" in capsys.readouterr().out


def test_start_after_stop_during_loading_begins_a_new_session():
    gate = threading.Event()
    sources = []

    def slow_factory():
        gate.wait(timeout=2)
        source = FakeSource()
        sources.append(source)
        return source

    async def scenario():
        sampler, _ = make_sampler(factory=slow_factory)
        first = asyncio.ensure_future(sampler.start_session())
        await asyncio.sleep(0.02)
        await sampler.stop_session()
        second = asyncio.ensure_future(sampler.start_session())
        await asyncio.sleep(0.02)
        gate.set()
        first_result = await first
        second_result = await second
        state = sampler.state
        await wait_for_samples(sampler, 1)
        await sampler.stop_session()
        sampler.close()
        return first_result, second_result, state

    first, second, state = asyncio.run(scenario())
    assert first is None
    assert second is not None
    assert state == ACTIVE
    assert len(sources) == 2
    assert sources[0].closed
    assert sources[0].calls == 0
    assert sources[1].calls > 0
