import threading
import time

import pytest

from conftest import FakeSource, make_face, wait_for
from facewatch.alerts import AlertDispatcher
from facewatch.detection_loop import DetectionLoop, LoopState
from facewatch.exceptions import CameraError, FaceWatchError
from facewatch.history import DetectionHistory
from facewatch.settings import DetectionSettings


class ScriptedRecognizer:
    kind = "recognition"

    def __init__(self, results=None, fail_after=None, delay=0.0):
        self.results = results if results is not None else [make_face()]
        self.fail_after = fail_after
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def recognize(self, frame):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            call = self.calls
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail_after is not None and call > self.fail_after:
                raise FaceWatchError("detector exploded")
            return list(self.results)
        finally:
            with self._lock:
                self.active -= 1


class BlockingRecognizer:
    kind = "recognition"

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.returned = threading.Event()

    def recognize(self, frame):
        self.entered.set()
        self.release.wait(5.0)
        self.returned.set()
        return [make_face()]


class BrokenReadSource(FakeSource):
    def read(self):
        raise CameraError("Failed to read frame")


def _loop(recognizer, speaker=None, source=None, **kwargs):
    source = source or FakeSource()
    dispatcher = AlertDispatcher(speaker, cooldown_seconds=5.0, highlight_id="ashal") if speaker else None
    loop = DetectionLoop(
        recognizer,
        DetectionSettings(confidence=0.5, muted=False),
        source_factory=lambda: source,
        dispatcher=dispatcher,
        history=DetectionHistory(),
        interval_ms=200,
        join_timeout=0.05,
        **kwargs,
    )
    return loop, source


def test_start_commits_detections_and_stop_clears_them(speaker):
    loop, source = _loop(ScriptedRecognizer(), speaker)
    assert loop.start() is True
    assert loop.state is LoopState.RUNNING
    assert loop.frame_size == (64, 48)

    assert wait_for(lambda: speaker.spoken)
    assert loop.last_frame().shape == (48, 64, 3)
    assert loop.history.entries()[0].startswith("ASHAL detected at ")
    assert speaker.spoken == ["Hello ASHAL, welcome back!"]

    assert loop.stop() is True
    assert loop.state is LoopState.IDLE
    assert loop.detections() == []
    assert loop.last_frame() is None
    assert loop.frame_size is None
    assert source.closed


def test_result_arriving_after_stop_is_discarded(speaker):
    recognizer = BlockingRecognizer()
    loop, _ = _loop(recognizer, speaker)
    loop.start()
    assert recognizer.entered.wait(3.0)

    loop.stop()
    recognizer.release.set()
    assert recognizer.returned.wait(3.0)
    time.sleep(0.1)

    assert loop.detections() == []
    assert loop.last_frame() is None
    assert len(loop.history) == 0
    assert speaker.spoken == []


def test_camera_failure_leaves_loop_idle():
    loop, _ = _loop(ScriptedRecognizer(), source=FakeSource(fail_open=True))
    with pytest.raises(CameraError):
        loop.start()
    assert loop.state is LoopState.IDLE
    assert loop.stop() is False


def test_unexpected_open_failure_is_reported_as_camera_error():
    class _ExplodingSource(FakeSource):
        def open(self):
            raise RuntimeError("driver crashed")

    loop, _ = _loop(ScriptedRecognizer(), source=_ExplodingSource())
    with pytest.raises(CameraError):
        loop.start()
    assert not loop.is_running


def test_detector_error_keeps_previous_detections():
    recognizer = ScriptedRecognizer(fail_after=1)
    loop, _ = _loop(recognizer)
    loop.start()
    try:
        assert wait_for(lambda: recognizer.calls >= 3)
        assert wait_for(lambda: len(loop.history) == 1)
        assert loop.is_running
        assert [face.id for face in loop.detections()] == ["ashal"]
        assert loop.last_frame() is not None
        assert len(loop.history) == 1
    finally:
        loop.stop()


def test_second_start_is_a_no_op():
    created = []

    def factory():
        created.append(FakeSource())
        return created[-1]

    loop = DetectionLoop(
        ScriptedRecognizer(),
        DetectionSettings(),
        source_factory=factory,
        interval_ms=200,
        join_timeout=0.05,
    )
    try:
        assert loop.start() is True
        assert loop.start() is False
        assert len(created) == 1
    finally:
        loop.stop()


def test_detector_calls_never_overlap():
    recognizer = ScriptedRecognizer(delay=0.25)
    loop, _ = _loop(recognizer)
    loop.start()
    try:
        assert wait_for(lambda: recognizer.calls >= 3, timeout=5.0)
    finally:
        loop.stop()
    assert recognizer.max_active == 1


def test_faces_below_confidence_are_filtered_out():
    recognizer = ScriptedRecognizer(results=[make_face(score=0.3), make_face("tom-cruise", "Tom Cruise", "celebrity", 0.8)])
    loop, _ = _loop(recognizer)
    loop.start()
    try:
        assert wait_for(lambda: loop.detections())
        assert [face.id for face in loop.detections()] == ["tom-cruise"]
    finally:
        loop.stop()


def test_repeated_read_failures_are_reported_once():
    errors = []
    loop, _ = _loop(
        ScriptedRecognizer(),
        source=BrokenReadSource(),
        read_fail_threshold=2,
        on_error=errors.append,
    )
    loop.start()
    try:
        assert wait_for(lambda: loop.read_fail_streak >= 3, timeout=5.0)
    finally:
        loop.stop()
    assert len(errors) == 1
    assert "read failed" in errors[0]


class FlakySource(FakeSource):
    def read(self):
        if self.reads == 0:
            self.reads += 1
            raise RuntimeError("driver hiccup")
        return super().read()


def test_unexpected_read_error_does_not_kill_the_loop():
    loop, source = _loop(ScriptedRecognizer(), source=FlakySource())
    loop.start()
    try:
        assert wait_for(lambda: loop.detections())
        assert loop.is_running
        assert source.reads >= 2
        assert loop.read_fail_streak == 0
    finally:
        loop.stop()


class SlowHistory(DetectionHistory):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()

    def record(self, faces, when=None):
        self.entered.set()
        time.sleep(0.2)
        return super().record(faces, when)


def test_alerts_of_a_committed_cycle_finish_before_stop_returns(speaker):
    history = SlowHistory()
    loop = DetectionLoop(
        ScriptedRecognizer(),
        DetectionSettings(confidence=0.5, muted=False),
        source_factory=FakeSource,
        dispatcher=AlertDispatcher(speaker, cooldown_seconds=5.0, highlight_id="ashal"),
        history=history,
        interval_ms=2000,
        join_timeout=0.05,
    )
    loop.start()
    assert history.entered.wait(3.0)
    loop.stop()
    spoken_at_stop = list(speaker.spoken)
    time.sleep(0.3)

    assert speaker.spoken == spoken_at_stop
    assert spoken_at_stop == ["Hello ASHAL, welcome back!"]
    assert len(history) == 1
