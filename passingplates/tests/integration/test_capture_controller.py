"""
Integration tests for the live capture loop.

Tests:
- Status sequence of a session
- Start failures
- Non-overlapping frame analysis
- Stop semantics and dropped results
- Periodic ticking
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeProvider
from passingplates.application.capture_controller import (
    CaptureController,
    normalize_progress,
)
from passingplates.core.events import EngineStatus, StatusEvent
from passingplates.domain.models import CaptureState
from passingplates.infrastructure.assets.loader import AssetLoadError
from passingplates.infrastructure.camera.opencv_stream import CameraPermissionError, VideoSink


async def wait_until(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.fixture
def selector(make_detection):
    async def ensure(on_status=None):
        on_status(StatusEvent(EngineStatus.LOADING, "Fetching detector model", 0.3))
        on_status(StatusEvent(EngineStatus.LOADING, "Retrying", 0.2))
        on_status(StatusEvent(EngineStatus.READY, "ALPR ready", 1.0))
        return "neural"

    async def analyze(frame, source, on_status=None):
        on_status(StatusEvent(EngineStatus.PROCESSING))
        on_status(StatusEvent(EngineStatus.READY))
        return [make_detection()]

    selector = MagicMock()
    selector.ensure_recognition_engine = AsyncMock(side_effect=ensure)
    selector.analyze_frame = AsyncMock(side_effect=analyze)
    return selector


@pytest.fixture
def recorder():
    statuses = []
    worker_events = []
    return statuses, worker_events


@pytest.fixture
def make_controller(selector, recorder):
    statuses, worker_events = recorder
    controllers = []

    def factory(provider=None, on_detections=None, sink=None, interval=60.0):
        controller = CaptureController(
            selector,
            provider if provider is not None else FakeProvider(),
            on_detections=on_detections,
            on_status=statuses.append,
            on_worker_state=worker_events.append,
            sink=sink,
            interval_seconds=interval,
        )
        controllers.append(controller)
        return controller

    yield factory

    for controller in controllers:
        if controller._interval_task is not None:
            controller._interval_task.cancel()


class TestStart:
    """Tests for starting a capture session."""

    @pytest.mark.asyncio
    async def test_status_sequence(self, make_controller, recorder, make_detection):
        statuses, _ = recorder
        received = []
        controller = make_controller(on_detections=received.append)

        await controller.start()

        assert [s.state for s in statuses] == [
            CaptureState.REQUESTING_PERMISSION,
            CaptureState.INITIALIZING,
            CaptureState.INITIALIZING,
            CaptureState.INITIALIZING,
            CaptureState.READY,
            CaptureState.SCANNING,
            CaptureState.PROCESSING,
            CaptureState.SCANNING,
        ]
        progress = [s.progress for s in statuses if s.state == CaptureState.INITIALIZING]
        assert progress == [0.1, 0.3, 0.3]
        assert [d.plate for d in received[0]] == ["AB12CDE"]
        assert controller.is_active() is True

        await controller.stop()

    @pytest.mark.asyncio
    async def test_worker_events_relayed(self, make_controller, recorder):
        _, worker_events = recorder
        controller = make_controller()

        await controller.start()

        assert [e.status for e in worker_events] == [
            EngineStatus.LOADING,
            EngineStatus.LOADING,
            EngineStatus.READY,
            EngineStatus.PROCESSING,
            EngineStatus.READY,
        ]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_no_camera_support(self, selector, recorder):
        statuses, _ = recorder
        controller = CaptureController(selector, None, on_status=statuses.append)

        await controller.start()

        assert statuses[-1].state == CaptureState.ERROR
        assert statuses[-1].message == "Camera access is not supported"
        assert controller.is_active() is False

    @pytest.mark.asyncio
    async def test_permission_denied(self, make_controller, recorder, selector):
        statuses, worker_events = recorder
        controller = make_controller(FakeProvider(error=CameraPermissionError("denied")))

        await controller.start()

        assert [s.state for s in statuses] == [CaptureState.REQUESTING_PERMISSION, CaptureState.ERROR]
        assert statuses[-1].message == "Unable to access the camera"
        assert worker_events[-1].status == EngineStatus.ERROR
        assert controller.is_active() is False
        selector.ensure_recognition_engine.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_engine_unavailable_releases_camera(self, make_controller, recorder, selector):
        statuses, _ = recorder
        provider = FakeProvider()
        selector.ensure_recognition_engine.side_effect = AssetLoadError("OCR engine", [])
        controller = make_controller(provider)

        await controller.start()

        assert statuses[-1].state == CaptureState.ERROR
        assert statuses[-1].message == "Unable to load OCR engine"
        assert provider.streams[0].stopped is True
        assert controller.is_active() is False

    @pytest.mark.asyncio
    async def test_start_while_active_is_noop(self, make_controller):
        provider = FakeProvider()
        controller = make_controller(provider)

        await controller.start()
        await controller.start()

        assert len(provider.streams) == 1
        await controller.stop()

    @pytest.mark.asyncio
    async def test_async_detection_callback(self, make_controller):
        on_detections = AsyncMock()
        controller = make_controller(on_detections=on_detections)

        await controller.start()

        on_detections.assert_awaited_once()
        await controller.stop()

    @pytest.mark.asyncio
    async def test_sink_attached_and_detached(self, make_controller):
        sink = MagicMock(spec=VideoSink)
        provider = FakeProvider()
        controller = make_controller(provider, sink=sink)

        await controller.start()
        sink.attach.assert_called_once_with(provider.streams[0])

        await controller.stop()
        sink.detach.assert_called_once()


class TestCaptureFrame:
    """Tests for frame analysis."""

    @pytest.mark.asyncio
    async def test_ticks_do_not_overlap(self, make_controller, selector, make_detection):
        gate = asyncio.Event()

        async def slow_analyze(frame, source, on_status=None):
            await gate.wait()
            return [make_detection()]

        selector.analyze_frame.side_effect = slow_analyze
        controller = make_controller()
        start = asyncio.create_task(controller.start())
        await wait_until(lambda: controller.processing)

        await controller.capture_frame()
        await controller.capture_frame()

        gate.set()
        await start
        assert selector.analyze_frame.await_count == 1
        assert controller.processing is False
        await controller.stop()

    @pytest.mark.asyncio
    async def test_results_dropped_after_stop(self, make_controller, selector, recorder, make_detection):
        statuses, _ = recorder
        gate = asyncio.Event()

        async def slow_analyze(frame, source, on_status=None):
            await gate.wait()
            on_status(StatusEvent(EngineStatus.READY))
            return [make_detection()]

        selector.analyze_frame.side_effect = slow_analyze
        received = []
        controller = make_controller(on_detections=received.append)
        start = asyncio.create_task(controller.start())
        await wait_until(lambda: controller.processing)

        await controller.stop()
        gate.set()
        await start

        assert received == []
        assert statuses[-1].state == CaptureState.IDLE
        assert controller.processing is False

    @pytest.mark.asyncio
    async def test_frame_failure_reported(self, make_controller, selector, recorder):
        _, worker_events = recorder
        selector.analyze_frame.side_effect = RuntimeError("engine exploded")
        controller = make_controller()

        await controller.start()

        assert worker_events[-1].status == EngineStatus.ERROR
        assert worker_events[-1].message == "Failed to process camera frame"
        assert controller.processing is False
        assert controller.is_active() is True
        await controller.stop()

    @pytest.mark.asyncio
    async def test_no_stream_is_noop(self, make_controller, selector):
        controller = make_controller()

        await controller.capture_frame()

        selector.analyze_frame.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_periodic_capture(self, make_controller, selector):
        controller = make_controller(interval=0.02)

        await controller.start()
        await wait_until(lambda: selector.analyze_frame.await_count >= 3)
        await controller.stop()
        calls = selector.analyze_frame.await_count
        await asyncio.sleep(0.1)

        assert selector.analyze_frame.await_count == calls


class TestStop:
    """Tests for stop."""

    @pytest.mark.asyncio
    async def test_stop_releases_camera(self, make_controller, recorder):
        statuses, _ = recorder
        provider = FakeProvider()
        controller = make_controller(provider)
        await controller.start()

        await controller.stop()

        assert provider.streams[0].stopped is True
        assert controller.is_active() is False
        assert statuses[-1].state == CaptureState.IDLE

    @pytest.mark.asyncio
    async def test_silent_stop(self, make_controller, recorder):
        statuses, _ = recorder
        controller = make_controller()
        await controller.start()
        count = len(statuses)

        await controller.stop(silent=True)

        assert len(statuses) == count

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, make_controller):
        provider = FakeProvider()
        controller = make_controller(provider)
        await controller.start()
        await controller.stop()

        await controller.start()

        assert len(provider.streams) == 2
        assert controller.is_active() is True
        await controller.stop()


class TestNormalizeProgress:
    """Tests for normalize_progress."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (0, 0.0),
            (0.5, 0.5),
            (1, 1.0),
            (40, 0.4),
            (100, 1.0),
            (250, 1.0),
            (-3, 0.0),
            (None, None),
            ("abc", None),
            (float("nan"), None),
            (True, None),
        ],
    )
    def test_normalize(self, value, expected):
        assert normalize_progress(value) == expected
