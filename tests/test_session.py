"""Tests for the scan session state machine."""

import asyncio

import pytest

from conftest import FakeBackend, FakeVisionClient, RecordingNotifier
from food_scan.camera import DeviceAccessManager, Facing, OutcomeKind
from food_scan.capture import FrameCapturer
from food_scan.errors import (
    ConfigurationError,
    NoDeviceError,
    PermissionDeniedError,
    RemoteServiceError,
    ResponseParseError,
)
from food_scan.fallback import PLACEHOLDER_VALUES, UNKNOWN_FOOD
from food_scan.session import ResultSource, ScanSession, ScanState
from food_scan.vision_client import AnthropicVisionClient


def _session(backend=None, vision=None, notifier=None):
    backend = backend or FakeBackend()
    devices = DeviceAccessManager(backend=backend)
    vision = vision or FakeVisionClient(devices=devices)
    if isinstance(vision, FakeVisionClient):
        vision.devices = devices
    guides = []
    session = ScanSession(
        devices=devices,
        capturer=FrameCapturer(),
        vision=vision,
        notifier=notifier or RecordingNotifier(),
        on_permission_guide=guides.append,
        platform="macos",
    )
    return session, backend, devices, vision, guides


class TestStart:
    @pytest.mark.asyncio
    async def test_mount_then_start_goes_live(self, session, devices, notifier):
        await session.mount()
        assert session.state is ScanState.IDLE
        assert session.snapshot.available is True

        assert await session.start() is True

        assert session.state is ScanState.LIVE
        assert devices.is_live
        assert notifier.levels() == ["success"]

    @pytest.mark.asyncio
    async def test_start_without_camera_is_noop(self):
        session, backend, devices, _, _ = _session(backend=FakeBackend(devices=[]))
        states = []
        session.subscribe(lambda snap: states.append(snap.state))

        await session.mount()
        assert session.snapshot.available is False

        assert await session.start() is False
        assert session.state is ScanState.IDLE
        assert ScanState.REQUESTING not in states
        assert backend.opened == []

    @pytest.mark.asyncio
    async def test_start_before_mount_is_noop(self, session, backend):
        assert await session.start() is False
        assert session.state is ScanState.IDLE

    @pytest.mark.asyncio
    async def test_start_passes_through_requesting(self, session):
        states = []
        session.subscribe(lambda snap: states.append(snap.state))
        await session.mount()

        await session.start()

        assert states[-2:] == [ScanState.REQUESTING, ScanState.LIVE]

    @pytest.mark.asyncio
    async def test_start_while_live_is_noop(self, session, backend):
        await session.mount()
        await session.start()

        assert await session.start() is False
        assert len(backend.opened) == 1

    @pytest.mark.asyncio
    async def test_uses_environment_facing_by_default(self, session, devices):
        await session.mount()
        await session.start()
        assert devices.facing_preference is Facing.ENVIRONMENT


class TestDeviceErrors:
    @pytest.mark.asyncio
    async def test_permission_denied_shows_guide(self):
        notifier = RecordingNotifier()
        session, _, _, _, guides = _session(backend=FakeBackend(kind=OutcomeKind.DENIED), notifier=notifier)
        await session.mount()

        assert await session.start() is False

        snap = session.snapshot
        assert snap.state is ScanState.ERROR
        assert isinstance(snap.error, PermissionDeniedError)
        assert snap.permission_denied is True
        assert snap.show_permission_guide is True
        assert guides == ["macos"]
        assert notifier.levels() == ["error"]

    @pytest.mark.asyncio
    async def test_device_vanished_after_probe(self):
        backend = FakeBackend()
        session, _, _, _, guides = _session(backend=backend)
        await session.mount()
        backend.devices = []

        await session.start()

        assert session.state is ScanState.ERROR
        assert isinstance(session.snapshot.error, NoDeviceError)
        assert session.snapshot.available is False
        assert guides == ["macos"]

    @pytest.mark.asyncio
    async def test_generic_failure_has_no_guide(self):
        session, _, _, _, guides = _session(backend=FakeBackend(kind=OutcomeKind.FAILED))
        await session.mount()

        await session.start()

        assert session.state is ScanState.ERROR
        assert session.snapshot.show_permission_guide is False
        assert guides == []

    @pytest.mark.asyncio
    async def test_retry_permission_recovers(self):
        backend = FakeBackend(kind=OutcomeKind.DENIED)
        session, _, devices, _, _ = _session(backend=backend)
        await session.mount()
        await session.start()
        assert session.state is ScanState.ERROR

        backend.kind = OutcomeKind.GRANTED
        assert await session.retry_permission() is True

        assert session.state is ScanState.LIVE
        assert session.snapshot.error is None
        assert session.snapshot.permission_denied is False
        assert devices.is_live

    @pytest.mark.asyncio
    async def test_retry_permission_only_from_error(self, session):
        await session.mount()
        assert await session.retry_permission() is False
        assert session.state is ScanState.IDLE

    @pytest.mark.asyncio
    async def test_dismiss_error(self):
        session, *_ = _session(backend=FakeBackend(kind=OutcomeKind.FAILED))
        await session.mount()
        await session.start()

        session.dismiss_error()

        assert session.state is ScanState.IDLE
        assert session.snapshot.error is None


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_live_releases_device(self, session, backend, devices):
        await session.mount()
        await session.start()

        session.cancel()

        assert session.state is ScanState.IDLE
        assert devices.is_live is False
        assert backend.handles[0].released is True

    @pytest.mark.asyncio
    async def test_cancel_while_requesting_discards_late_stream(self):
        backend = FakeBackend(block=True)
        session, _, devices, _, _ = _session(backend=backend)
        states = []
        session.subscribe(lambda snap: states.append(snap.state))
        await session.mount()

        task = asyncio.create_task(session.start())
        try:
            while not backend.open_started.is_set():
                await asyncio.sleep(0.01)
            assert session.state is ScanState.REQUESTING
            session.cancel()
            assert session.state is ScanState.IDLE
        finally:
            backend.proceed.set()

        assert await task is False
        assert session.state is ScanState.IDLE
        assert ScanState.LIVE not in states
        assert devices.is_live is False
        assert backend.handles[0].released is True

    @pytest.mark.asyncio
    async def test_start_gated_while_acquire_pending(self):
        backend = FakeBackend(block=True)
        session, *_ = _session(backend=backend)
        await session.mount()

        task = asyncio.create_task(session.start())
        try:
            while not backend.open_started.is_set():
                await asyncio.sleep(0.01)
            assert await session.start() is False
        finally:
            backend.proceed.set()

        assert await task is True
        assert len(backend.opened) == 1

    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_noop(self, session):
        await session.mount()
        session.cancel()
        assert session.state is ScanState.IDLE


class TestCapture:
    @pytest.mark.asyncio
    async def test_successful_scan(self, session, vision, notifier):
        await session.mount()
        await session.start()

        result = await session.capture()

        snap = session.snapshot
        assert snap.state is ScanState.RESULT
        assert snap.estimate == result
        assert result.food == "Apple"
        assert snap.source is ResultSource.ANALYZED
        assert vision.calls == 1
        assert notifier.levels() == ["success", "info", "success"]

    @pytest.mark.asyncio
    async def test_device_released_before_inference(self, session, backend, vision):
        states = []
        session.subscribe(lambda snap: states.append(snap.state))
        await session.mount()
        await session.start()

        await session.capture()

        assert vision.live_during_call == [False]
        assert backend.handles[0].released is True
        assert states[-2:] == [ScanState.ANALYZING, ScanState.RESULT]

    @pytest.mark.asyncio
    async def test_capture_happens_once_per_live_edge(self, session, backend, vision):
        await session.mount()
        await session.start()

        await session.capture()
        assert await session.capture() is None

        assert backend.handles[0].reads == 1
        assert vision.calls == 1

    @pytest.mark.asyncio
    async def test_capture_when_not_live(self, session, vision, notifier):
        await session.mount()

        assert await session.capture() is None
        assert vision.calls == 0
        assert notifier.levels() == ["error"]

    @pytest.mark.asyncio
    async def test_capture_before_first_frame_stays_live(self):
        session, backend, devices, vision, _ = _session(backend=FakeBackend(frames=[None]))
        await session.mount()
        await session.start()

        assert await session.capture() is None

        assert session.state is ScanState.LIVE
        assert devices.is_live
        assert vision.calls == 0

    @pytest.mark.parametrize(
        "error",
        [RemoteServiceError("API Error: overloaded", status=529), ResponseParseError("no JSON")],
    )
    @pytest.mark.asyncio
    async def test_inference_failure_falls_back(self, error):
        notifier = RecordingNotifier()
        session, *_ = _session(vision=FakeVisionClient(error=error), notifier=notifier)
        await session.mount()
        await session.start()

        result = await session.capture()

        snap = session.snapshot
        assert snap.state is ScanState.RESULT
        assert snap.source is ResultSource.ESTIMATED
        assert snap.error is error
        assert result.food == UNKNOWN_FOOD
        assert result.calories == PLACEHOLDER_VALUES["calories"]
        assert notifier.levels()[-1] == "warning"

    @pytest.mark.asyncio
    async def test_unexpected_failure_still_reaches_result(self):
        session, *_ = _session(vision=FakeVisionClient(error=KeyError("boom")))
        await session.mount()
        await session.start()

        await session.capture()

        assert session.state is ScanState.RESULT
        assert session.snapshot.source is ResultSource.ESTIMATED

    @pytest.mark.asyncio
    async def test_missing_credential_end_to_end(self):
        """No key: immediate ConfigurationError, placeholder result, no network call."""
        requests = []
        vision = AnthropicVisionClient(api_key=None)
        vision._client = lambda: requests.append("sent")
        notifier = RecordingNotifier()
        session, *_ = _session(vision=vision, notifier=notifier)
        await session.mount()
        await session.start()

        result = await session.capture()

        snap = session.snapshot
        assert snap.state is ScanState.RESULT
        assert isinstance(snap.error, ConfigurationError)
        assert snap.source is ResultSource.ESTIMATED
        assert result.food == UNKNOWN_FOOD
        assert (result.calories, result.protein, result.carbs, result.fat) == (100, 5, 10, 2)
        assert requests == []
        # misconfiguration is surfaced as an error, not a soft warning
        assert notifier.levels()[-1] == "error"

    @pytest.mark.asyncio
    async def test_rescan_from_result(self, session, backend, devices):
        await session.mount()
        await session.start()
        await session.capture()

        assert await session.rescan() is True

        assert session.state is ScanState.LIVE
        assert session.snapshot.estimate is None
        assert len(backend.opened) == 2
        assert devices.is_live

    @pytest.mark.asyncio
    async def test_rescan_requires_result(self, session):
        await session.mount()
        assert await session.rescan() is False


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_releases_device(self, session, devices):
        await session.mount()
        await session.start()

        session.close()

        assert devices.is_live is False
        assert await session.start() is False

    @pytest.mark.asyncio
    async def test_navigate_cancels_live_scan(self, devices, vision, notifier):
        targets = []
        session = ScanSession(devices, FrameCapturer(), vision, notifier=notifier, on_navigate=targets.append)
        await session.mount()
        await session.start()

        session.navigate("dashboard")

        assert targets == ["dashboard"]
        assert session.state is ScanState.IDLE
        assert devices.is_live is False

    @pytest.mark.asyncio
    async def test_subscribe_receives_current_snapshot(self, session):
        seen = []
        unsubscribe = session.subscribe(seen.append)
        assert seen[0].state is ScanState.IDLE

        unsubscribe()
        await session.mount()
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_refresh_devices_picks_up_new_camera(self):
        backend = FakeBackend(devices=[])
        session, *_ = _session(backend=backend)
        await session.mount()
        assert session.snapshot.available is False

        backend.devices = FakeBackend().devices
        assert await session.refresh_devices() is True
        assert session.snapshot.available is True
