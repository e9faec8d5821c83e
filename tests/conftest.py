"""Shared pytest fixtures: fake cameras, fake vision clients, recording notifier."""

import sys
import threading
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from food_scan.camera import AcquireOutcome, CameraInfo, DeviceAccessManager, LiveStream, OutcomeKind  # noqa: E402
from food_scan.capture import FrameCapturer  # noqa: E402
from food_scan.nutrition import NutritionEstimate  # noqa: E402
from food_scan.session import ScanSession  # noqa: E402
from food_scan.vision_client import VisionClient  # noqa: E402


def make_frame(width: int = 64, height: int = 48) -> np.ndarray:
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:, : width // 2] = (0, 0, 255)  # BGR red on the left half
    return frame


class FakeHandle:
    """Stands in for cv2.VideoCapture."""

    def __init__(self, frames: Optional[List[Optional[np.ndarray]]] = None):
        self.frames = list(frames) if frames is not None else [make_frame()]
        self.released = False
        self.reads = 0

    def isOpened(self):
        return not self.released

    def read(self):
        self.reads += 1
        if not self.frames:
            return False, None
        frame = self.frames[0] if len(self.frames) == 1 else self.frames.pop(0)
        return frame is not None, frame

    def release(self):
        self.released = True


class FakeBackend:
    def __init__(self, devices=None, kind=OutcomeKind.GRANTED, frames=None, block=False):
        self.devices = devices if devices is not None else [CameraInfo(index=0, name="Integrated Camera")]
        self.kind = kind
        self.frames = frames
        self.handles: List[FakeHandle] = []
        self.opened: List[CameraInfo] = []
        self.list_calls = 0
        self.open_started = threading.Event()
        self.proceed = threading.Event()
        if not block:
            self.proceed.set()

    def list_devices(self, max_devices=8):
        self.list_calls += 1
        return list(self.devices)[:max_devices]

    def open(self, device):
        self.opened.append(device)
        self.open_started.set()
        self.proceed.wait(timeout=5)
        if self.kind is not OutcomeKind.GRANTED:
            return AcquireOutcome(self.kind, detail=f"fake {self.kind.value}")
        handle = FakeHandle(self.frames)
        self.handles.append(handle)
        return AcquireOutcome(OutcomeKind.GRANTED, stream=LiveStream(device, handle))


class FakeVisionClient(VisionClient):
    provider = "fake"

    def __init__(self, result=None, error: Optional[Exception] = None, devices=None):
        super().__init__(api_key="test-key", model="fake-model")
        self.result = result or NutritionEstimate(food="Apple", calories=95, protein=0.5, carbs=25, fat=0.3)
        self.error = error
        self.devices = devices
        self.calls = 0
        self.live_during_call: List[bool] = []

    async def analyze(self, payload):
        self.calls += 1
        if self.devices is not None:
            self.live_during_call.append(self.devices.is_live)
        if self.error is not None:
            raise self.error
        return self.result


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def info(self, message):
        self.messages.append(("info", message))

    def success(self, message):
        self.messages.append(("success", message))

    def warning(self, message):
        self.messages.append(("warning", message))

    def error(self, message):
        self.messages.append(("error", message))

    def levels(self):
        return [level for level, _ in self.messages]


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def devices(backend):
    return DeviceAccessManager(backend=backend)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def vision(devices):
    return FakeVisionClient(devices=devices)


@pytest.fixture
def session(devices, vision, notifier):
    guides = []
    s = ScanSession(
        devices=devices,
        capturer=FrameCapturer(),
        vision=vision,
        notifier=notifier,
        on_permission_guide=guides.append,
        platform="linux",
    )
    s.guides = guides
    return s

