"""
Camera device access.

DeviceAccessManager owns the single live stream of a scan session:
- probe(): list cameras without opening them, so "no camera" can be told
  apart from "camera present, permission not granted yet"
- acquire(): open a stream matching the facing preference
- release(): stop the held stream (idempotent)
- retry(): acquire again after the user changed OS permissions

Failures never raise out of the manager. They are reported through the
`on_error` callback and acquire() returns None.
"""

import asyncio
import glob
import json
import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol

import cv2
import numpy as np

from food_scan.errors import DeviceError, NoDeviceError, PermissionDeniedError

logger = logging.getLogger(__name__)


class Facing(str, Enum):
    ENVIRONMENT = "environment"
    USER = "user"


_FACING_HINTS = {
    Facing.ENVIRONMENT: ("back", "rear", "environment", "world"),
    Facing.USER: ("front", "user", "facetime", "face"),
}


def guess_facing(name: str) -> Optional[Facing]:
    """Infer facing from a device name, None when the name gives no hint."""
    lowered = (name or "").lower()
    for facing, hints in _FACING_HINTS.items():
        if any(hint in lowered for hint in hints):
            return facing
    return None


@dataclass(frozen=True)
class CameraInfo:
    index: int
    name: str
    facing: Optional[Facing] = None
    path: Optional[str] = None


class LiveStream:
    """An opened, frame-producing capture handle."""

    def __init__(self, device: CameraInfo, handle):
        self.device = device
        self._handle = handle

    @property
    def active(self) -> bool:
        return self._handle is not None and bool(self._handle.isOpened())

    def read_frame(self) -> Optional[np.ndarray]:
        if not self.active:
            return None
        ok, frame = self._handle.read()
        if not ok or frame is None:
            return None
        return frame

    def stop(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        handle.release()
        logger.info("[CAMERA] Stopped stream on %s", self.device.name)

    def __repr__(self):
        return f"LiveStream(device={self.device.name!r}, active={self.active})"


class OutcomeKind(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    ABSENT = "absent"
    FAILED = "failed"


@dataclass(frozen=True)
class AcquireOutcome:
    kind: OutcomeKind
    stream: Optional[LiveStream] = None
    detail: str = ""


class CameraBackend(Protocol):
    def list_devices(self, max_devices: int) -> List[CameraInfo]:
        ...

    def open(self, device: CameraInfo) -> AcquireOutcome:
        ...


# -----------------------------------
# OpenCV backend
# -----------------------------------


class OpenCVBackend:
    """Platform camera access through cv2.VideoCapture."""

    def list_devices(self, max_devices: int = 8) -> List[CameraInfo]:
        if sys.platform.startswith("linux"):
            devices = _list_linux()
        elif sys.platform == "darwin":
            devices = _list_macos()
        elif sys.platform == "win32":
            devices = _list_windows()
        else:
            logger.warning("Unsupported platform for camera discovery: %s", sys.platform)
            devices = []
        return devices[:max_devices]

    def open(self, device: CameraInfo) -> AcquireOutcome:
        if device.path and not os.path.exists(device.path):
            return AcquireOutcome(OutcomeKind.ABSENT, detail=f"{device.path} disappeared")

        if device.path and not os.access(device.path, os.R_OK | os.W_OK):
            return AcquireOutcome(OutcomeKind.DENIED, detail=f"No read/write access to {device.path}")

        handle = cv2.VideoCapture(device.index)
        if not handle.isOpened():
            handle.release()
            if sys.platform == "darwin":
                # AVFoundation refuses to open when the app has no camera authorization
                return AcquireOutcome(
                    OutcomeKind.DENIED,
                    detail=f"Camera {device.index} refused to open (check Privacy > Camera)",
                )
            return AcquireOutcome(OutcomeKind.FAILED, detail=f"Failed to open camera {device.index}")

        return AcquireOutcome(OutcomeKind.GRANTED, stream=LiveStream(device, handle))


def _list_linux() -> List[CameraInfo]:
    devices: List[CameraInfo] = []
    video_dir = Path("/sys/class/video4linux")

    if video_dir.exists():
        for node in sorted(video_dir.iterdir(), key=lambda p: _node_index(p.name)):
            if not node.name.startswith("video"):
                continue
            # Only the first node of a device carries frames, the rest are metadata
            index_file = node / "index"
            try:
                if index_file.exists() and int(index_file.read_text().strip()) != 0:
                    continue
            except (ValueError, OSError):
                pass
            try:
                name = (node / "name").read_text().strip()
            except OSError:
                name = node.name
            devices.append(
                CameraInfo(
                    index=_node_index(node.name),
                    name=name,
                    facing=guess_facing(name),
                    path=f"/dev/{node.name}",
                )
            )
        return devices

    for dev_path in sorted(glob.glob("/dev/video*"), key=lambda p: _node_index(os.path.basename(p))):
        index = _node_index(os.path.basename(dev_path))
        devices.append(CameraInfo(index=index, name=os.path.basename(dev_path), path=dev_path))
    return devices


def _node_index(name: str) -> int:
    digits = "".join(ch for ch in name if ch.isdigit())
    return int(digits) if digits else 0


def _list_macos() -> List[CameraInfo]:
    try:
        result = subprocess.run(
            ["system_profiler", "SPCameraDataType", "-json"],
            capture_output=True,
            text=True,
            timeout=5.0,
        )
        entries = json.loads(result.stdout or "{}").get("SPCameraDataType", [])
    except (subprocess.TimeoutExpired, FileNotFoundError, json.JSONDecodeError) as e:
        logger.warning("Camera listing via system_profiler failed: %s", e)
        return []

    return [
        CameraInfo(index=i, name=entry.get("_name", f"Camera {i}"), facing=guess_facing(entry.get("_name", "")))
        for i, entry in enumerate(entries)
    ]


def _list_windows() -> List[CameraInfo]:
    query = (
        "Get-CimInstance Win32_PnPEntity | "
        "Where-Object { $_.PNPClass -eq 'Camera' -or $_.PNPClass -eq 'Image' } | "
        "Select-Object -ExpandProperty Name"
    )
    try:
        result = subprocess.run(
            ["powershell", "-NoProfile", "-Command", query],
            capture_output=True,
            text=True,
            timeout=10.0,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.warning("Camera listing via PowerShell failed: %s", e)
        return []

    names = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    return [CameraInfo(index=i, name=name, facing=guess_facing(name)) for i, name in enumerate(names)]


# -----------------------------------
# Device access manager
# -----------------------------------


class DeviceAccessManager:
    def __init__(
        self,
        backend: Optional[CameraBackend] = None,
        on_error: Optional[Callable[[DeviceError], None]] = None,
        facing: Facing = Facing.ENVIRONMENT,
        max_devices: int = 8,
    ):
        self._backend = backend or OpenCVBackend()
        self._on_error = on_error
        self._max_devices = max_devices
        self.facing_preference = Facing(facing)
        self.available = False
        self.permission_denied = False
        self.devices: List[CameraInfo] = []
        self.last_error: Optional[DeviceError] = None
        self._stream: Optional[LiveStream] = None
        self._pending: Optional[asyncio.Future] = None
        self._pending_generation = 0
        # Bumped by release(); an acquisition started under an older generation is stale
        self._generation = 0

    def set_error_callback(self, callback: Callable[[DeviceError], None]) -> None:
        self._on_error = callback

    @property
    def is_live(self) -> bool:
        return self._stream is not None and self._stream.active

    @property
    def stream(self) -> Optional[LiveStream]:
        return self._stream

    async def probe(self) -> bool:
        """List cameras without opening any of them; updates `available`."""
        try:
            self.devices = await asyncio.to_thread(self._backend.list_devices, self._max_devices)
        except Exception as e:
            logger.warning("[CAMERA] Device probe failed: %s", e)
            self.devices = []
        self.available = bool(self.devices)
        logger.info(
            "[CAMERA] Probe found %d device(s): %s",
            len(self.devices),
            [d.name for d in self.devices],
        )
        return self.available

    async def refresh(self) -> bool:
        return await self.probe()

    async def acquire(self, preferred_facing: Optional[Facing] = None) -> Optional[LiveStream]:
        if preferred_facing is not None:
            self.facing_preference = Facing(preferred_facing)

        if self.is_live:
            return self._stream
        if (
            self._pending is not None
            and not self._pending.done()
            and self._pending_generation == self._generation
        ):
            return await asyncio.shield(self._pending)

        pending = asyncio.get_running_loop().create_future()
        self._pending = pending
        self._pending_generation = self._generation
        try:
            stream = await self._acquire_once(self._generation)
        except BaseException:
            pending.cancel()
            raise
        else:
            pending.set_result(stream)
        return stream

    async def _acquire_once(self, generation: int) -> Optional[LiveStream]:
        try:
            devices = await asyncio.to_thread(self._backend.list_devices, self._max_devices)
        except Exception as e:
            self._report(DeviceError(f"Device enumeration failed: {e}"))
            return None

        self.devices = devices
        self.available = bool(devices)
        if not devices:
            self._report(NoDeviceError("No camera found on this device"))
            return None

        if generation != self._generation:
            return None

        device = self._select(devices)
        logger.info(
            "[CAMERA] Opening %s (index=%s, facing=%s, preferred=%s)",
            device.name,
            device.index,
            device.facing.value if device.facing else "unknown",
            self.facing_preference.value,
        )

        try:
            outcome = await asyncio.to_thread(self._backend.open, device)
        except Exception as e:
            self._report(DeviceError(f"Failed to open {device.name}: {e}"))
            return None

        if generation != self._generation:
            # release() ran while we were waiting: the late stream must not come alive
            if outcome.stream is not None:
                outcome.stream.stop()
            logger.info("[CAMERA] Discarded late stream for %s after release", device.name)
            return None

        if outcome.kind is OutcomeKind.GRANTED and outcome.stream is not None:
            self._stream = outcome.stream
            self.permission_denied = False
            self.last_error = None
            return self._stream

        if outcome.kind is OutcomeKind.DENIED:
            self.permission_denied = True
            self._report(PermissionDeniedError(outcome.detail or "Camera permission denied"))
        elif outcome.kind is OutcomeKind.ABSENT:
            self._report(NoDeviceError(outcome.detail or "Camera not found"))
        else:
            self._report(DeviceError(outcome.detail or "Camera could not be started"))
        return None

    def _select(self, devices: List[CameraInfo]) -> CameraInfo:
        for device in devices:
            if device.facing is self.facing_preference:
                return device
        # No device advertises the preferred facing: take whatever is first
        return devices[0]

    def release(self) -> None:
        self._generation += 1
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        stream.stop()

    async def retry(self) -> Optional[LiveStream]:
        self.permission_denied = False
        return await self.acquire(self.facing_preference)

    def _report(self, error: DeviceError) -> None:
        self.last_error = error
        logger.warning("[CAMERA] %s: %s", type(error).__name__, error)
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("[CAMERA] Error callback failed")
