"""
Scan session controller.

Single source of truth for the phase a food scan is in:

    IDLE --start--> REQUESTING --acquired--> LIVE --capture--> ANALYZING --> RESULT
                               --error----> ERROR        --cancel--> IDLE
    RESULT --rescan--> REQUESTING
    ERROR  --retry permission / start--> REQUESTING

The camera is only held while LIVE. Leaving LIVE always releases it first,
so the device is never held during the network call. Views observe
ScanSnapshot objects through subscribe() and never mutate the session.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from food_scan import fallback
from food_scan.camera import DeviceAccessManager, Facing
from food_scan.capture import FrameCapturer
from food_scan.errors import (
    CaptureError,
    ConfigurationError,
    DeviceError,
    InferenceError,
    NoDeviceError,
    PermissionDeniedError,
    ScanError,
)
from food_scan.notify import LoggingNotifier, Notifier, detect_platform
from food_scan.nutrition import NutritionEstimate
from food_scan.vision_client import VisionClient

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    LIVE = "live"
    ANALYZING = "analyzing"
    RESULT = "result"
    ERROR = "error"


class ResultSource(str, Enum):
    ANALYZED = "analyzed"
    ESTIMATED = "estimated"


@dataclass(frozen=True)
class ScanSnapshot:
    state: ScanState = ScanState.IDLE
    available: bool = False
    permission_denied: bool = False
    estimate: Optional[NutritionEstimate] = None
    source: Optional[ResultSource] = None
    error: Optional[ScanError] = None
    show_permission_guide: bool = False
    platform: str = "default"


Listener = Callable[[ScanSnapshot], None]


class ScanSession:
    def __init__(
        self,
        devices: DeviceAccessManager,
        capturer: FrameCapturer,
        vision: VisionClient,
        notifier: Optional[Notifier] = None,
        on_permission_guide: Optional[Callable[[str], None]] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
        facing: Facing = Facing.ENVIRONMENT,
        platform: Optional[str] = None,
    ):
        self.devices = devices
        self.capturer = capturer
        self.vision = vision
        self.notifier = notifier or LoggingNotifier()
        self.facing = Facing(facing)
        self._on_permission_guide = on_permission_guide
        self._on_navigate = on_navigate
        self._listeners: List[Listener] = []
        self._snapshot = ScanSnapshot(platform=platform or detect_platform())
        self._device_error: Optional[DeviceError] = None
        # Bumped by cancel()/close(); a start() from an older attempt must not move the state
        self._attempt = 0
        self._busy = False
        self._closed = False
        devices.set_error_callback(self._on_device_error)

    # -----------------------------------
    # Observation
    # -----------------------------------

    @property
    def state(self) -> ScanState:
        return self._snapshot.state

    @property
    def snapshot(self) -> ScanSnapshot:
        return self._snapshot

    @property
    def busy(self) -> bool:
        return self._busy

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._snapshot)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> None:
        changes.setdefault("available", self.devices.available)
        changes.setdefault("permission_denied", self.devices.permission_denied)
        previous = self._snapshot.state
        self._snapshot = replace(self._snapshot, **changes)
        if self._snapshot.state is not previous:
            logger.info("[SCAN] %s -> %s", previous.value, self._snapshot.state.value)
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception:
                logger.exception("[SCAN] Listener failed")

    # -----------------------------------
    # Lifecycle
    # -----------------------------------

    async def mount(self) -> ScanSnapshot:
        """Probe cameras without asking for permission."""
        await self.devices.probe()
        self._update()
        if not self.devices.available:
            logger.warning("[SCAN] No camera detected on mount")
        return self._snapshot

    async def refresh_devices(self) -> bool:
        if self.state in (ScanState.REQUESTING, ScanState.LIVE, ScanState.ANALYZING):
            return self.devices.available
        available = await self.devices.refresh()
        self._update()
        return available

    def close(self) -> None:
        """Tear down: release the camera and ignore any late results."""
        self._closed = True
        self._attempt += 1
        self.devices.release()
        self._listeners.clear()

    # -----------------------------------
    # Camera phase
    # -----------------------------------

    async def start(self) -> bool:
        """Open the camera. Returns True once LIVE."""
        if self._closed or self._busy:
            return False
        if not self.devices.available:
            logger.info("[SCAN] start ignored: no camera available")
            return False
        if self.state not in (ScanState.IDLE, ScanState.RESULT, ScanState.ERROR):
            return False
        return await self._request_stream(retry=False)

    async def rescan(self) -> bool:
        if self.state is not ScanState.RESULT:
            return False
        return await self.start()

    async def retry_permission(self) -> bool:
        """Ask for the camera again after the user changed OS permissions."""
        if self._closed or self._busy or self.state is not ScanState.ERROR:
            return False
        return await self._request_stream(retry=True)

    def dismiss_error(self) -> None:
        if self.state is ScanState.ERROR:
            self._update(state=ScanState.IDLE, error=None, show_permission_guide=False)

    def show_permission_guide(self) -> None:
        self._update(show_permission_guide=True)
        if self._on_permission_guide is not None:
            self._on_permission_guide(self._snapshot.platform)

    async def _request_stream(self, retry: bool) -> bool:
        self._attempt += 1
        attempt = self._attempt
        self._busy = True
        self._device_error = None
        self._update(
            state=ScanState.REQUESTING,
            estimate=None,
            source=None,
            error=None,
            show_permission_guide=False,
        )

        try:
            if retry:
                stream = await self.devices.retry()
            else:
                stream = await self.devices.acquire(self.facing)
        finally:
            self._busy = False

        if attempt != self._attempt:
            # cancelled while waiting; the manager already dropped the stream
            if stream is not None:
                self.devices.release()
            return False

        if stream is None:
            error = self._device_error or DeviceError("Camera could not be started")
            self._update(state=ScanState.ERROR, error=error)
            self.notifier.error(_device_message(error))
            if isinstance(error, (PermissionDeniedError, NoDeviceError)):
                self.show_permission_guide()
            return False

        self._update(state=ScanState.LIVE)
        self.notifier.success("Camera started successfully. Point at your food and capture.")
        return True

    def cancel(self) -> None:
        """Stop scanning. A pending acquisition resolves to nothing."""
        if self.state not in (ScanState.REQUESTING, ScanState.LIVE):
            return
        self._attempt += 1
        self.devices.release()
        self._update(state=ScanState.IDLE)

    def _on_device_error(self, error: DeviceError) -> None:
        self._device_error = error

    # -----------------------------------
    # Capture + analysis phase
    # -----------------------------------

    async def capture(self) -> Optional[NutritionEstimate]:
        """Grab one frame, release the camera, analyze. Always ends in RESULT."""
        if self._closed or self._busy:
            return None
        if self.state is not ScanState.LIVE or not self.devices.is_live:
            self.notifier.error("Camera not available. Please restart scanning.")
            return None

        try:
            payload = self.capturer.capture(self.devices.stream)
        except CaptureError as e:
            logger.warning("[SCAN] Capture failed: %s", e)
            self.notifier.error("Failed to capture a frame. Please try again.")
            return None

        # Camera must be off before the image leaves the device
        self.devices.release()
        self._busy = True
        attempt = self._attempt
        self._update(state=ScanState.ANALYZING)
        self.notifier.info("Analyzing your food...")

        error: Optional[ScanError] = None
        try:
            estimate = await self.vision.analyze(payload)
            source = ResultSource.ANALYZED
        except ConfigurationError as e:
            logger.error("[SCAN] Vision client misconfigured: %s", e)
            error = e
        except InferenceError as e:
            logger.warning("[SCAN] Vision analysis failed, using fallback data: %s", e)
            error = e
        except Exception as e:
            logger.exception("[SCAN] Unexpected analysis failure, using fallback data")
            error = InferenceError(str(e))
        finally:
            self._busy = False

        if error is not None:
            estimate = fallback.estimate(fallback.UNKNOWN_FOOD)
            source = ResultSource.ESTIMATED
            if isinstance(error, ConfigurationError):
                self.notifier.error(
                    f"Food analysis is not configured ({error}). Showing estimated nutritional data."
                )
            else:
                self.notifier.warning("API error. Using estimated nutritional data.")
        else:
            self.notifier.success("Food analyzed successfully!")

        if self._closed or attempt != self._attempt:
            return estimate

        self._update(state=ScanState.RESULT, estimate=estimate, source=source, error=error)
        return estimate

    # -----------------------------------
    # Navigation
    # -----------------------------------

    def navigate(self, target: str) -> None:
        if self.state in (ScanState.REQUESTING, ScanState.LIVE):
            self.cancel()
        if self._on_navigate is not None:
            self._on_navigate(target)


def _device_message(error: DeviceError) -> str:
    if isinstance(error, PermissionDeniedError):
        return "Camera permission was denied. Please enable camera access to use this feature."
    if isinstance(error, NoDeviceError):
        return "No camera detected. Please ensure a camera is connected and working."
    return f"Could not start the camera: {error}"
