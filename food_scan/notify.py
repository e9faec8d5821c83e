"""Status notifications and camera permission guidance."""

import logging
import sys
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def info(self, message: str) -> None:
        ...

    def success(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


class LoggingNotifier:
    """Default sink: status messages go to the log."""

    def __init__(self, name: str = "food_scan.notify"):
        self._log = logging.getLogger(name)

    def info(self, message: str) -> None:
        self._log.info(message)

    def success(self, message: str) -> None:
        self._log.info("✔ %s", message)

    def warning(self, message: str) -> None:
        self._log.warning(message)

    def error(self, message: str) -> None:
        self._log.error(message)


def detect_platform(platform: Optional[str] = None) -> str:
    """Map sys.platform to a key of PERMISSION_STEPS."""
    platform = (platform or sys.platform).lower()
    if platform.startswith("linux"):
        return "linux"
    if platform == "darwin":
        return "macos"
    if platform in ("win32", "cygwin"):
        return "windows"
    return "default"


PERMISSION_STEPS: Dict[str, List[str]] = {
    "linux": [
        "Check that the camera shows up as /dev/video0 (or similar).",
        "Add your user to the 'video' group: sudo usermod -aG video $USER",
        "Log out and back in, then press Retry Permission.",
    ],
    "macos": [
        "Open System Settings > Privacy & Security > Camera.",
        "Enable camera access for your terminal or Python application.",
        "Restart the application, then press Retry Permission.",
    ],
    "windows": [
        "Open Settings > Privacy & security > Camera.",
        "Turn on 'Camera access' and 'Let desktop apps access your camera'.",
        "Close other apps using the camera, then press Retry Permission.",
    ],
    "default": [
        "Make sure a camera is connected and not used by another application.",
        "Allow camera access for this application in your system settings.",
        "Press Retry Permission once access is granted.",
    ],
}


def permission_steps(platform: str) -> List[str]:
    return PERMISSION_STEPS.get(platform, PERMISSION_STEPS["default"])
