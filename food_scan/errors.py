"""Error types raised by the scan pipeline."""

from typing import Optional


class ScanError(Exception):
    """Base class for every failure the scan session knows how to handle."""


# -----------------------------------
# Device access
# -----------------------------------


class DeviceError(ScanError):
    """Camera could not be opened for a reason other than permission/absence."""


class NoDeviceError(DeviceError):
    """No camera hardware could be enumerated."""


class PermissionDeniedError(DeviceError):
    """The user or OS refused access to the camera."""


# -----------------------------------
# Frame capture
# -----------------------------------


class CaptureError(ScanError):
    """Live stream had no decodable frame to capture."""


# -----------------------------------
# Vision inference
# -----------------------------------


class InferenceError(ScanError):
    """Base class for vision client failures."""


class ConfigurationError(InferenceError):
    """Remote-service credential is missing. Needs a deployment fix."""


class RemoteServiceError(InferenceError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"[{self.status}] {self.message}"


class ResponseParseError(InferenceError):
    """Model reply did not contain a usable nutrition object."""
