"""Still-frame capture and JPEG encoding."""

import base64
import logging
import time
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from food_scan.camera import LiveStream
from food_scan.errors import CaptureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    media_type: str = "image/jpeg"
    width: int = 0
    height: int = 0

    @property
    def b64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.b64}"

    @classmethod
    def from_file(cls, path: str, max_side: int = 0, quality: int = 92) -> "ImagePayload":
        """Load an image from disk and re-encode it as JPEG."""
        try:
            with Image.open(path) as img:
                img = img.convert("RGB")  # PNG -> JPEG
                return _encode(img, max_side=max_side, quality=quality)
        except (OSError, ValueError) as e:
            raise CaptureError(f"Cannot load image {path}: {e}") from e


def _encode(img: Image.Image, max_side: int = 0, quality: int = 92) -> ImagePayload:
    if max_side and max(img.size) > max_side:
        img.thumbnail((max_side, max_side))
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    width, height = img.size
    return ImagePayload(data=buf.getvalue(), media_type="image/jpeg", width=width, height=height)


def frame_to_payload(frame: Optional[np.ndarray], max_side: int = 0, quality: int = 92) -> ImagePayload:
    """Encode a BGR (or grayscale) OpenCV frame as a JPEG payload."""
    if frame is None or frame.size == 0:
        raise CaptureError("No decodable frame available yet")

    if frame.ndim not in (2, 3):
        raise CaptureError(f"Unsupported frame shape {frame.shape}")

    height, width = frame.shape[:2]
    if width < 1 or height < 1:
        raise CaptureError(f"Frame has invalid size {width}x{height}")

    if frame.dtype == np.uint16:
        # 16-bit sensors: keep the high byte
        frame = (frame >> 8).astype(np.uint8)
    elif frame.dtype != np.uint8:
        raise CaptureError(f"Unsupported frame depth {frame.dtype}")

    if frame.ndim == 2:
        rgb = cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)
    elif frame.ndim == 3 and frame.shape[2] == 4:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGRA2RGB)
    elif frame.shape[2] == 3:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    else:
        raise CaptureError(f"Unsupported frame shape {frame.shape}")

    # Raster sized to the source resolution
    img = Image.fromarray(rgb)
    return _encode(img, max_side=max_side, quality=quality)


class FrameCapturer:
    def __init__(self, quality: int = 92, max_side: int = 0):
        self.quality = quality
        self.max_side = max_side

    def capture(self, stream: Optional[LiveStream]) -> ImagePayload:
        if stream is None or not stream.active:
            raise CaptureError("Camera stream is not active")

        t = time.time()
        payload = frame_to_payload(stream.read_frame(), max_side=self.max_side, quality=self.quality)
        logger.info(
            "[CAPTURE] Encoded %sx%s frame to %.1fkb JPEG in %sms",
            payload.width,
            payload.height,
            len(payload.data) / 1024,
            round((time.time() - t) * 1000, 2),
        )
        return payload
