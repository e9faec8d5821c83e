"""Command-line food scanner."""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import List, Optional

import cv2
import numpy as np

from food_scan import fallback
from food_scan.camera import DeviceAccessManager, Facing
from food_scan.capture import FrameCapturer, ImagePayload
from food_scan.config import LOG_LEVEL, Settings, load_settings
from food_scan.errors import CaptureError, ConfigurationError, InferenceError
from food_scan.notify import permission_steps
from food_scan.session import ResultSource, ScanSession, ScanSnapshot, ScanState
from food_scan.vision_client import build_vision_client

logger = logging.getLogger("food_scan.cli")

WINDOW = "Scan Your Food"
KEYS_HELP = "space=capture  c=cancel  r=start/rescan/retry  d=dashboard  q=quit"


# -----------------------------------
# Rendering
# -----------------------------------


def render_status(snapshot: ScanSnapshot, width: int = 640, height: int = 480) -> np.ndarray:
    """Draw the non-live screens (idle, analyzing, result, error)."""
    canvas = np.full((height, width, 3), 245, dtype=np.uint8)
    lines: List[str] = []

    if snapshot.state is ScanState.ANALYZING:
        lines = ["Analyzing..."]
    elif snapshot.state is ScanState.RESULT and snapshot.estimate is not None:
        est = snapshot.estimate
        badge = "Analyzed" if snapshot.source is ResultSource.ANALYZED else "Estimated"
        lines = [
            f"{est.food}  [{badge}]",
            f"Calories: {est.calories:g} kcal",
            f"Protein:  {est.protein:g} g",
            f"Carbs:    {est.carbs:g} g",
            f"Fat:      {est.fat:g} g",
            "",
            "r = Scan Another Food   d = Back to Dashboard",
        ]
    elif snapshot.state is ScanState.ERROR:
        lines = [f"Camera error: {snapshot.error}"]
        if snapshot.show_permission_guide:
            lines += [""] + permission_steps(snapshot.platform)
        lines += ["", "r = Retry Permission"]
    elif not snapshot.available:
        lines = ["No Camera Detected", "Connect a camera and press r to check again."]
    elif snapshot.state is ScanState.REQUESTING:
        lines = ["Starting camera..."]
    else:
        lines = ["Press r to activate your camera and scan food"]

    y = 40
    for line in lines:
        cv2.putText(canvas, line[:70], (20, y), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (40, 40, 40), 1, cv2.LINE_AA)
        y += 30
    cv2.putText(canvas, KEYS_HELP, (20, height - 20), cv2.FONT_HERSHEY_SIMPLEX, 0.45, (120, 120, 120), 1, cv2.LINE_AA)
    return canvas


def _print_guide(platform: str) -> None:
    logger.info("Camera permission help (%s):", platform)
    for step in permission_steps(platform):
        logger.info("  - %s", step)


# -----------------------------------
# Modes
# -----------------------------------


def build_session(settings: Settings, on_navigate=None) -> ScanSession:
    devices = DeviceAccessManager(facing=Facing(settings.facing), max_devices=settings.max_devices)
    capturer = FrameCapturer(quality=settings.jpeg_quality, max_side=settings.max_side_px)
    return ScanSession(
        devices=devices,
        capturer=capturer,
        vision=build_vision_client(settings),
        on_permission_guide=_print_guide,
        on_navigate=on_navigate,
        facing=Facing(settings.facing),
    )


def redraw_status(snapshot: ScanSnapshot) -> None:
    """Repaint on every state change; LIVE frames are drawn by the main loop."""
    if snapshot.state is ScanState.LIVE:
        return
    cv2.imshow(WINDOW, render_status(snapshot))
    cv2.waitKey(1)


async def handle_key(session: ScanSession, key: int) -> bool:
    """Apply one key press. Returns False when the user asked to quit."""
    if key in (ord("q"), 27):
        return False
    if key == ord(" "):
        await session.capture()
    elif key == ord("c"):
        session.cancel()
    elif key == ord("d"):
        session.navigate("dashboard")
    elif key == ord("r"):
        if not session.snapshot.available:
            if await session.refresh_devices():
                await session.start()
        elif session.state is ScanState.ERROR and session.snapshot.permission_denied:
            await session.retry_permission()
        elif session.state is ScanState.RESULT:
            await session.rescan()
        else:
            await session.start()
    return True


async def run_interactive(settings: Settings) -> int:
    leaving = []
    session = build_session(settings, on_navigate=leaving.append)
    snapshot = await session.mount()
    if not snapshot.available:
        logger.error("No camera detected. Connect a camera and press r to check again.")

    cv2.namedWindow(WINDOW)
    session.subscribe(redraw_status)
    await session.start()
    try:
        while not leaving:
            stream = session.devices.stream
            frame = stream.read_frame() if session.state is ScanState.LIVE and stream else None
            cv2.imshow(WINDOW, frame if frame is not None else render_status(session.snapshot))

            key = cv2.waitKey(30) & 0xFF
            if not await handle_key(session, key):
                break
            await asyncio.sleep(0)
    finally:
        session.close()
        await session.vision.aclose()
        cv2.destroyAllWindows()
    return 0


async def run_image(settings: Settings, path: str) -> int:
    try:
        payload = ImagePayload.from_file(path, max_side=settings.max_side_px, quality=settings.jpeg_quality)
    except CaptureError as e:
        logger.error("%s", e)
        return 2

    client = build_vision_client(settings)
    source = "analyzed"
    try:
        estimate = await client.analyze(payload)
    except ConfigurationError as e:
        logger.error("Food analysis is not configured: %s", e)
        estimate, source = fallback.estimate(fallback.UNKNOWN_FOOD), "estimated"
    except InferenceError as e:
        logger.warning("API error, using estimated nutritional data: %s", e)
        estimate, source = fallback.estimate(fallback.UNKNOWN_FOOD), "estimated"
    finally:
        await client.aclose()

    print(json.dumps({**estimate.model_dump(), "source": source}, ensure_ascii=False, indent=2))
    return 0


async def run_probe(settings: Settings) -> int:
    devices = DeviceAccessManager(max_devices=settings.max_devices)
    await devices.probe()
    if not devices.available:
        print("No cameras detected")
        return 1
    for device in devices.devices:
        facing = device.facing.value if device.facing else "unknown"
        print(f"[{device.index}] {device.name} (facing={facing}, path={device.path or '-'})")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scan food with a camera and estimate its nutrition facts.")
    parser.add_argument("--image", help="Analyze an existing JPEG/PNG instead of using the camera")
    parser.add_argument("--probe", action="store_true", help="List detected cameras and exit")
    parser.add_argument(
        "--facing",
        choices=[f.value for f in Facing],
        help="Preferred camera facing (default: CAMERA_FACING or environment)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        stream=sys.stdout,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = load_settings()
    if args.facing:
        settings = replace(settings, facing=args.facing)

    if args.probe:
        return asyncio.run(run_probe(settings))
    if args.image:
        return asyncio.run(run_image(settings, args.image))
    return asyncio.run(run_interactive(settings))


if __name__ == "__main__":
    sys.exit(main())
