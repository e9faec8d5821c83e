import os
from dataclasses import dataclass
from typing import Optional


def _env_flag(name: str, default: str) -> str:
    return os.getenv(name, default).strip().lower()


# -----------------------------------
# Vision / remote model configuration
# -----------------------------------

# ANTHROPIC_API_KEY: credential for the messages endpoint.
# CLAUDE_API_KEY is accepted as a legacy alias.
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY") or os.getenv("CLAUDE_API_KEY")
ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
ANTHROPIC_VERSION = "2023-06-01"

# OPENAI_API_KEY: only used when VISION_PROVIDER=openai
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# VISION_PROVIDER:
# - "anthropic" (default): Claude messages API over plain HTTP
# - "openai": OpenAI-compatible chat completions via the SDK
VISION_PROVIDER = _env_flag("VISION_PROVIDER", "anthropic")

DEFAULT_MODELS = {
    "anthropic": "claude-3-haiku-20240307",
    "openai": "gpt-4o-mini",
}

# VISION_MODEL: overrides the provider default from DEFAULT_MODELS
VISION_MODEL = os.getenv("VISION_MODEL", "").strip()

VISION_MAX_TOKENS = int(os.getenv("VISION_MAX_TOKENS", "1024"))

# VISION_TIMEOUT_S: hard limit for one inference request; expiry is
# reported as a remote service failure
VISION_TIMEOUT_S = float(os.getenv("VISION_TIMEOUT_S", "30"))

# -----------------------------------
# Camera / capture configuration
# -----------------------------------

# CAMERA_FACING: "environment" (rear, default) or "user" (front)
CAMERA_FACING = _env_flag("CAMERA_FACING", "environment")

# CAMERA_MAX_DEVICES: how many device indices the probe inspects
CAMERA_MAX_DEVICES = int(os.getenv("CAMERA_MAX_DEVICES", "8"))

CAPTURE_JPEG_QUALITY = int(os.getenv("CAPTURE_JPEG_QUALITY", "92"))

# CAPTURE_MAX_SIDE_PX: downscale the longer side before encoding (0 = keep source size)
CAPTURE_MAX_SIDE_PX = int(os.getenv("CAPTURE_MAX_SIDE_PX", "0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


@dataclass(frozen=True)
class Settings:
    """Resolved configuration handed to the components at construction."""

    provider: str = "anthropic"
    api_key: Optional[str] = None
    model: str = DEFAULT_MODELS["anthropic"]
    max_tokens: int = 1024
    timeout_s: float = 30.0
    base_url: str = "https://api.anthropic.com"
    facing: str = "environment"
    max_devices: int = 8
    jpeg_quality: int = 92
    max_side_px: int = 0


def load_settings() -> Settings:
    """Build Settings from the module-level environment values."""
    provider = VISION_PROVIDER if VISION_PROVIDER in DEFAULT_MODELS else "anthropic"
    api_key = OPENAI_API_KEY if provider == "openai" else ANTHROPIC_API_KEY
    return Settings(
        provider=provider,
        api_key=api_key,
        model=VISION_MODEL or DEFAULT_MODELS[provider],
        max_tokens=VISION_MAX_TOKENS,
        timeout_s=VISION_TIMEOUT_S,
        base_url=ANTHROPIC_BASE_URL,
        facing=CAMERA_FACING if CAMERA_FACING in ("environment", "user") else "environment",
        max_devices=CAMERA_MAX_DEVICES,
        jpeg_quality=CAPTURE_JPEG_QUALITY,
        max_side_px=CAPTURE_MAX_SIDE_PX,
    )
