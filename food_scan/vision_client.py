"""Remote vision model clients for food analysis."""

import logging
import time
from typing import Any, Dict, Optional

import httpx
import openai

from food_scan.capture import ImagePayload
from food_scan.config import ANTHROPIC_VERSION, DEFAULT_MODELS, Settings
from food_scan.errors import ConfigurationError, RemoteServiceError, ResponseParseError
from food_scan.nutrition import NutritionEstimate, parse_estimate
from food_scan.prompts import NUTRITION_PROMPT

logger = logging.getLogger(__name__)


class VisionClient:
    """
    Sends one image to a remote multimodal model and parses the reply.

    The credential is injected at construction. analyze() never substitutes
    defaults: callers decide what to show when it raises.
    """

    provider = "base"
    credential_name = "API key"

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        max_tokens: int = 1024,
        timeout_s: float = 30.0,
    ):
        self.api_key = (api_key or "").strip() or None
        self.model = model
        self.max_tokens = max_tokens
        self.timeout_s = timeout_s

    async def analyze(self, payload: ImagePayload) -> NutritionEstimate:
        if not self.api_key:
            raise ConfigurationError(
                f"{self.credential_name} not found. Add it to the environment to enable food analysis."
            )

        logger.info(
            "Sending %.1fkb image to provider=%s model=%s",
            len(payload.b64) / 1024,
            self.provider,
            self.model,
        )
        t = time.time()
        text = await self._request(payload)
        logger.info(
            "Vision response received in %sms, length: %s",
            round((time.time() - t) * 1000, 2),
            len(text),
        )

        estimate = parse_estimate(text)
        logger.info("Parsed estimate: %s", estimate.model_dump())
        return estimate

    async def _request(self, payload: ImagePayload) -> str:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class AnthropicVisionClient(VisionClient):
    provider = "anthropic"
    credential_name = "Claude API key (ANTHROPIC_API_KEY)"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODELS["anthropic"],
        max_tokens: int = 1024,
        timeout_s: float = 30.0,
        base_url: str = "https://api.anthropic.com",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, model, max_tokens, timeout_s)
        self.base_url = base_url.rstrip("/")
        self._http = http_client
        self._owns_http = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout_s)
        return self._http

    def build_body(self, payload: ImagePayload) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": payload.media_type,
                                "data": payload.b64,
                            },
                        },
                        {"type": "text", "text": NUTRITION_PROMPT},
                    ],
                }
            ],
        }

    async def _request(self, payload: ImagePayload) -> str:
        headers = {
            "content-type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        try:
            response = await self._client().post(
                f"{self.base_url}/v1/messages",
                json=self.build_body(payload),
                headers=headers,
                timeout=self.timeout_s,
            )
        except httpx.TimeoutException as e:
            raise RemoteServiceError(f"Request timed out after {self.timeout_s}s") from e
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"Network error: {e}") from e

        if response.is_error:
            raise RemoteServiceError(
                f"API Error: {_error_message(response)}",
                status=response.status_code,
            )

        try:
            data = response.json()
            text = data["content"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ResponseParseError(f"Unexpected response envelope: {e}") from e
        if not isinstance(text, str):
            raise ResponseParseError("Unexpected response envelope: text is not a string")
        return text

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    error = body.get("error") if isinstance(body, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    if not isinstance(message, str):
        message = None
    return message or response.reason_phrase or f"HTTP {response.status_code}"


class OpenAIVisionClient(VisionClient):
    provider = "openai"
    credential_name = "OpenAI API key (OPENAI_API_KEY)"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODELS["openai"],
        max_tokens: int = 1024,
        timeout_s: float = 30.0,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        super().__init__(api_key, model, max_tokens, timeout_s)
        self._sdk = client

    def _client(self) -> openai.AsyncOpenAI:
        if self._sdk is None:
            logger.info("Initializing OpenAI client")
            self._sdk = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout_s, max_retries=0)
        return self._sdk

    async def _request(self, payload: ImagePayload) -> str:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": NUTRITION_PROMPT},
                    {"type": "image_url", "image_url": {"url": payload.data_url}},
                ],
            }
        ]
        try:
            response = await self._client().chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=0,
            )
        except openai.APITimeoutError as e:
            raise RemoteServiceError(f"Request timed out after {self.timeout_s}s") from e
        except openai.APIStatusError as e:
            raise RemoteServiceError(f"API Error: {e.message}", status=e.status_code) from e
        except openai.APIConnectionError as e:
            raise RemoteServiceError(f"Network error: {e}") from e

        if not response.choices:
            raise ResponseParseError("Response contained no choices")
        return response.choices[0].message.content or ""

    async def aclose(self) -> None:
        if self._sdk is not None:
            await self._sdk.close()
            self._sdk = None


def build_vision_client(settings: Settings) -> VisionClient:
    """Pick the client implementation for the configured provider."""
    if settings.provider == "openai":
        return OpenAIVisionClient(
            api_key=settings.api_key,
            model=settings.model,
            max_tokens=settings.max_tokens,
            timeout_s=settings.timeout_s,
        )
    return AnthropicVisionClient(
        api_key=settings.api_key,
        model=settings.model,
        max_tokens=settings.max_tokens,
        timeout_s=settings.timeout_s,
        base_url=settings.base_url,
    )
