# interactbot/infra/image_client.py
"""
Client for the external image generation service.

Error classification:
- 400 / 403 (prompt rejected by content policy)  → PromptRejectedError   (user)
- 429 (downstream rate limit)                     → RateLimitedError      (user)
- 2xx with undecodable JSON / base64 payload      → GenerationPayloadError (operator)
- connection errors, other statuses               → GenerationServiceError (operator)

PromptRejectedError and RateLimitedError are UserDomainErrors: the handler
tells the user and does not page the operator.
"""
from __future__ import annotations

import base64
import binascii

import aiohttp

from interactbot.core.errors import InternalError, UserDomainError
from interactbot.infra.http_client import get_downstream_session
from interactbot.infra.logging_config import get_logger
from interactbot.infra.metrics import inc_counter

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com"
DEFAULT_MODEL = "dall-e-3"
DEFAULT_SIZE = "1024x1024"


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------

class PromptRejectedError(UserDomainError):
    """The service refused the prompt."""


class RateLimitedError(UserDomainError):
    """The service is throttling requests."""


class GenerationPayloadError(InternalError):
    """The service answered 2xx but the payload could not be decoded."""


class GenerationServiceError(InternalError):
    """Transport failure or unexpected status from the service."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"Image service error {status}: {message}")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ImageGenerationClient:
    """Thin async wrapper over the image generation HTTP API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        size: str = DEFAULT_SIZE,
        session: aiohttp.ClientSession | None = None,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._size = size
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        return self._session or get_downstream_session()

    async def generate(self, prompt: str) -> bytes:
        """
        Generate one PNG image for ``prompt``.

        Returns:
            Raw PNG bytes.

        Raises:
            PromptRejectedError, RateLimitedError, GenerationPayloadError,
            GenerationServiceError
        """
        url = f"{self._base_url}/v1/images/generations"
        payload = {
            "model": self._model,
            "prompt": prompt,
            "n": 1,
            "size": self._size,
            "response_format": "b64_json",
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            async with self._get_session().post(url, json=payload, headers=headers) as resp:
                if resp.status in (400, 403):
                    detail = await _error_message(resp)
                    inc_counter("image_generation", outcome="rejected")
                    logger.info(f"Image prompt rejected: status={resp.status}")
                    raise PromptRejectedError(
                        f"Prompt rejected: {detail}",
                        user_message="Your prompt was rejected by the image service. "
                                     "Please try rephrasing it.",
                    )

                if resp.status == 429:
                    inc_counter("image_generation", outcome="rate_limited")
                    logger.warning("Image service rate limit hit")
                    raise RateLimitedError(
                        "Image service rate limited",
                        user_message="The image service is busy right now. "
                                     "Please try again in a minute.",
                    )

                if resp.status >= 300:
                    detail = await _error_message(resp)
                    inc_counter("image_generation", outcome="error")
                    raise GenerationServiceError(resp.status, detail)

                try:
                    body = await resp.json(content_type=None)
                except ValueError as exc:
                    inc_counter("image_generation", outcome="bad_payload")
                    raise GenerationPayloadError("Image service returned invalid JSON") from exc

        except aiohttp.ClientError as exc:
            inc_counter("image_generation", outcome="connection_error")
            logger.warning(f"Image service connection error: {exc}")
            raise GenerationServiceError(0, str(exc)) from exc

        image = decode_image_payload(body)
        inc_counter("image_generation", outcome="ok")
        return image


def decode_image_payload(body: object) -> bytes:
    """Extract PNG bytes from a ``{"data": [{"b64_json": ...}]}`` body."""
    try:
        encoded = body["data"][0]["b64_json"]  # type: ignore[index]
    except (KeyError, IndexError, TypeError) as exc:
        raise GenerationPayloadError("Image payload has no b64_json data") from exc

    if not isinstance(encoded, str) or not encoded:
        raise GenerationPayloadError("Image payload b64_json is empty")

    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise GenerationPayloadError("Image payload is not valid base64") from exc


async def _error_message(resp: aiohttp.ClientResponse, max_len: int = 300) -> str:
    """Best-effort error description from a response body."""
    try:
        body = await resp.json(content_type=None)
        if isinstance(body, dict):
            err = body.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])[:max_len]
    except (aiohttp.ContentTypeError, ValueError):
        pass
    try:
        return (await resp.text())[:max_len]
    except aiohttp.ClientError:
        return "<unreadable>"
