# interactbot/transport/platform_api.py
"""
Chat platform REST client.

Uses the REST API to:
- Upsert, list and delete application commands (command registry)
- Edit the deferred original response / post follow-up messages

Error classification (PlatformAPIError.retryable):
- 401 / 403 (bad bot token, missing scope)  → NOT retryable
- 400 / 404 (bad payload, expired token)    → NOT retryable
- 429 (rate limited)                        → retryable
- 5xx, network errors                       → retryable

Nothing here retries on its own; follow-ups are at-most-once.
"""
from __future__ import annotations

import json
from typing import Any, Sequence

import aiohttp

from interactbot.core.domain import CommandDescriptor
from interactbot.core.ports import Attachment
from interactbot.infra.http_client import get_platform_session
from interactbot.infra.logging_config import get_logger, mask_token
from interactbot.infra.metrics import inc_counter

logger = get_logger(__name__)

DEFAULT_API_BASE = "https://discord.com/api/v10"


class PlatformAPIError(Exception):
    """Error calling the platform REST API.

    Attributes:
        status:    HTTP status code (0 for connection-level errors).
        retryable: Whether a caller could reasonably retry later.
    """

    def __init__(self, status: int, message: str, *, retryable: bool = False):
        self.status = status
        self.retryable = retryable
        super().__init__(f"Platform API error {status}: {message}")


class PlatformAPI:
    """Async client for the platform's command and webhook endpoints."""

    def __init__(
        self,
        bot_token: str | None = None,
        api_base: str = DEFAULT_API_BASE,
        session: aiohttp.ClientSession | None = None,
    ):
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        return self._session or get_platform_session()

    def _auth_headers(self) -> dict[str, str]:
        if not self._bot_token:
            raise PlatformAPIError(0, "bot token is not configured", retryable=False)
        return {"Authorization": f"Bot {self._bot_token}"}

    # ------------------------------------------------------------------
    # Command registry
    # ------------------------------------------------------------------

    async def upsert_command(self, application_id: str, command: CommandDescriptor) -> dict[str, Any]:
        """Create or overwrite a global command with the same name."""
        url = f"{self._api_base}/applications/{application_id}/commands"
        return await self._request(
            "POST", url, json_body=command.to_payload(), headers=self._auth_headers(),
        )

    async def list_commands(self, application_id: str) -> list[dict[str, Any]]:
        url = f"{self._api_base}/applications/{application_id}/commands"
        result = await self._request("GET", url, headers=self._auth_headers())
        return result if isinstance(result, list) else []

    async def delete_command(self, application_id: str, command_id: str) -> None:
        url = f"{self._api_base}/applications/{application_id}/commands/{command_id}"
        await self._request("DELETE", url, headers=self._auth_headers())

    # ------------------------------------------------------------------
    # Interaction follow-ups (authorized by the interaction token)
    # ------------------------------------------------------------------

    async def edit_original_response(
        self,
        application_id: str,
        token: str,
        content: str | None = None,
        files: Sequence[Attachment] = (),
    ) -> dict[str, Any]:
        """Replace the deferred "thinking..." message with the result."""
        url = f"{self._api_base}/webhooks/{application_id}/{token}/messages/@original"
        logger.debug(f"Editing original response: token={mask_token(token)}")
        return await self._send_message("PATCH", url, content, files)

    async def create_followup_message(
        self,
        application_id: str,
        token: str,
        content: str | None = None,
        files: Sequence[Attachment] = (),
    ) -> dict[str, Any]:
        url = f"{self._api_base}/webhooks/{application_id}/{token}"
        logger.debug(f"Creating follow-up message: token={mask_token(token)}")
        return await self._send_message("POST", url, content, files)

    async def _send_message(
        self,
        method: str,
        url: str,
        content: str | None,
        files: Sequence[Attachment],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if content is not None:
            payload["content"] = content

        if not files:
            result = await self._request(method, url, json_body=payload)
        else:
            payload["attachments"] = [
                {"id": idx, "filename": f.filename} for idx, f in enumerate(files)
            ]
            form = aiohttp.FormData()
            form.add_field("payload_json", json.dumps(payload), content_type="application/json")
            for idx, f in enumerate(files):
                form.add_field(
                    f"files[{idx}]", f.data,
                    filename=f.filename,
                    content_type=f.content_type,
                )
            result = await self._request(method, url, data=form)

        inc_counter("followups_sent", with_files=bool(files))
        return result if isinstance(result, dict) else {}

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        data: aiohttp.FormData | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            session = self._get_session()
            async with session.request(
                method, url, json=json_body, data=data, headers=headers,
            ) as resp:
                if resp.status == 204:
                    return None

                body = await _safe_response_json(resp)
                if 200 <= resp.status < 300:
                    return body

                message = (body or {}).get("message", "Unknown error") if isinstance(body, dict) else "Unknown error"

                if resp.status in (401, 403):
                    logger.warning(f"Platform API auth error: status={resp.status}, msg={message}")
                    inc_counter("platform_api_error", status=resp.status)
                    raise PlatformAPIError(resp.status, message, retryable=False)

                if resp.status == 429:
                    logger.warning(f"Platform API rate limited: {message}")
                    inc_counter("platform_api_error", status=429)
                    raise PlatformAPIError(resp.status, message, retryable=True)

                if 400 <= resp.status < 500:
                    logger.warning(f"Platform API client error: status={resp.status}, msg={message}")
                    inc_counter("platform_api_error", status=resp.status)
                    raise PlatformAPIError(resp.status, message, retryable=False)

                logger.warning(f"Platform API server error: status={resp.status}, msg={message}")
                inc_counter("platform_api_error", status=resp.status)
                raise PlatformAPIError(resp.status, message, retryable=True)

        except PlatformAPIError:
            raise
        except aiohttp.ClientError as exc:
            logger.warning(f"Platform API connection error: {exc}")
            inc_counter("platform_api_error", status=0)
            raise PlatformAPIError(0, str(exc), retryable=True) from exc


async def _safe_response_json(resp: aiohttp.ClientResponse) -> Any:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json(content_type=None)
    except ValueError:
        logger.warning(f"Platform API returned non-JSON body: status={resp.status}")
        return None
