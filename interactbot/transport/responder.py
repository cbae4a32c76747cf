# interactbot/transport/responder.py
"""
Follow-up responder bound to one interaction token.

The first send() replaces the deferred placeholder message; later sends
post additional follow-up messages.
"""
from __future__ import annotations

from typing import Sequence

from interactbot.core.ports import Attachment, FollowupAPI

# Platform limit for message content
MAX_CONTENT_LENGTH = 2000


class FollowupResponder:

    def __init__(self, api: FollowupAPI, application_id: str, token: str):
        self._api = api
        self._application_id = application_id
        self._token = token
        self._sent = 0

    @property
    def replied(self) -> bool:
        return self._sent > 0

    @property
    def sent_count(self) -> int:
        return self._sent

    async def send(
        self,
        content: str | None = None,
        files: Sequence[Attachment] = (),
    ) -> None:
        if content is None and not files:
            raise ValueError("A reply needs content or at least one file")
        if content is not None and len(content) > MAX_CONTENT_LENGTH:
            content = content[: MAX_CONTENT_LENGTH - 1] + "…"

        if self._sent == 0:
            await self._api.edit_original_response(
                self._application_id, self._token, content=content, files=files,
            )
        else:
            await self._api.create_followup_message(
                self._application_id, self._token, content=content, files=files,
            )
        self._sent += 1
