# interactbot/core/ports.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from interactbot.core.domain import CommandDescriptor


@dataclass(frozen=True)
class Attachment:
    """Binary file sent along with a follow-up message."""
    filename: str
    data: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class AlertRecord:
    """Severity-tagged record consumed by external operator alerting."""
    bot: str
    error_type: str
    message: str
    severity: str = "ERROR"
    interaction_id: Optional[str] = None
    command: Optional[str] = None


# ============================================================================
# OUTBOUND PROTOCOLS
# ============================================================================

class Responder(Protocol):
    """Reply-sender capability handed to handlers."""

    @property
    def replied(self) -> bool: ...

    async def send(
        self,
        content: str | None = None,
        files: Sequence[Attachment] = (),
    ) -> None: ...


class AlertSink(Protocol):
    def emit(self, record: AlertRecord) -> None: ...


class SecretStore(Protocol):
    async def access_latest(self, project_id: str, secret_id: str) -> str: ...


class CommandRegistrationAPI(Protocol):
    async def upsert_command(self, application_id: str, command: CommandDescriptor) -> dict[str, Any]: ...
    async def list_commands(self, application_id: str) -> list[dict[str, Any]]: ...
    async def delete_command(self, application_id: str, command_id: str) -> None: ...


class FollowupAPI(Protocol):
    async def edit_original_response(
        self,
        application_id: str,
        token: str,
        content: str | None = None,
        files: Sequence[Attachment] = (),
    ) -> dict[str, Any]: ...

    async def create_followup_message(
        self,
        application_id: str,
        token: str,
        content: str | None = None,
        files: Sequence[Attachment] = (),
    ) -> dict[str, Any]: ...
