# interactbot/core/registry.py
"""
Command registry synchronization.

Install pushes every CommandDescriptor with an upsert-by-name call, one at
a time. The platform treats an identical upsert as a no-op, so repeated
installs are safe. Any install failure raises RegistrationError: serving
with a partial command set would surface as "unknown command" errors.

Teardown removes every command registered for the application. It is
best-effort: failures are logged and skipped.

Usage at startup::

    registry = CommandRegistry(PlatformAPI(bot_token), application_id)
    await registry.sync(config.commands, SyncMode.INSTALL)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from interactbot.core.domain import CommandDescriptor
from interactbot.core.errors import RegistrationError
from interactbot.core.ports import CommandRegistrationAPI
from interactbot.infra.logging_config import get_logger
from interactbot.infra.metrics import inc_counter

logger = get_logger(__name__)


class SyncMode(str, Enum):
    INSTALL = "install"
    TEARDOWN = "teardown"


@dataclass
class SyncResult:
    mode: SyncMode
    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class CommandRegistry:
    """Declare or retract this bot's commands on the platform."""

    def __init__(self, api: CommandRegistrationAPI, application_id: str):
        self._api = api
        self._application_id = application_id

    async def sync(self, commands: Sequence[CommandDescriptor], mode: SyncMode) -> SyncResult:
        if mode is SyncMode.INSTALL:
            return await self._install(commands)
        return await self._teardown()

    async def _install(self, commands: Sequence[CommandDescriptor]) -> SyncResult:
        result = SyncResult(mode=SyncMode.INSTALL)
        for command in commands:
            try:
                await self._api.upsert_command(self._application_id, command)
            except Exception as exc:
                inc_counter("command_sync_failed", mode="install")
                logger.warning(
                    f"Command install failed: /{command.name}: {exc}",
                    extra={"command": command.name},
                )
                raise RegistrationError(command.name, str(exc)) from exc
            result.synced.append(command.name)
            logger.info(f"Command installed: /{command.name}", extra={"command": command.name})

        inc_counter("command_sync", mode="install")
        logger.info(f"Command install complete: {len(result.synced)} command(s)")
        return result

    async def _teardown(self) -> SyncResult:
        result = SyncResult(mode=SyncMode.TEARDOWN)
        try:
            registered = await self._api.list_commands(self._application_id)
        except Exception as exc:
            logger.warning(f"Command teardown: could not list commands: {exc}")
            inc_counter("command_sync_failed", mode="teardown")
            result.failed.append("*")
            return result

        for entry in registered:
            name = entry.get("name", "?")
            command_id = entry.get("id")
            if not command_id:
                logger.warning(f"Command teardown: /{name} has no id, skipping")
                result.failed.append(name)
                continue
            try:
                await self._api.delete_command(self._application_id, str(command_id))
            except Exception as exc:
                logger.warning(f"Command teardown: failed to delete /{name}: {exc}")
                inc_counter("command_sync_failed", mode="teardown")
                result.failed.append(name)
                continue
            result.synced.append(name)
            logger.info(f"Command deleted: /{name}")

        inc_counter("command_sync", mode="teardown")
        logger.info(
            f"Command teardown complete: removed={len(result.synced)}, failed={len(result.failed)}"
        )
        return result
