# interactbot/handlers/version.py
from __future__ import annotations

from typing import Optional

from interactbot import __version__
from interactbot.core.domain import CommandDescriptor, Interaction
from interactbot.core.ports import Responder
from interactbot.core.runtime import HandlerContext

VERSION_COMMAND = CommandDescriptor(
    name="version",
    description="Show the bot's build identifier",
)


def build_identifier(ctx: HandlerContext) -> str:
    return str(ctx.config.extra.get("build_id") or __version__)


async def handle_version(
    responder: Responder,
    interaction: Interaction,
    ctx: HandlerContext,
) -> Optional[Exception]:
    """Reply with the build identifier."""
    await responder.send(build_identifier(ctx))
    return None
