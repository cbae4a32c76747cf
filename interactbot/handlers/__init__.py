# interactbot/handlers/__init__.py
"""
The bot's static command set and handler bindings.

Every CommandDescriptor listed here must have exactly one entry in
``build_default_bindings()``; BotRuntimeConfig refuses to start otherwise.
"""
from __future__ import annotations

from interactbot.core.domain import CommandDescriptor
from interactbot.core.runtime import Handler
from interactbot.handlers.generate import GENERATE_COMMAND, handle_generate
from interactbot.handlers.version import VERSION_COMMAND, handle_version


def build_default_commands() -> list[CommandDescriptor]:
    return [VERSION_COMMAND, GENERATE_COMMAND]


def build_default_bindings() -> dict[str, Handler]:
    return {
        VERSION_COMMAND.name: handle_version,
        GENERATE_COMMAND.name: handle_generate,
    }
