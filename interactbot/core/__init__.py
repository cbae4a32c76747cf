# interactbot/core/__init__.py
"""
Core dispatcher logic -- transport-agnostic.

Canonical imports:
    from interactbot.core.dispatcher import InteractionDispatcher, FollowupRunner
    from interactbot.core.domain import Interaction, CommandDescriptor
    from interactbot.core.runtime import BotRuntimeConfig, HandlerContext
"""
