# interactbot/__init__.py
"""Signed interaction webhook dispatcher for chat-platform bots."""

__version__ = "0.1.0"
