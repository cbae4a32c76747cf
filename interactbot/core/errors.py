# interactbot/core/errors.py
"""
Error taxonomy for the interaction dispatcher.

Where each error is handled:
- AuthenticationError   → raised by SignatureVerifier.check, caught by the dispatcher
                          (401), never escalated
- ProtocolError         → rejected by the dispatcher (400), always escalated
- ConfigurationError    → missing handler binding / bad startup config, always escalated
- UserDomainError       → raised inside handlers for user-attributable failures;
                          handlers reply to the user themselves
- InternalError         → unexpected handler failure, reported and escalated
- RegistrationError     → command install failed, aborts startup
"""
from __future__ import annotations


class BotError(Exception):
    """Base class for all interactbot errors."""


class AuthenticationError(BotError):
    """Inbound request signature could not be verified."""


class ProtocolError(BotError):
    """Interaction payload is malformed or of an unknown type."""


class ConfigurationError(BotError):
    """Runtime configuration is inconsistent (e.g. command without handler)."""


class UserDomainError(BotError):
    """A failure attributable to the invoking user's input.

    Attributes:
        user_message: Text suitable for showing to the end user.
    """

    def __init__(self, message: str, *, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or message


class InternalError(BotError):
    """Unexpected failure during handler execution."""


class ClientInitializationError(InternalError):
    """Downstream client could not be built from the secret store credential."""


class RegistrationError(BotError):
    """Command registration failed during install; the service must not start."""

    def __init__(self, command_name: str, message: str):
        self.command_name = command_name
        super().__init__(f"Failed to register command '{command_name}': {message}")


class InvalidTransitionError(BotError):
    """Interaction state machine was asked to make an illegal transition."""
