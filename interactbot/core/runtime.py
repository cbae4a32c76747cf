# interactbot/core/runtime.py
"""
Immutable runtime configuration shared by all request-handling tasks.

BotRuntimeConfig is built once at startup and passed explicitly to the
dispatcher, registry and reporter. Construction enforces that every
declared command has exactly one handler binding.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional, Sequence

from interactbot.core.domain import CommandDescriptor, Interaction
from interactbot.core.errors import ConfigurationError
from interactbot.core.ports import AlertSink, Responder

if TYPE_CHECKING:
    from interactbot.infra.secrets import SecretBackedClientFactory


@dataclass(frozen=True)
class HandlerContext:
    """Per-invocation context passed to handlers."""
    request_id: str
    deadline: float  # time.monotonic() value after which the follow-up token is useless
    config: "BotRuntimeConfig"
    clients: Optional["SecretBackedClientFactory"] = None

    @property
    def remaining(self) -> float:
        """Seconds left before the deadline (never negative)."""
        return max(0.0, self.deadline - time.monotonic())


# A handler replies through the responder and returns None ("no error") or
# an exception value that the operator should hear about.
Handler = Callable[[Responder, Interaction, HandlerContext], Awaitable[Optional[Exception]]]


@dataclass(frozen=True)
class BotRuntimeConfig:
    application_id: str
    public_key: str
    bot_name: str
    commands: tuple[CommandDescriptor, ...]
    bindings: Mapping[str, Handler]
    alert_sink: AlertSink
    port: int = 8080
    project_id: str = ""
    secret_id: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze the containers so concurrent tasks cannot mutate them
        object.__setattr__(self, "commands", tuple(self.commands))
        object.__setattr__(self, "bindings", MappingProxyType(dict(self.bindings)))
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))
        _validate_bindings(self.commands, self.bindings)

    @classmethod
    def build(
        cls,
        *,
        application_id: str,
        public_key: str,
        bot_name: str,
        commands: Sequence[CommandDescriptor],
        bindings: Mapping[str, Handler],
        alert_sink: AlertSink,
        **kwargs: Any,
    ) -> "BotRuntimeConfig":
        return cls(
            application_id=application_id,
            public_key=public_key,
            bot_name=bot_name,
            commands=tuple(commands),
            bindings=bindings,
            alert_sink=alert_sink,
            **kwargs,
        )

    def handler_for(self, command_name: str | None) -> Handler | None:
        if command_name is None:
            return None
        return self.bindings.get(command_name)

    @property
    def command_names(self) -> list[str]:
        return [c.name for c in self.commands]


def _validate_bindings(
    commands: Sequence[CommandDescriptor],
    bindings: Mapping[str, Handler],
) -> None:
    names = [c.name for c in commands]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate command names: {', '.join(duplicates)}")

    unbound = sorted(set(names) - set(bindings))
    if unbound:
        raise ConfigurationError(f"Commands without a handler binding: {', '.join(unbound)}")

    orphaned = sorted(set(bindings) - set(names))
    if orphaned:
        raise ConfigurationError(f"Handler bindings without a command: {', '.join(orphaned)}")

    not_callable = sorted(name for name, fn in bindings.items() if not callable(fn))
    if not_callable:
        raise ConfigurationError(f"Handler bindings are not callable: {', '.join(not_callable)}")
