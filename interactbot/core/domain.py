# interactbot/core/domain.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional, Union

from interactbot.core.errors import InvalidTransitionError, ProtocolError


OptionValue = Union[str, int, bool]


# ============================================================================
# PLATFORM ENUMS
# ============================================================================

class InteractionKind(IntEnum):
    """Inbound interaction types understood by the dispatcher."""
    PING = 1
    APPLICATION_COMMAND = 2


class ResponseType(IntEnum):
    """Initial HTTP response types sent back to the platform."""
    PONG = 1
    DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE = 5


class OptionType(IntEnum):
    """Command option types (subset supported by this bot)."""
    STRING = 3
    INTEGER = 4
    BOOLEAN = 5


_PYTHON_TYPES: dict[OptionType, tuple[type, ...]] = {
    OptionType.STRING: (str,),
    OptionType.INTEGER: (int,),
    OptionType.BOOLEAN: (bool,),
}


# ============================================================================
# INTERACTION STATE MACHINE
# ============================================================================

class InteractionState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    ACKED = "acked"
    DISPATCHED = "dispatched"
    RESPONDED = "responded"
    ESCALATED = "escalated"


_ALLOWED_TRANSITIONS: dict[InteractionState, frozenset[InteractionState]] = {
    InteractionState.RECEIVED: frozenset({InteractionState.VERIFIED}),
    # PING goes straight to RESPONDED
    InteractionState.VERIFIED: frozenset({InteractionState.ACKED, InteractionState.RESPONDED}),
    # missing handler binding escalates without dispatching
    InteractionState.ACKED: frozenset({InteractionState.DISPATCHED, InteractionState.ESCALATED}),
    InteractionState.DISPATCHED: frozenset({InteractionState.RESPONDED, InteractionState.ESCALATED}),
    InteractionState.RESPONDED: frozenset(),
    InteractionState.ESCALATED: frozenset(),
}

TERMINAL_STATES = frozenset({InteractionState.RESPONDED, InteractionState.ESCALATED})


# ============================================================================
# COMMAND DESCRIPTORS
# ============================================================================

_COMMAND_NAME_RE = re.compile(r"^[-_a-z0-9]{1,32}$")


@dataclass(frozen=True)
class OptionSpec:
    """One declared argument of a command."""
    name: str
    description: str
    type: OptionType = OptionType.STRING
    required: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "type": int(self.type),
            "required": self.required,
        }


@dataclass(frozen=True)
class CommandDescriptor:
    """
    Declarative shape of one invocable command.

    Pushed to the platform's command registry at startup; carries no
    per-invocation state.
    """
    name: str
    description: str
    options: tuple[OptionSpec, ...] = ()

    def __post_init__(self) -> None:
        if not _COMMAND_NAME_RE.match(self.name):
            raise ValueError(f"Invalid command name: {self.name!r}")
        if not 1 <= len(self.description) <= 100:
            raise ValueError(f"Command '{self.name}' description must be 1-100 characters")

        seen_optional = False
        names: set[str] = set()
        for opt in self.options:
            if not _COMMAND_NAME_RE.match(opt.name):
                raise ValueError(f"Invalid option name {opt.name!r} on command '{self.name}'")
            if opt.name in names:
                raise ValueError(f"Duplicate option '{opt.name}' on command '{self.name}'")
            names.add(opt.name)
            if opt.required and seen_optional:
                raise ValueError(
                    f"Required option '{opt.name}' follows an optional one on command '{self.name}'"
                )
            seen_optional = seen_optional or not opt.required

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the platform's command registration body."""
        return {
            "name": self.name,
            "description": self.description,
            "type": 1,  # CHAT_INPUT
            "options": [opt.to_payload() for opt in self.options],
        }


# ============================================================================
# INTERACTION
# ============================================================================

@dataclass(frozen=True)
class CommandOption:
    """A named argument value supplied by the invoking user."""
    name: str
    value: OptionValue


@dataclass
class Interaction:
    """
    One inbound invocation from the chat platform.

    Only ``state`` changes after construction; use ``transition()`` so that
    the state machine stays consistent.
    """
    id: str
    kind: InteractionKind
    application_id: str
    token: str = ""
    command_name: Optional[str] = None
    options: list[CommandOption] = field(default_factory=list)
    user_id: Optional[str] = None
    guild_id: Optional[str] = None
    channel_id: Optional[str] = None
    state: InteractionState = InteractionState.RECEIVED

    def transition(self, new_state: InteractionState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Interaction {self.id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def option(self, name: str, default: Any = None) -> Any:
        """Return the value of option ``name`` or ``default``."""
        for opt in self.options:
            if opt.name == name:
                return opt.value
        return default


# ============================================================================
# PARSING
# ============================================================================

def _parse_options(raw_options: Any) -> list[CommandOption]:
    if raw_options is None:
        return []
    if not isinstance(raw_options, list):
        raise ProtocolError("Command options must be a list")

    options: list[CommandOption] = []
    for raw in raw_options:
        if not isinstance(raw, dict) or "name" not in raw:
            raise ProtocolError("Command option is missing a name")
        try:
            opt_type = OptionType(raw.get("type", OptionType.STRING))
        except ValueError as exc:
            raise ProtocolError(f"Unsupported option type: {raw.get('type')!r}") from exc

        value = raw.get("value")
        # bool is a subclass of int; an INTEGER option must not accept true/false
        if not isinstance(value, _PYTHON_TYPES[opt_type]) or (
            opt_type is OptionType.INTEGER and isinstance(value, bool)
        ):
            raise ProtocolError(
                f"Option '{raw['name']}' has value of wrong type for {opt_type.name}"
            )
        options.append(CommandOption(name=str(raw["name"]), value=value))
    return options


def _user_id(payload: dict) -> Optional[str]:
    member = payload.get("member")
    if isinstance(member, dict) and isinstance(member.get("user"), dict):
        return member["user"].get("id")
    user = payload.get("user")
    if isinstance(user, dict):
        return user.get("id")
    return None


def parse_interaction(payload: Any) -> Interaction:
    """
    Build an Interaction from a decoded JSON payload.

    Raises:
        ProtocolError: If the payload does not describe a PING or an
            APPLICATION_COMMAND with command data.
    """
    if not isinstance(payload, dict):
        raise ProtocolError("Interaction payload must be a JSON object")

    try:
        kind = InteractionKind(payload.get("type"))
    except ValueError as exc:
        raise ProtocolError(f"Unsupported interaction type: {payload.get('type')!r}") from exc

    interaction_id = payload.get("id")
    application_id = payload.get("application_id")
    if not interaction_id or not application_id:
        raise ProtocolError("Interaction is missing id or application_id")

    if kind is InteractionKind.PING:
        return Interaction(
            id=str(interaction_id),
            kind=kind,
            application_id=str(application_id),
        )

    data = payload.get("data")
    token = payload.get("token")
    if not isinstance(data, dict) or not data.get("name"):
        raise ProtocolError("Command interaction is missing data.name")
    if not token:
        raise ProtocolError("Command interaction is missing a token")

    return Interaction(
        id=str(interaction_id),
        kind=kind,
        application_id=str(application_id),
        token=str(token),
        command_name=str(data["name"]),
        options=_parse_options(data.get("options")),
        user_id=_user_id(payload),
        guild_id=payload.get("guild_id"),
        channel_id=payload.get("channel_id"),
    )
