# tests/conftest.py
"""Pytest configuration and fixtures"""
import json
import sys
import time
from pathlib import Path
from typing import Sequence

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from interactbot.core.dispatcher import FollowupRunner, InteractionDispatcher  # noqa: E402
from interactbot.core.domain import CommandDescriptor  # noqa: E402
from interactbot.core.ports import Attachment  # noqa: E402
from interactbot.core.reporter import ErrorReporter  # noqa: E402
from interactbot.core.runtime import BotRuntimeConfig  # noqa: E402
from interactbot.infra.alert_sink import MemoryAlertSink  # noqa: E402
from interactbot.transport.signature import SignatureVerifier  # noqa: E402

APPLICATION_ID = "111122223333"


# ============================================================================
# Signing
# ============================================================================

class Signer:
    """Signs bodies the way the platform does."""

    def __init__(self):
        self._key = Ed25519PrivateKey.generate()
        self.public_key_hex = self._key.public_key().public_bytes(
            serialization.Encoding.Raw,
            serialization.PublicFormat.Raw,
        ).hex()

    def sign(self, body: bytes, timestamp: str | None = None) -> tuple[str, str]:
        ts = timestamp or str(int(time.time()))
        return self._key.sign(ts.encode() + body).hex(), ts


@pytest.fixture
def signer():
    return Signer()


# ============================================================================
# Fakes
# ============================================================================

class FakeFollowupAPI:
    """Records follow-up calls; optionally fails them."""

    def __init__(self, events: list | None = None, fail: Exception | None = None):
        self.calls: list[dict] = []
        self.events = events if events is not None else []
        self.fail = fail

    async def _record(self, kind, application_id, token, content, files):
        if self.fail is not None:
            raise self.fail
        self.calls.append({
            "kind": kind,
            "application_id": application_id,
            "token": token,
            "content": content,
            "files": list(files),
        })
        self.events.append(f"followup:{kind}")
        return {"id": str(len(self.calls))}

    async def edit_original_response(self, application_id, token, content=None,
                                     files: Sequence[Attachment] = ()):
        return await self._record("edit", application_id, token, content, files)

    async def create_followup_message(self, application_id, token, content=None,
                                      files: Sequence[Attachment] = ()):
        return await self._record("create", application_id, token, content, files)


class FakeResponder:
    def __init__(self, fail: Exception | None = None):
        self.messages: list[tuple[str | None, list]] = []
        self.fail = fail

    @property
    def replied(self) -> bool:
        return bool(self.messages)

    async def send(self, content=None, files=()):
        if self.fail is not None:
            raise self.fail
        self.messages.append((content, list(files)))


@pytest.fixture
def followup_api():
    return FakeFollowupAPI()


@pytest.fixture
def alert_sink():
    return MemoryAlertSink()


# ============================================================================
# Runtime config / dispatcher builders
# ============================================================================

async def _ok_handler(responder, interaction, ctx):
    await responder.send("ok")
    return None


def make_runtime(
    public_key_hex: str,
    alert_sink,
    bindings: dict | None = None,
    commands: list | None = None,
    **kwargs,
) -> BotRuntimeConfig:
    bindings = bindings if bindings is not None else {"ping-test": _ok_handler}
    if commands is None:
        commands = [
            CommandDescriptor(name=name, description=f"{name} command")
            for name in bindings
        ]
    return BotRuntimeConfig.build(
        application_id=APPLICATION_ID,
        public_key=public_key_hex,
        bot_name="test-bot",
        commands=commands,
        bindings=bindings,
        alert_sink=alert_sink,
        **kwargs,
    )


def make_dispatcher(runtime: BotRuntimeConfig, followups, clients=None, timeout=5.0) -> InteractionDispatcher:
    return InteractionDispatcher(
        config=runtime,
        verifier=SignatureVerifier(runtime.public_key),
        reporter=ErrorReporter(runtime.alert_sink, runtime.bot_name),
        followups=followups,
        runner=FollowupRunner(),
        clients=clients,
        followup_timeout=timeout,
    )


def command_body(name: str, options: list | None = None, interaction_id: str = "9001") -> bytes:
    payload = {
        "id": interaction_id,
        "application_id": APPLICATION_ID,
        "type": 2,
        "token": "interaction-token-abc",
        "data": {"id": "55", "name": name, "options": options or []},
        "member": {"user": {"id": "4242"}},
        "channel_id": "777",
        "guild_id": "888",
    }
    return json.dumps(payload).encode()


def ping_body() -> bytes:
    return json.dumps({"id": "1", "application_id": APPLICATION_ID, "type": 1}).encode()
