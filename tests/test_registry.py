# tests/test_registry.py
"""Tests for command registry install/teardown."""
from __future__ import annotations

import pytest

from interactbot.core.domain import CommandDescriptor, OptionSpec
from interactbot.core.errors import RegistrationError
from interactbot.core.registry import CommandRegistry, SyncMode


class FakePlatformRegistry:
    """In-memory stand-in for the platform's command registration API."""

    def __init__(self, fail_upsert_on: str | None = None, fail_delete_on: str | None = None):
        self.commands: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self._next_id = 1
        self.fail_upsert_on = fail_upsert_on
        self.fail_delete_on = fail_delete_on

    async def upsert_command(self, application_id, command):
        self.calls.append(("upsert", command.name))
        if command.name == self.fail_upsert_on:
            raise RuntimeError("500 from platform")
        existing = self.commands.get(command.name)
        command_id = existing["id"] if existing else str(self._next_id)
        if not existing:
            self._next_id += 1
        self.commands[command.name] = {"id": command_id, **command.to_payload()}
        return self.commands[command.name]

    async def list_commands(self, application_id):
        self.calls.append(("list", application_id))
        return [dict(v) for v in self.commands.values()]

    async def delete_command(self, application_id, command_id):
        name = next(n for n, c in self.commands.items() if c["id"] == command_id)
        self.calls.append(("delete", name))
        if name == self.fail_delete_on:
            raise RuntimeError("cannot delete")
        del self.commands[name]


COMMANDS = [
    CommandDescriptor("version", "Show version"),
    CommandDescriptor(
        "generate", "Generate an image",
        options=(OptionSpec("image-prompt", "prompt", required=True),),
    ),
]


class TestInstall:

    @pytest.mark.asyncio
    async def test_install_upserts_every_command_in_order(self):
        platform = FakePlatformRegistry()
        registry = CommandRegistry(platform, "app")

        result = await registry.sync(COMMANDS, SyncMode.INSTALL)

        assert result.ok
        assert result.synced == ["version", "generate"]
        assert [c for c in platform.calls if c[0] == "upsert"] == [
            ("upsert", "version"), ("upsert", "generate"),
        ]
        assert set(platform.commands) == {"version", "generate"}

    @pytest.mark.asyncio
    async def test_install_twice_is_idempotent(self):
        platform = FakePlatformRegistry()
        registry = CommandRegistry(platform, "app")

        await registry.sync(COMMANDS, SyncMode.INSTALL)
        first = {k: dict(v) for k, v in platform.commands.items()}
        await registry.sync(COMMANDS, SyncMode.INSTALL)

        assert platform.commands == first

    @pytest.mark.asyncio
    async def test_install_failure_is_fatal(self):
        platform = FakePlatformRegistry(fail_upsert_on="version")
        registry = CommandRegistry(platform, "app")

        with pytest.raises(RegistrationError) as exc_info:
            await registry.sync(COMMANDS, SyncMode.INSTALL)

        assert exc_info.value.command_name == "version"
        # Stops at the first failure
        assert ("upsert", "generate") not in platform.calls


class TestTeardown:

    @pytest.mark.asyncio
    async def test_teardown_removes_all(self):
        platform = FakePlatformRegistry()
        registry = CommandRegistry(platform, "app")
        await registry.sync(COMMANDS, SyncMode.INSTALL)

        result = await registry.sync(COMMANDS, SyncMode.TEARDOWN)

        assert sorted(result.synced) == ["generate", "version"]
        assert platform.commands == {}

    @pytest.mark.asyncio
    async def test_teardown_failures_are_not_fatal(self):
        platform = FakePlatformRegistry(fail_delete_on="version")
        registry = CommandRegistry(platform, "app")
        await registry.sync(COMMANDS, SyncMode.INSTALL)

        result = await registry.sync(COMMANDS, SyncMode.TEARDOWN)

        assert result.failed == ["version"]
        assert result.synced == ["generate"]
        assert not result.ok
        assert set(platform.commands) == {"version"}

    @pytest.mark.asyncio
    async def test_teardown_list_failure_is_not_fatal(self):
        class BrokenList(FakePlatformRegistry):
            async def list_commands(self, application_id):
                raise RuntimeError("down")

        registry = CommandRegistry(BrokenList(), "app")
        result = await registry.sync(COMMANDS, SyncMode.TEARDOWN)

        assert not result.ok
        assert result.synced == []

    @pytest.mark.asyncio
    async def test_teardown_skips_entries_without_id(self):
        class NoIds(FakePlatformRegistry):
            async def list_commands(self, application_id):
                return [{"name": "orphan"}]

        result = await CommandRegistry(NoIds(), "app").sync([], SyncMode.TEARDOWN)
        assert result.failed == ["orphan"]
