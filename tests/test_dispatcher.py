# tests/test_dispatcher.py
"""Tests for the interaction request state machine."""
from __future__ import annotations

import asyncio
import json
import logging

import pytest

from conftest import (
    APPLICATION_ID,
    FakeFollowupAPI,
    command_body,
    make_dispatcher,
    make_runtime,
    ping_body,
)
from interactbot.core.dispatcher import FollowupRunner
from interactbot.core.domain import CommandDescriptor, InteractionState
from interactbot.core.errors import InternalError
from interactbot.core.reporter import generic_failure_message


async def _deliver(dispatcher, signer, body):
    """Run one request the way the HTTP layer does: respond, then after_send."""
    sig, ts = signer.sign(body)
    result = await dispatcher.handle(body, sig, ts, request_id="req-1")
    if result.after_send is not None:
        await result.after_send()
    await dispatcher.runner.drain(timeout=5)
    return result


# ============================================================================
# Verification and PING
# ============================================================================

class TestVerification:

    @pytest.mark.asyncio
    async def test_tampered_body_rejected_without_handler_call(self, signer, followup_api, alert_sink):
        calls = []

        async def handler(responder, interaction, ctx):
            calls.append(interaction.id)
            return None

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, followup_api)

        body = command_body("ping-test")
        sig, ts = signer.sign(body)
        result = await dispatcher.handle(body + b" ", sig, ts)

        assert result.status_code == 401
        assert result.after_send is None
        assert result.interaction is None
        await dispatcher.runner.drain()
        assert calls == []
        assert followup_api.calls == []
        assert alert_sink.records == []

    @pytest.mark.asyncio
    async def test_authentication_error_stops_at_boundary(self, signer, followup_api, alert_sink, caplog):
        from interactbot.infra.metrics import get_metrics_collector

        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), followup_api)
        before = get_metrics_collector().get_counter("interactions_rejected", reason="signature")

        with caplog.at_level(logging.DEBUG, logger="interactbot.core.dispatcher"):
            result = await dispatcher.handle(ping_body(), "ab" * 64, "1700000000")

        assert result.status_code == 401
        assert result.body == {"error": "invalid request signature"}
        assert get_metrics_collector().get_counter("interactions_rejected", reason="signature") == before + 1
        assert "Signature does not match" in caplog.text
        assert alert_sink.records == []

    @pytest.mark.asyncio
    async def test_missing_signature_headers(self, signer, followup_api, alert_sink):
        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), followup_api)
        result = await dispatcher.handle(ping_body(), None, None)
        assert result.status_code == 401

    @pytest.mark.asyncio
    async def test_ping_answered_with_pong(self, signer, followup_api, alert_sink):
        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), followup_api)

        result = await _deliver(dispatcher, signer, ping_body())

        assert result.status_code == 200
        assert result.body == {"type": 1}
        assert result.after_send is None
        assert result.interaction.state is InteractionState.RESPONDED
        assert dispatcher.runner.pending == 0
        assert followup_api.calls == []

    @pytest.mark.asyncio
    async def test_malformed_json_is_rejected_and_escalated(self, signer, followup_api, alert_sink):
        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), followup_api)

        result = await _deliver(dispatcher, signer, b"{not json")

        assert result.status_code == 400
        assert len(alert_sink.records) == 1
        assert alert_sink.records[0].error_type == "ProtocolError"

    @pytest.mark.asyncio
    async def test_wrong_application_id_is_rejected(self, signer, followup_api, alert_sink):
        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), followup_api)
        body = json.dumps({"id": "1", "application_id": "someone-else", "type": 1}).encode()

        result = await _deliver(dispatcher, signer, body)

        assert result.status_code == 400
        assert len(alert_sink.records) == 1

    @pytest.mark.asyncio
    async def test_unknown_interaction_type_is_rejected(self, signer, followup_api, alert_sink):
        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), followup_api)
        body = json.dumps({"id": "1", "application_id": APPLICATION_ID, "type": 3}).encode()

        result = await _deliver(dispatcher, signer, body)

        assert result.status_code == 400


# ============================================================================
# Acknowledgment ordering
# ============================================================================

class TestAcknowledgment:

    @pytest.mark.asyncio
    async def test_deferred_ack_returned_before_handler_runs(self, signer, alert_sink):
        events = []
        api = FakeFollowupAPI(events=events)

        async def handler(responder, interaction, ctx):
            events.append("handler:start")
            await responder.send("done")
            return None

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, api)

        body = command_body("ping-test")
        sig, ts = signer.sign(body)
        result = await dispatcher.handle(body, sig, ts)

        assert result.status_code == 200
        assert result.body == {"type": 5}
        assert result.interaction.state is InteractionState.VERIFIED
        # Nothing starts until the acknowledgment has been sent
        await asyncio.sleep(0)
        assert events == []
        assert dispatcher.runner.pending == 0

        events.append("ack:sent")
        await result.after_send()
        await dispatcher.runner.drain(timeout=5)

        assert events == ["ack:sent", "handler:start", "followup:edit"]

    @pytest.mark.asyncio
    async def test_handle_returns_while_handler_still_running(self, signer, followup_api, alert_sink):
        release = asyncio.Event()

        async def slow_handler(responder, interaction, ctx):
            await release.wait()
            await responder.send("finally")
            return None

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": slow_handler})
        dispatcher = make_dispatcher(runtime, followup_api)

        body = command_body("ping-test")
        sig, ts = signer.sign(body)
        result = await dispatcher.handle(body, sig, ts)
        await result.after_send()
        await asyncio.sleep(0)

        assert dispatcher.runner.pending == 1
        assert result.interaction.state is InteractionState.DISPATCHED

        release.set()
        await dispatcher.runner.drain(timeout=5)
        assert result.interaction.state is InteractionState.RESPONDED


# ============================================================================
# Handler outcomes
# ============================================================================

class TestHandlerOutcomes:

    @pytest.mark.asyncio
    async def test_success_means_one_reply_and_no_alert(self, signer, followup_api, alert_sink):
        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), followup_api)

        result = await _deliver(dispatcher, signer, command_body("ping-test"))

        assert result.interaction.state is InteractionState.RESPONDED
        assert [c["content"] for c in followup_api.calls] == ["ok"]
        assert followup_api.calls[0]["kind"] == "edit"
        assert followup_api.calls[0]["token"] == "interaction-token-abc"
        assert followup_api.calls[0]["application_id"] == APPLICATION_ID
        assert alert_sink.records == []

    @pytest.mark.asyncio
    async def test_handled_user_error_is_not_escalated(self, signer, followup_api, alert_sink):
        async def handler(responder, interaction, ctx):
            await responder.send("That prompt was rejected.")
            return None

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, followup_api)

        await _deliver(dispatcher, signer, command_body("ping-test"))

        assert len(followup_api.calls) == 1
        assert alert_sink.records == []

    @pytest.mark.asyncio
    async def test_returned_error_is_escalated_once(self, signer, followup_api, alert_sink):
        async def handler(responder, interaction, ctx):
            await responder.send("Sorry, image generation failed.")
            return InternalError("image payload was not valid base64")

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, followup_api)

        result = await _deliver(dispatcher, signer, command_body("ping-test"))

        assert result.interaction.state is InteractionState.ESCALATED
        assert [c["content"] for c in followup_api.calls] == ["Sorry, image generation failed."]
        assert len(alert_sink.records) == 1
        record = alert_sink.records[0]
        assert record.error_type == "InternalError"
        assert record.command == "ping-test"
        assert record.interaction_id == "9001"

    @pytest.mark.asyncio
    async def test_returned_error_without_reply_gets_generic_message(self, signer, followup_api, alert_sink):
        async def handler(responder, interaction, ctx):
            return InternalError("quietly broken")

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, followup_api)

        await _deliver(dispatcher, signer, command_body("ping-test"))

        assert [c["content"] for c in followup_api.calls] == [generic_failure_message("ping-test")]
        assert len(alert_sink.records) == 1

    @pytest.mark.asyncio
    async def test_raised_exception_is_wrapped_and_escalated(self, signer, followup_api, alert_sink):
        async def handler(responder, interaction, ctx):
            raise KeyError("missing")

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, followup_api)

        result = await _deliver(dispatcher, signer, command_body("ping-test"))

        assert result.interaction.state is InteractionState.ESCALATED
        assert [c["content"] for c in followup_api.calls] == [generic_failure_message("ping-test")]
        assert len(alert_sink.records) == 1
        assert alert_sink.records[0].error_type == "InternalError"
        assert "KeyError" in alert_sink.records[0].message

    @pytest.mark.asyncio
    async def test_handler_timeout_is_escalated(self, signer, followup_api, alert_sink):
        async def handler(responder, interaction, ctx):
            await asyncio.sleep(10)
            return None

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, followup_api, timeout=0.05)

        result = await _deliver(dispatcher, signer, command_body("ping-test"))

        assert result.interaction.state is InteractionState.ESCALATED
        assert len(alert_sink.records) == 1
        assert "timed out" in alert_sink.records[0].message

    @pytest.mark.asyncio
    async def test_non_exception_return_is_escalated(self, signer, followup_api, alert_sink):
        async def handler(responder, interaction, ctx):
            await responder.send("ok")
            return "fine"

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, followup_api)

        result = await _deliver(dispatcher, signer, command_body("ping-test"))

        assert result.interaction.state is InteractionState.ESCALATED
        assert len(alert_sink.records) == 1

    @pytest.mark.asyncio
    async def test_handler_receives_context(self, signer, followup_api, alert_sink):
        seen = {}
        clients = object()

        async def handler(responder, interaction, ctx):
            seen["ctx"] = ctx
            seen["interaction"] = interaction
            await responder.send("ok")
            return None

        runtime = make_runtime(signer.public_key_hex, alert_sink, bindings={"ping-test": handler})
        dispatcher = make_dispatcher(runtime, followup_api, clients=clients)

        await _deliver(
            dispatcher, signer,
            command_body("ping-test", options=[{"name": "text", "type": 3, "value": "hi"}]),
        )

        assert seen["ctx"].request_id == "req-1"
        assert seen["ctx"].clients is clients
        assert seen["ctx"].config is runtime
        assert seen["ctx"].remaining > 0
        assert seen["interaction"].option("text") == "hi"
        assert seen["interaction"].user_id == "4242"


# ============================================================================
# Missing bindings
# ============================================================================

class TestMissingBinding:

    @pytest.mark.asyncio
    async def test_unregistered_command_is_escalated(self, signer, followup_api, alert_sink):
        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), followup_api)

        result = await _deliver(dispatcher, signer, command_body("ghost"))

        assert result.status_code == 200
        assert result.body == {"type": 5}
        assert result.interaction.state is InteractionState.ESCALATED
        assert [c["content"] for c in followup_api.calls] == [generic_failure_message("ghost")]
        assert len(alert_sink.records) == 1
        assert alert_sink.records[0].error_type == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_followup_delivery_failure_still_alerts(self, signer, alert_sink):
        api = FakeFollowupAPI(fail=RuntimeError("token expired"))
        dispatcher = make_dispatcher(make_runtime(signer.public_key_hex, alert_sink), api)

        result = await _deliver(dispatcher, signer, command_body("ghost"))

        assert result.interaction.state is InteractionState.ESCALATED
        assert len(alert_sink.records) == 1


# ============================================================================
# Runner
# ============================================================================

class TestFollowupRunner:

    @pytest.mark.asyncio
    async def test_crashing_task_is_released(self):
        runner = FollowupRunner()

        async def crash():
            raise RuntimeError("boom")

        runner.spawn(crash(), name="crash")
        await runner.drain(timeout=1)
        await asyncio.sleep(0)
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        runner = FollowupRunner()
        runner.spawn(asyncio.sleep(10), name="sleeper")
        assert runner.pending == 1

        await runner.cancel_all()
        await asyncio.sleep(0)
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_drain_with_no_tasks(self):
        await FollowupRunner().drain(timeout=0.1)


def test_descriptor_used_by_runtime_matches_bindings(signer, alert_sink):
    runtime = make_runtime(
        signer.public_key_hex,
        alert_sink,
        commands=[CommandDescriptor(name="ping-test", description="Ping")],
    )
    assert runtime.command_names == ["ping-test"]
