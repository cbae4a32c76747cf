# interactbot/core/dispatcher.py
"""
Interaction dispatcher: the request state machine.

    RECEIVED → VERIFIED → ACKED → DISPATCHED → RESPONDED | ESCALATED

- Signature failure stops at RECEIVED (HTTP 401, nothing else happens).
- PING goes VERIFIED → RESPONDED with a PONG and is never dispatched.
- Commands get a deferred acknowledgment as the HTTP response. The handler
  only starts from ``after_send``, which the HTTP layer runs once that
  response has been written. It runs on a detached task owned by
  FollowupRunner, not by the request.
- Missing handler binding: ACKED → ESCALATED with a generic user reply.

The platform's acknowledgment window is a few seconds, so nothing before
the acknowledgment may touch the network.
"""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional

from interactbot.core.domain import (
    Interaction,
    InteractionKind,
    InteractionState,
    ResponseType,
    parse_interaction,
)
from interactbot.core.errors import (
    AuthenticationError,
    ConfigurationError,
    InternalError,
    ProtocolError,
)
from interactbot.core.ports import FollowupAPI
from interactbot.core.reporter import ErrorReporter
from interactbot.core.runtime import BotRuntimeConfig, HandlerContext
from interactbot.infra.logging_config import LogContext, get_logger
from interactbot.infra.metrics import BotMetrics
from interactbot.transport.responder import FollowupResponder
from interactbot.transport.signature import SignatureVerifier

logger = get_logger(__name__)

# Interaction tokens stay valid for 15 minutes
DEFAULT_FOLLOWUP_TIMEOUT = 15 * 60


@dataclass
class DispatchResult:
    """Transport-agnostic HTTP answer for one inbound request."""
    status_code: int
    body: dict[str, Any]
    after_send: Optional[Callable[[], Awaitable[None]]] = None
    interaction: Optional[Interaction] = None


# ============================================================================
# DETACHED TASK RUNNER
# ============================================================================

class FollowupRunner:
    """
    Owns the detached follow-up tasks.

    Tasks are strongly referenced until they finish. If the process dies
    mid-flight the follow-up is lost; nothing is persisted or retried.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, None], name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Follow-up task cancelled: {task.get_name()}")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                f"Follow-up task crashed: {task.get_name()}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight follow-ups (graceful shutdown)."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} follow-up task(s) still running after drain timeout")

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


# ============================================================================
# DISPATCHER
# ============================================================================

class InteractionDispatcher:

    def __init__(
        self,
        config: BotRuntimeConfig,
        verifier: SignatureVerifier,
        reporter: ErrorReporter,
        followups: FollowupAPI,
        runner: FollowupRunner | None = None,
        clients: Any = None,
        followup_timeout: float = DEFAULT_FOLLOWUP_TIMEOUT,
    ):
        self._config = config
        self._verifier = verifier
        self._reporter = reporter
        self._followups = followups
        self._runner = runner or FollowupRunner()
        self._clients = clients
        self._followup_timeout = followup_timeout

    @property
    def runner(self) -> FollowupRunner:
        return self._runner

    @property
    def config(self) -> BotRuntimeConfig:
        return self._config

    async def handle(
        self,
        body: bytes,
        signature: str | None,
        timestamp: str | None,
        request_id: str = "unknown",
    ) -> DispatchResult:
        """Verify, parse and acknowledge one inbound request."""
        try:
            self._verifier.check(body, signature, timestamp)
        except AuthenticationError as exc:
            BotMetrics.signature_rejected()
            logger.debug(f"Interaction rejected: {exc}", extra={"request_id": request_id})
            return DispatchResult(401, {"error": "invalid request signature"})

        try:
            interaction = self._parse(body)
        except ProtocolError as exc:
            BotMetrics.protocol_rejected()
            logger.warning(f"Malformed interaction: {exc}", extra={"request_id": request_id})
            self._reporter.escalate(exc)
            return DispatchResult(400, {"error": "malformed interaction"})

        interaction.transition(InteractionState.VERIFIED)
        BotMetrics.interaction_received(interaction.kind.name.lower())

        if interaction.kind is InteractionKind.PING:
            interaction.transition(InteractionState.RESPONDED)
            return DispatchResult(
                200, {"type": int(ResponseType.PONG)}, interaction=interaction,
            )

        LogContext(
            logger,
            interaction_id=interaction.id,
            command=interaction.command_name,
            request_id=request_id,
        ).info(f"Command received: /{interaction.command_name}, options={len(interaction.options)}")

        async def after_send() -> None:
            interaction.transition(InteractionState.ACKED)
            self._runner.spawn(
                self.run_followup(interaction, request_id),
                name=f"followup-{interaction.id}",
            )

        return DispatchResult(
            200,
            {"type": int(ResponseType.DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE)},
            after_send=after_send,
            interaction=interaction,
        )

    def _parse(self, body: bytes) -> Interaction:
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise ProtocolError(f"Interaction body is not valid JSON: {exc}") from exc

        interaction = parse_interaction(payload)
        if interaction.application_id != self._config.application_id:
            raise ProtocolError(
                f"Interaction addressed to application {interaction.application_id}, "
                f"expected {self._config.application_id}"
            )
        return interaction

    async def run_followup(self, interaction: Interaction, request_id: str = "unknown") -> None:
        """Run the bound handler for an acknowledged interaction."""
        responder = FollowupResponder(self._followups, interaction.application_id, interaction.token)
        command = interaction.command_name
        log_ctx = LogContext(
            logger,
            interaction_id=interaction.id,
            command=command,
            request_id=request_id,
        )

        handler = self._config.handler_for(command)
        if handler is None:
            error = ConfigurationError(f"No handler bound for registered command '/{command}'")
            log_ctx.warning(str(error))
            await self._reporter.notify_user(interaction, responder)
            self._reporter.escalate(error, interaction)
            interaction.transition(InteractionState.ESCALATED)
            return

        interaction.transition(InteractionState.DISPATCHED)
        ctx = HandlerContext(
            request_id=request_id,
            deadline=time.monotonic() + self._followup_timeout,
            config=self._config,
            clients=self._clients,
        )

        outcome: Optional[Exception]
        try:
            with BotMetrics.track_handler_time(command or "?"):
                outcome = await asyncio.wait_for(
                    handler(responder, interaction, ctx),
                    timeout=self._followup_timeout,
                )
        except asyncio.TimeoutError:
            log_ctx.warning(f"Handler timed out after {self._followup_timeout:.0f}s")
            outcome = InternalError(f"Handler for /{command} timed out")
        except Exception as exc:
            log_ctx.warning(f"Handler raised {exc.__class__.__name__}", exc_info=True)
            outcome = InternalError(f"Handler for /{command} raised {exc.__class__.__name__}: {exc}")
            outcome.__cause__ = exc

        if outcome is not None and not isinstance(outcome, Exception):
            log_ctx.warning(f"Handler returned {type(outcome).__name__}, expected an exception or None")
            outcome = InternalError(f"Handler for /{command} returned an invalid outcome")

        escalated = await self._reporter.report(interaction, responder, outcome)
        interaction.transition(
            InteractionState.ESCALATED if escalated else InteractionState.RESPONDED
        )
        log_ctx.info(f"Interaction finished: state={interaction.state.value}, replies={responder.sent_count}")
