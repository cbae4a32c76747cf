# interactbot/core/reporter.py
"""
Dual-channel error reporting.

A handler's return value is the only escalation signal:

- ``None``      → the handler dealt with the outcome (including user
                  mistakes it already explained to the user). No alert.
- an exception → (a) the user gets a generic failure notice unless the
                  handler already replied, and (b) exactly one ERROR alert
                  record goes to the operator sink.

Both actions are fire-and-forget and never retried. The error message is
never inspected to decide whether to escalate.
"""
from __future__ import annotations

from typing import Optional

from interactbot.core.domain import Interaction
from interactbot.core.ports import AlertRecord, AlertSink, Responder
from interactbot.infra.logging_config import LogContext, get_logger
from interactbot.infra.metrics import BotMetrics

logger = get_logger(__name__)

GENERIC_FAILURE_MESSAGE = (
    "Something went wrong while running /{command}. "
    "The bot operator has been notified."
)


def generic_failure_message(command: str | None) -> str:
    return GENERIC_FAILURE_MESSAGE.format(command=command or "this command")


class ErrorReporter:

    def __init__(self, sink: AlertSink, bot_name: str):
        self._sink = sink
        self._bot_name = bot_name

    async def report(
        self,
        interaction: Interaction,
        responder: Responder,
        outcome: Optional[Exception],
    ) -> bool:
        """
        Route a handler outcome.

        Returns:
            True if the outcome was escalated to the operator.
        """
        log_ctx = LogContext(
            logger,
            interaction_id=interaction.id,
            command=interaction.command_name,
        )

        if outcome is None:
            if not responder.replied:
                # Contract breach, but not an operator-facing error
                log_ctx.warning("Handler returned without replying to the user")
            BotMetrics.handler_outcome(interaction.command_name or "?", "ok")
            return False

        BotMetrics.handler_outcome(interaction.command_name or "?", "error")

        if not responder.replied:
            await self.notify_user(interaction, responder)

        self.escalate(outcome, interaction)
        return True

    async def notify_user(self, interaction: Interaction, responder: Responder) -> None:
        """Send the generic failure notice. Failures are logged only."""
        try:
            await responder.send(generic_failure_message(interaction.command_name))
        except Exception as exc:
            LogContext(
                logger,
                interaction_id=interaction.id,
                command=interaction.command_name,
            ).warning(f"Could not deliver failure notice to user: {exc.__class__.__name__}: {exc}")

    def escalate(self, error: BaseException, interaction: Interaction | None = None) -> None:
        """Write exactly one alert record for ``error``."""
        record = AlertRecord(
            bot=self._bot_name,
            error_type=error.__class__.__name__,
            message=str(error) or error.__class__.__name__,
            interaction_id=interaction.id if interaction else None,
            command=interaction.command_name if interaction else None,
        )
        try:
            self._sink.emit(record)
        except Exception:
            # Stands in for the lost alert: still one ERROR record per escalation
            logger.error(
                f"Alert sink failed to record escalation: {record.error_type}: {record.message}",
                exc_info=True,
            )
            return
        BotMetrics.alert_emitted(record.error_type)
