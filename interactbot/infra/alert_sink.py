# interactbot/infra/alert_sink.py
"""
Operator alert sinks.

The production sink writes one ERROR-severity structured log line per
escalation on the ``interactbot.alerts`` logger. A log-based metric on the
hosting platform counts those lines for the bot and pages the operator
when a threshold is crossed; that alert definition lives outside this repo.

Everything else in the service logs at WARNING or below, so the alert
records are the only ERROR-severity lines in the stream.

``MemoryAlertSink`` keeps records in a list and is meant for tests and
local runs.
"""
from __future__ import annotations

import logging
from threading import Lock

from interactbot.core.ports import AlertRecord
from interactbot.infra.logging_config import get_logger

ALERT_LOGGER_NAME = "interactbot.alerts"

_SEVERITY_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class LoggingAlertSink:
    """Emit alerts as structured log records."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or get_logger(ALERT_LOGGER_NAME)

    def emit(self, record: AlertRecord) -> None:
        level = _SEVERITY_LEVELS.get(record.severity.upper(), logging.ERROR)
        extra = {
            "bot": record.bot,
            "error_type": record.error_type,
        }
        if record.interaction_id:
            extra["interaction_id"] = record.interaction_id
        if record.command:
            extra["command"] = record.command

        self._logger.log(
            level,
            f"Operator alert: {record.error_type}: {record.message}",
            extra=extra,
        )


class MemoryAlertSink:
    """Collect alerts in memory."""

    def __init__(self):
        self._records: list[AlertRecord] = []
        self._lock = Lock()

    def emit(self, record: AlertRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> list[AlertRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
