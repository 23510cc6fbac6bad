"""Structured logging for operations."""

import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from congregate.app.db.context import AccessContext


class JsonFormatter(logging.Formatter):
    """JSON log formatter emitting stable keys plus the structured extra."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        structured = getattr(record, "structured", None)
        if isinstance(structured, dict):
            payload.update(structured)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure the root logger once; repeated calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    if any(getattr(handler, "_congregate", False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler._congregate = True  # type: ignore[attr-defined]
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


class StructuredOperationLogger:
    """Structured logger for operation outcomes."""

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def log_operation(
        self,
        ctx: AccessContext | None,
        operation: str,
        outcome: str,
        **fields: Any,
    ) -> None:
        """Log an operation outcome with structured data."""
        log_data: dict[str, Any] = {
            "operation": operation,
            "outcome": outcome,
            "actor_id": str(ctx.actor_id) if ctx else None,
            "role": ctx.role.value if ctx else None,
        }
        for key, value in fields.items():
            log_data[key] = str(value) if isinstance(value, UUID) else value

        log_msg = f"Operation: {operation} - {outcome}"

        if outcome in ("success", "noop"):
            self._logger.info(log_msg, extra={"structured": log_data})
        else:
            self._logger.warning(log_msg, extra={"structured": log_data})
