"""
Audit Logger

DESIGN DECISION: Every money-affecting command is logged, and so is every
command that was rejected or failed.

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a failed audit write never aborts a command
  whose transaction already committed)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from natillera.errors import (
    ConsistencyError,
    NatilleraError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from natillera.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from natillera.services.storage import AuditStorageInterface


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog (JSON lines) on top of the stdlib logger."""
    logging.basicConfig(format="%(message)s", level=log_level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


_REJECTION_CODES = {
    ValidationError: "validation_error",
    NotFoundError: "not_found",
    ConsistencyError: "consistency_error",
}


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and treasurer visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("natillera.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity is AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_all(self, events: list[AuditEvent]) -> None:
        """Log the events a committed command produced, in order."""
        for event in events:
            await self.log(event)

    async def log_failure(
        self,
        command: str,
        error: Exception,
        details: Optional[dict] = None,
    ) -> None:
        """
        Log a command that did not complete.

        Rejections (validation, missing entity, consistency) are warnings;
        store and unexpected errors are errors.
        """
        if isinstance(error, StoreError):
            event = AuditEventBuilder.store_error(command, str(error))
        elif isinstance(error, NatilleraError):
            code = next(
                (code for cls, code in _REJECTION_CODES.items() if isinstance(error, cls)),
                "rejected",
            )
            event_details = dict(details or {})
            if isinstance(error, ValidationError) and error.issues:
                event_details["issues"] = [
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in error.issues
                ]
            event = AuditEventBuilder.command_rejected(command, str(error), code, event_details)
        else:
            event = AuditEventBuilder.system_error(
                error_type=type(error).__name__,
                error_message=str(error),
                details={"command": command, **(details or {})},
            )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.
    """
    return uuid4()
