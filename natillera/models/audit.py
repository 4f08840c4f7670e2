"""
Audit Models for the Natillera ledger

Every money-affecting command, and every rejected or failed one, is logged
for audit purposes. This provides:
1. Traceability of every balance change
2. Debugging information when a command fails
3. Accountability towards the members

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
An audit event is emitted only after the enclosing transaction commits.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger-affecting command has its own event type.
    """
    # Cash ledger
    MOVEMENT_APPENDED = "movement_appended"
    MOVEMENT_REVERSED = "movement_reversed"

    # Late fees
    LATE_FEE_ASSESSED = "late_fee_assessed"
    LATE_FEE_CLEARED = "late_fee_cleared"
    LATE_FEE_PAYMENT_ALLOCATED = "late_fee_payment_allocated"
    LATE_FEE_PAYMENT_REVERSED = "late_fee_payment_reversed"

    # Loans
    LOAN_OPENED = "loan_opened"
    LOAN_MOVEMENT_APPLIED = "loan_movement_applied"
    LOAN_MOVEMENT_AMENDED = "loan_movement_amended"

    # Liquidation
    LIQUIDATION_COMMITTED = "liquidation_committed"
    LIQUIDATION_EDITED = "liquidation_edited"
    LIQUIDATION_REVERTED = "liquidation_reverted"

    # Failures
    COMMAND_REJECTED = "command_rejected"
    STORE_ERROR = "store_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'movement', 'late_fee', 'loan')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a record update and its movement)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


def _money(value: Decimal) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.movement_appended(movement_id, "income", ...)
        event = AuditEventBuilder.command_rejected("allocate_payment", "...")
    """

    @staticmethod
    def movement_appended(
        movement_id: UUID,
        kind: str,
        category: str,
        amount: Decimal,
        resulting_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MOVEMENT_APPENDED,
            entity_type="movement",
            entity_id=movement_id,
            correlation_id=correlation_id,
            description=f"Movement appended: {kind} {amount}",
            details={
                "kind": kind,
                "category": category,
                "amount": _money(amount),
                "resulting_balance": _money(resulting_balance),
            },
        )

    @staticmethod
    def movement_reversed(
        movement_id: UUID,
        reversal_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MOVEMENT_REVERSED,
            entity_type="movement",
            entity_id=movement_id,
            correlation_id=correlation_id,
            description=f"Movement reversed by {reversal_id}",
            details={
                "reversal_id": str(reversal_id),
                "amount": _money(amount),
            },
        )

    @staticmethod
    def late_fee_assessed(
        record_id: UUID,
        member_key: str,
        installment_number: int,
        days_late: int,
        total_sanction: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LATE_FEE_ASSESSED,
            entity_type="late_fee",
            entity_id=record_id,
            description=f"Late fee assessed: {member_key} installment {installment_number}",
            details={
                "member_key": member_key,
                "installment_number": installment_number,
                "days_late": days_late,
                "total_sanction": _money(total_sanction),
            },
        )

    @staticmethod
    def late_fee_cleared(
        record_id: UUID,
        member_key: str,
        installment_number: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LATE_FEE_CLEARED,
            entity_type="late_fee",
            entity_id=record_id,
            description=f"Late fee cleared: {member_key} installment {installment_number}",
            details={
                "member_key": member_key,
                "installment_number": installment_number,
            },
        )

    @staticmethod
    def late_fee_payment_allocated(
        entry_id: UUID,
        record_id: UUID,
        amount: Decimal,
        remaining: Decimal,
        movement_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LATE_FEE_PAYMENT_ALLOCATED,
            entity_type="late_fee_payment",
            entity_id=entry_id,
            correlation_id=record_id,
            description=f"Late fee payment allocated: {amount}",
            details={
                "amount": _money(amount),
                "remaining": _money(remaining),
                "movement_id": str(movement_id),
            },
        )

    @staticmethod
    def late_fee_payment_reversed(
        entry_id: UUID,
        record_id: UUID,
        amount: Decimal,
        movement_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LATE_FEE_PAYMENT_REVERSED,
            severity=AuditSeverity.WARNING,
            entity_type="late_fee_payment",
            entity_id=entry_id,
            correlation_id=record_id,
            description=f"Late fee payment reversed: {amount}",
            details={
                "amount": _money(amount),
                "movement_id": str(movement_id),
            },
        )

    @staticmethod
    def loan_opened(
        loan_id: UUID,
        borrower_name: str,
        principal: Decimal,
        monthly_rate_percent: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_OPENED,
            entity_type="loan",
            entity_id=loan_id,
            correlation_id=loan_id,
            description=f"Loan opened for {borrower_name}: {principal}",
            details={
                "borrower_name": borrower_name,
                "principal": _money(principal),
                "monthly_rate_percent": _money(monthly_rate_percent),
            },
        )

    @staticmethod
    def loan_movement_applied(
        movement_id: UUID,
        loan_id: UUID,
        movement_type: str,
        amount_paid: Decimal,
        interest_accrued: Decimal,
        outstanding_principal: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_MOVEMENT_APPLIED,
            entity_type="loan_movement",
            entity_id=movement_id,
            correlation_id=loan_id,
            description=f"Loan movement applied: {movement_type} {amount_paid}",
            details={
                "movement_type": movement_type,
                "amount_paid": _money(amount_paid),
                "interest_accrued": _money(interest_accrued),
                "outstanding_principal": _money(outstanding_principal),
            },
        )

    @staticmethod
    def loan_movement_amended(
        movement_id: UUID,
        loan_id: UUID,
        amount_difference: Decimal,
        replayed: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_MOVEMENT_AMENDED,
            severity=AuditSeverity.WARNING,
            entity_type="loan_movement",
            entity_id=movement_id,
            correlation_id=loan_id,
            description=f"Loan movement amended, {replayed} later movements replayed",
            details={
                "amount_difference": _money(amount_difference),
                "replayed": replayed,
            },
        )

    @staticmethod
    def liquidation_committed(
        batch_id: UUID,
        member_keys: list[str],
        net_payable: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIQUIDATION_COMMITTED,
            entity_type="liquidation",
            entity_id=batch_id,
            description=f"Liquidation committed for {len(member_keys)} member(s)",
            details={
                "member_keys": member_keys,
                "net_payable": _money(net_payable),
            },
        )

    @staticmethod
    def liquidation_edited(
        batch_id: UUID,
        changed_fields: list[str],
        net_payable: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIQUIDATION_EDITED,
            severity=AuditSeverity.WARNING,
            entity_type="liquidation",
            entity_id=batch_id,
            description="Liquidation edited",
            details={
                "changed_fields": changed_fields,
                "net_payable": _money(net_payable),
            },
        )

    @staticmethod
    def liquidation_reverted(
        batch_id: UUID,
        member_keys: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIQUIDATION_REVERTED,
            severity=AuditSeverity.WARNING,
            entity_type="liquidation",
            entity_id=batch_id,
            description=f"Liquidation reverted for {len(member_keys)} member(s)",
            details={
                "member_keys": member_keys,
            },
        )

    @staticmethod
    def command_rejected(
        command: str,
        reason: str,
        error_code: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_REJECTED,
            severity=AuditSeverity.WARNING,
            description=f"Command rejected: {command}",
            error_code=error_code,
            error_message=reason,
            details={"command": command, **(details or {})},
        )

    @staticmethod
    def store_error(
        command: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Store error during {command}",
            error_message=error_message,
            details={"command": command},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
