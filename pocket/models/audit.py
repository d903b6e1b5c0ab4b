"""
Audit Models for Pocket

Every significant action in the system is logged for audit purposes:
receipt capture, categorization, bank linking and sync, pattern detection
and assistant answers.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from pocket.models.common import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of a user action has its own event type.
    """
    # Receipt capture
    RECEIPT_UPLOADED = "receipt_uploaded"
    OCR_COMPLETED = "ocr_completed"
    OCR_FAILED = "ocr_failed"
    RECEIPT_REJECTED = "receipt_rejected"

    # Validation
    SCHEMA_VALIDATION_FAILED = "schema_validation_failed"
    SEMANTIC_VALIDATION_FAILED = "semantic_validation_failed"

    # Human confirmation
    USER_CONFIRMED = "user_confirmed"
    USER_REJECTED = "user_rejected"

    # Persistence
    EXPENSE_SAVED = "expense_saved"
    EXPENSE_DELETED = "expense_deleted"

    # Categorization
    EXPENSE_CATEGORIZED = "expense_categorized"
    ALIAS_LEARNED = "alias_learned"

    # Open Finance
    BANK_CONNECTION_STARTED = "bank_connection_started"
    BANK_CONNECTION_RESULT = "bank_connection_result"
    BANK_ITEM_SYNCED = "bank_item_synced"
    BANK_ITEM_DELETED = "bank_item_deleted"
    TRANSACTIONS_SYNCED = "transactions_synced"
    WEBHOOK_RECEIVED = "webhook_received"

    # Insights
    PATTERNS_DETECTED = "patterns_detected"
    ASSISTANT_ANSWERED = "assistant_answered"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


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
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about? Provider ids are strings, ours are UUIDs.
    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'receipt', 'bank_item')"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one receipt capture)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.receipt_uploaded(user_id, url, correlation_id)
        event = AuditEventBuilder.user_confirmed(user_id, expense_id, extraction_id, correlation_id)
    """

    @staticmethod
    def receipt_uploaded(
        user_id: str,
        image_url: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_UPLOADED,
            user_id=user_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description="Receipt photo uploaded",
            details={"image_url": image_url},
            is_user_action=True,
        )

    @staticmethod
    def ocr_completed(
        extraction_id: UUID,
        confidence: float,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_COMPLETED,
            entity_type="extraction",
            entity_id=str(extraction_id),
            correlation_id=correlation_id,
            description=f"OCR completed with {confidence:.0%} confidence",
            details={"confidence_score": confidence},
        )

    @staticmethod
    def receipt_rejected(
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            correlation_id=correlation_id,
            description="Image rejected: not a readable receipt",
            details={"reason": reason},
        )

    @staticmethod
    def validation_failed(
        extraction_id: UUID,
        stage: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.SCHEMA_VALIDATION_FAILED
            if stage == "schema"
            else AuditEventType.SEMANTIC_VALIDATION_FAILED
        )
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            entity_type="extraction",
            entity_id=str(extraction_id),
            correlation_id=correlation_id,
            description=f"{stage.capitalize()} validation failed with {len(issues)} issues",
            details={"stage": stage, "issues": issues},
        )

    @staticmethod
    def user_confirmed(
        user_id: str,
        expense_id: UUID,
        extraction_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_CONFIRMED,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description="User confirmed extracted receipt data",
            details={"extraction_id": str(extraction_id)},
            is_user_action=True,
        )

    @staticmethod
    def user_rejected(
        user_id: str,
        extraction_id: UUID,
        reason: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REJECTED,
            user_id=user_id,
            entity_type="extraction",
            entity_id=str(extraction_id),
            correlation_id=correlation_id,
            description="User rejected extracted receipt data",
            details={"reason": reason or "No reason provided"},
            is_user_action=True,
        )

    @staticmethod
    def expense_saved(
        user_id: str,
        expense_id: UUID,
        establishment: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_SAVED,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Expense saved: {establishment} - R$ {amount}",
            details={"establishment": establishment, "amount": amount},
        )

    @staticmethod
    def expense_categorized(
        user_id: Optional[str],
        establishment: str,
        category: str,
        source: str,
        confidence: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CATEGORIZED,
            user_id=user_id,
            entity_type="categorization",
            correlation_id=correlation_id,
            description=f"{establishment} categorized as {category} ({source})",
            details={
                "establishment": establishment,
                "category": category,
                "source": source,
                "confidence": confidence,
            },
        )

    @staticmethod
    def alias_learned(
        user_id: str,
        alias_key: str,
        category: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALIAS_LEARNED,
            user_id=user_id,
            entity_type="merchant_alias",
            entity_id=alias_key,
            description=f"Learned merchant alias {alias_key} -> {category}",
            details={"category": category},
            is_user_action=True,
        )

    @staticmethod
    def bank_connection_started(
        user_id: str,
        connector_id: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BANK_CONNECTION_STARTED,
            user_id=user_id,
            entity_type="connector",
            entity_id=str(connector_id),
            correlation_id=correlation_id,
            description=f"Bank connection started for connector {connector_id}",
            is_user_action=True,
        )

    @staticmethod
    def bank_connection_result(
        user_id: str,
        item_id: Optional[str],
        outcome: str,
        correlation_id: UUID,
        message: Optional[str] = None,
    ) -> AuditEvent:
        failed = outcome in ("login_error", "failed", "no_accounts")
        return AuditEvent(
            event_type=AuditEventType.BANK_CONNECTION_RESULT,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="bank_item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Bank connection outcome: {outcome}",
            details={"outcome": outcome},
            error_message=message if failed else None,
        )

    @staticmethod
    def bank_item_synced(
        user_id: str,
        item_id: str,
        status: str,
        account_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BANK_ITEM_SYNCED,
            user_id=user_id,
            entity_type="bank_item",
            entity_id=item_id,
            description=f"Bank item synced with {account_count} accounts",
            details={"status": status, "account_count": account_count},
        )

    @staticmethod
    def bank_item_deleted(user_id: str, item_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BANK_ITEM_DELETED,
            user_id=user_id,
            entity_type="bank_item",
            entity_id=item_id,
            description="Bank connection removed",
            is_user_action=True,
        )

    @staticmethod
    def transactions_synced(
        user_id: str,
        account_id: str,
        total: int,
        saved: int,
        skipped: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_SYNCED,
            user_id=user_id,
            entity_type="bank_account",
            entity_id=account_id,
            description=f"Transactions synced: {saved} new, {skipped} already stored",
            details={"total": total, "saved": saved, "skipped": skipped},
        )

    @staticmethod
    def webhook_received(event: str, item_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WEBHOOK_RECEIVED,
            entity_type="bank_item",
            entity_id=item_id,
            description=f"Webhook received: {event}",
            details={"event": event},
        )

    @staticmethod
    def patterns_detected(
        user_id: str,
        expenses_analyzed: int,
        pattern_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PATTERNS_DETECTED,
            user_id=user_id,
            entity_type="patterns",
            description=f"{pattern_count} patterns detected from {expenses_analyzed} expenses",
            details={
                "expenses_analyzed": expenses_analyzed,
                "patterns_detected": pattern_count,
            },
        )

    @staticmethod
    def assistant_answered(
        user_id: str,
        conversation_id: UUID,
        used_fallback: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ASSISTANT_ANSWERED,
            user_id=user_id,
            entity_type="conversation",
            entity_id=str(conversation_id),
            correlation_id=correlation_id,
            description="Assistant answered a question",
            details={"used_fallback": used_fallback},
            is_user_action=True,
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

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
