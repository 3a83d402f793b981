"""
Audit Models for FinEdge

Every mutation and every authentication decision is recorded.
This provides:
1. Traceability of who changed which record and when
2. Debugging information when things go wrong
3. A trail of rejected tokens and failed logins

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Events never carry password hashes or token strings.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from finedge.models.base import storage_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Records
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    
    # Authentication
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    PASSWORD_CHANGED = "password_changed"
    TOKEN_ISSUED = "token_issued"
    TOKEN_REFRESHED = "token_refreshed"
    TOKEN_REJECTED = "token_rejected"
    
    # System events
    STORAGE_ERROR = "storage_error"


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
    event_id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=storage_now,
        description="When the event occurred (server local time)"
    )
    
    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO
    
    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Collection the entity lives in (e.g., 'users', 'transactions')"
    )
    entity_id: Optional[str] = None
    actor_id: Optional[str] = Field(
        default=None,
        description="User the action was performed for, when known"
    )
    
    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    
    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }
    
    def to_document(self) -> dict:
        """Convert to a stored document (id is the event id)."""
        document = self.model_dump()
        document["id"] = document.pop("event_id")
        document["event_type"] = self.event_type.value
        document["severity"] = self.severity.value
        document["created_at"] = self.timestamp
        document["updated_at"] = self.timestamp
        return document


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.
    
    Usage:
        event = AuditEventBuilder.record_created("transactions", txn.id, txn.user_id)
        event = AuditEventBuilder.token_rejected("expired")
    """
    
    @staticmethod
    def record_created(
        collection: str,
        record_id: str,
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            entity_type=collection,
            entity_id=record_id,
            actor_id=actor_id,
            description=f"Created {collection} record {record_id}",
        )
    
    @staticmethod
    def record_updated(
        collection: str,
        record_id: str,
        fields: list[str],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            entity_type=collection,
            entity_id=record_id,
            actor_id=actor_id,
            description=f"Updated {collection} record {record_id}",
            details={"fields": sorted(fields)},
        )
    
    @staticmethod
    def record_deleted(
        collection: str,
        record_id: str,
        cascaded: int = 0,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            entity_id=record_id,
            description=f"Deleted {collection} record {record_id}",
            details={"cascaded_deletes": cascaded},
        )
    
    @staticmethod
    def login(user_id: Optional[str], email: str, succeeded: bool) -> AuditEvent:
        if succeeded:
            return AuditEvent(
                event_type=AuditEventType.LOGIN_SUCCEEDED,
                entity_type="users",
                entity_id=user_id,
                actor_id=user_id,
                description=f"User {email} logged in",
            )
        return AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="users",
            entity_id=user_id,
            description=f"Failed login for {email}",
        )
    
    @staticmethod
    def password_changed(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSWORD_CHANGED,
            entity_type="users",
            entity_id=user_id,
            actor_id=user_id,
            description="Password changed",
        )
    
    @staticmethod
    def token_issued(subject: str, token_type: str, refreshed: bool = False) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.TOKEN_REFRESHED if refreshed
                else AuditEventType.TOKEN_ISSUED
            ),
            entity_type="users",
            entity_id=subject,
            actor_id=subject,
            description=f"{'Refreshed' if refreshed else 'Issued'} {token_type} token",
            details={"token_type": token_type},
        )
    
    @staticmethod
    def token_rejected(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOKEN_REJECTED,
            severity=AuditSeverity.WARNING,
            description="Token verification failed",
            error_message=reason,
        )
    
    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        collection: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type=collection,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )
