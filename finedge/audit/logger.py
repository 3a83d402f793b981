"""
Audit Logger

DESIGN DECISION: Every mutation and every authentication decision is logged.
This provides:
1. Traceability of who changed which record and when
2. A trail of failed logins and rejected tokens
3. Debugging capability when storage misbehaves

The audit logger:
- Is async so it can share the record store with the main flow
- Gracefully handles failures (a failed audit write never breaks the
  operation being audited)
- Never receives password hashes or token strings
"""

import logging
from typing import Optional

import structlog

from finedge.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finedge.services.storage import RecordStoreInterface


AUDIT_COLLECTION = "audit_events"


# Configure structlog for local logging
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


def configure_logging(log_level: str = "info") -> None:
    """Route structlog output through stdlib logging at the configured level."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)


class AuditLogger:
    """
    Central audit logging service.
    
    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_events collection (when a store is attached)
    """
    
    def __init__(self, store: Optional[RecordStoreInterface] = None):
        """
        Initialize audit logger.
        
        Args:
            store: Record store for persistence.
                   If None, only logs locally.
        """
        self._store = store
        self._logger = structlog.get_logger("finedge.audit")
    
    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.
        
        Always logs locally. Persists to the store if one is attached.
        
        Returns True if the store write succeeded (or no store is attached).
        """
        log_dict = event.to_log_dict()
        
        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)
        
        if self._store is None:
            return True
        
        try:
            await self._store.create(AUDIT_COLLECTION, event.to_document())
            return True
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=event.event_id,
            )
            return False
    
    async def log_record_created(
        self,
        collection: str,
        record_id: str,
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_created(collection, record_id, actor_id))
    
    async def log_record_updated(
        self,
        collection: str,
        record_id: str,
        fields: list[str],
        actor_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_updated(collection, record_id, fields, actor_id))
    
    async def log_record_deleted(
        self,
        collection: str,
        record_id: str,
        cascaded: int = 0,
    ) -> None:
        await self.log(AuditEventBuilder.record_deleted(collection, record_id, cascaded))
    
    async def log_login(self, user_id: Optional[str], email: str, succeeded: bool) -> None:
        """Log a login attempt. Only the email is recorded, never the password."""
        await self.log(AuditEventBuilder.login(user_id, email, succeeded))
    
    async def log_password_changed(self, user_id: str) -> None:
        await self.log(AuditEventBuilder.password_changed(user_id))
    
    async def log_token_issued(
        self,
        subject: str,
        token_type: str,
        refreshed: bool = False,
    ) -> None:
        await self.log(AuditEventBuilder.token_issued(subject, token_type, refreshed))
    
    async def log_token_rejected(self, reason: str) -> None:
        await self.log(AuditEventBuilder.token_rejected(reason))
    
    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        collection: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(operation, error_message, collection))
