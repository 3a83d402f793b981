"""Audit logging: structured local logs plus the audit_events collection."""

from finedge.audit.logger import AUDIT_COLLECTION, AuditLogger, configure_logging

__all__ = ["AUDIT_COLLECTION", "AuditLogger", "configure_logging"]
