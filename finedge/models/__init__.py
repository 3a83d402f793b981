"""
Data Models Package

This package contains all Pydantic models used in FinEdge.
All data flowing through the core must conform to these schemas.
"""

from finedge.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finedge.models.query import (
    Page,
    PageRequest,
    SortDirection,
    TransactionFilter,
    page_count,
)
from finedge.models.summary import (
    CategorySummary,
    DailySpending,
    MonthlySummary,
    SummaryReport,
)
from finedge.models.transaction import (
    PaymentMethod,
    RecurringFrequency,
    TransactionCreate,
    TransactionKind,
    TransactionRecord,
    TransactionUpdate,
)
from finedge.models.user import (
    Currency,
    Language,
    Theme,
    UserCreate,
    UserFilter,
    UserPreferences,
    UserRecord,
    UserUpdate,
)
from finedge.models.validation import ValidationIssue

__all__ = [
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Query models
    "Page",
    "PageRequest",
    "SortDirection",
    "TransactionFilter",
    "page_count",
    # Summary models
    "CategorySummary",
    "DailySpending",
    "MonthlySummary",
    "SummaryReport",
    # Transaction models
    "PaymentMethod",
    "RecurringFrequency",
    "TransactionCreate",
    "TransactionKind",
    "TransactionRecord",
    "TransactionUpdate",
    # User models
    "Currency",
    "Language",
    "Theme",
    "UserCreate",
    "UserFilter",
    "UserPreferences",
    "UserRecord",
    "UserUpdate",
    "ValidationIssue",
]
