"""
Tests for FinEdge

Test strategy:
1. Unit tests for individual components (models, validators, engines)
2. Integration tests for the facade against both storage backends
3. No real database or network in tests (mongomock-motor, tmp_path)
"""

import pytest
from datetime import date, datetime

from finedge.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finedge.models.query import Page, PageRequest, SortDirection, TransactionFilter, page_count
from finedge.models.transaction import (
    PaymentMethod,
    TransactionCreate,
    TransactionKind,
    TransactionRecord,
    TransactionUpdate,
)
from finedge.models.user import UserCreate, UserFilter, UserPreferences, UserRecord


class TestUserModels:
    """Tests for user-related Pydantic models."""
    
    def test_user_create_normalizes_email(self):
        """Test that emails are stripped and lower-cased."""
        user = UserCreate(
            email="  Ana@Example.COM ",
            password="secret123",
            first_name="Ana",
            last_name="Silva",
        )
        assert user.email == "ana@example.com"
    
    def test_user_create_rejects_bad_email(self):
        """Test that a malformed email is rejected."""
        with pytest.raises(ValueError, match="Valid email is required"):
            UserCreate(
                email="not-an-email",
                password="secret123",
                first_name="Ana",
                last_name="Silva",
            )
    
    def test_user_create_rejects_short_password(self):
        """Test the minimum password length."""
        with pytest.raises(ValueError):
            UserCreate(
                email="ana@example.com",
                password="123",
                first_name="Ana",
                last_name="Silva",
            )
    
    def test_user_create_strips_names(self):
        """Test that whitespace is stripped from names."""
        user = UserCreate(
            email="ana@example.com",
            password="secret123",
            first_name="  Ana  ",
            last_name=" Silva",
        )
        assert user.first_name == "Ana"
        assert user.last_name == "Silva"
    
    def test_default_preferences(self):
        """Test preference defaults."""
        prefs = UserPreferences()
        assert prefs.currency.value == "USD"
        assert prefs.theme.value == "light"
        assert prefs.notifications is True
        assert prefs.language.value == "en"
    
    def test_user_record_public_view_omits_hash(self):
        """Test that to_public never exposes the password hash."""
        now = datetime(2024, 3, 1, 12, 0)
        user = UserRecord(
            id="u1",
            email="ana@example.com",
            password_hash="$2b$04$hash",
            first_name="Ana",
            last_name="Silva",
            created_at=now,
            updated_at=now,
        )
        public = user.to_public()
        assert "password_hash" not in public
        assert public["email"] == "ana@example.com"
        assert user.full_name == "Ana Silva"
        assert "hash" not in repr(user)
    
    def test_user_filter_search_query(self):
        """Test that search matches email or name case-insensitively."""
        query = UserFilter(search="ana").to_query()
        assert query["is_active"] is True
        assert {"email": {"$regex": "ana", "$options": "i"}} in query["$or"]


class TestTransactionModels:
    """Tests for transaction models."""
    
    def test_transaction_create_defaults(self):
        """Test TransactionCreate defaults."""
        txn = TransactionCreate(
            user_id="u1",
            kind="expense",
            category="  Food ",
            amount=12.5,
        )
        assert txn.kind == TransactionKind.EXPENSE
        assert txn.category == "Food"
        assert txn.payment_method == PaymentMethod.CASH
        assert txn.description == ""
        assert txn.is_recurring is False
        assert isinstance(txn.date, datetime)
    
    def test_transaction_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        for amount in (0, -5):
            with pytest.raises(ValueError):
                TransactionCreate(user_id="u1", kind="income", category="Salary", amount=amount)
    
    def test_transaction_rejects_unknown_kind(self):
        """Test that kind is a closed enum."""
        with pytest.raises(ValueError):
            TransactionCreate(user_id="u1", kind="transfer", category="Misc", amount=1)
    
    def test_tags_are_cleaned(self):
        """Test that tags are stripped, deduplicated and blanks dropped."""
        txn = TransactionCreate(
            user_id="u1",
            kind="expense",
            category="Food",
            amount=1,
            tags=[" lunch", "lunch ", "", "work"],
        )
        assert txn.tags == ["lunch", "work"]
    
    def test_update_cannot_change_owner(self):
        """Test that user_id is not accepted on updates."""
        with pytest.raises(ValueError):
            TransactionUpdate(user_id="someone-else")
    
    def test_record_helpers(self):
        """Test month, signed_amount and formatted_amount."""
        now = datetime(2024, 3, 1)
        expense = TransactionRecord(
            id="t1",
            user_id="u1",
            kind="expense",
            category="Food",
            amount=3,
            date=datetime(2024, 3, 15, 9, 30),
            created_at=now,
            updated_at=now,
        )
        assert expense.month == "2024-03"
        assert expense.signed_amount == -3
        assert expense.formatted_amount == "-$3.00"
        
        income = expense.model_copy(update={"kind": TransactionKind.INCOME, "amount": 12.5})
        assert income.formatted_amount == "+$12.50"


class TestQueryModels:
    """Tests for filters and pagination."""
    
    def test_page_request_skip(self):
        """Test skip = (page - 1) * limit."""
        assert PageRequest(page=3, limit=20).skip == 40
    
    def test_page_request_bounds(self):
        """Test that page and limit are bounded."""
        with pytest.raises(ValueError):
            PageRequest(page=0)
        with pytest.raises(ValueError):
            PageRequest(limit=101)
    
    def test_page_request_capped(self):
        """Test limit capping at the configured maximum."""
        assert PageRequest(limit=50).capped(25).limit == 25
        assert PageRequest(limit=10).capped(25).limit == 10
    
    def test_sort_spec_appends_id(self):
        """Test that id is appended as a tie-breaker."""
        spec = PageRequest(sort_by="amount", direction=SortDirection.ASC).sort_spec()
        assert spec == [("amount", 1), ("id", 1)]
    
    def test_page_count(self):
        """Test page arithmetic."""
        assert page_count(0, 10) == 0
        assert page_count(3, 10) == 1
        assert page_count(10, 10) == 1
        assert page_count(11, 10) == 2
    
    def test_empty_page(self):
        """Test an empty page has no data and zero pages."""
        page = Page[int]()
        assert page.data == []
        assert page.total == 0
        assert page.pages == 0
    
    def test_filter_bare_end_date_covers_whole_day(self):
        """Test that a date upper bound means the end of that day."""
        query = TransactionFilter(
            user_id="u1",
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 31),
        ).to_query()
        assert query["date"]["$gte"] == datetime(2024, 3, 1, 0, 0)
        assert query["date"]["$lte"] == datetime(2024, 3, 31, 23, 59, 59, 999999)
    
    def test_filter_rejects_inverted_range(self):
        """Test start after end is rejected."""
        with pytest.raises(ValueError, match="start_date cannot be after end_date"):
            TransactionFilter(start_date=date(2024, 4, 1), end_date=date(2024, 3, 1))
    
    def test_filter_renders_kind_and_tags(self):
        """Test kind value and tag membership."""
        query = TransactionFilter(kind="income", tags=["work"]).to_query()
        assert query == {"kind": "income", "tags": {"$in": ["work"]}}


class TestAuditModels:
    """Tests for audit-related models."""
    
    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            description="Created record",
        )
        assert event.event_type == AuditEventType.RECORD_CREATED
        assert event.severity == AuditSeverity.INFO
        assert len(event.event_id) == 32
    
    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEventBuilder.record_updated("transactions", "t1", ["amount", "category"], "u1")
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "record_updated"
        assert log_dict["details"]["fields"] == ["amount", "category"]
        assert log_dict["actor_id"] == "u1"
    
    def test_audit_event_to_document(self):
        """Test conversion to a stored document keyed by id."""
        event = AuditEventBuilder.token_rejected("TokenExpiredError")
        document = event.to_document()
        assert document["id"] == event.event_id
        assert "event_id" not in document
        assert document["event_type"] == "token_rejected"
        assert document["severity"] == "warning"
        assert document["created_at"] == event.timestamp
    
    def test_login_failure_is_warning(self):
        """Test AuditEventBuilder.login for a failed attempt."""
        event = AuditEventBuilder.login(None, "ana@example.com", succeeded=False)
        assert event.event_type == AuditEventType.LOGIN_FAILED
        assert event.severity == AuditSeverity.WARNING
    
    def test_record_deleted_counts_cascade(self):
        """Test AuditEventBuilder.record_deleted."""
        event = AuditEventBuilder.record_deleted("users", "u1", cascaded=4)
        assert event.details == {"cascaded_deletes": 4}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
