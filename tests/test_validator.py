"""Tests for two-stage record validation."""

import pytest
from datetime import datetime

from finedge.config import LimitsSettings
from finedge.errors import ValidationFailedError
from finedge.models.transaction import TransactionRecord
from finedge.models.user import UserRecord
from finedge.validation import RecordValidator


@pytest.fixture
def validator() -> RecordValidator:
    return RecordValidator(LimitsSettings(max_amount=1000.0, max_description_length=20))


def stored_transaction(**overrides) -> TransactionRecord:
    now = datetime(2024, 3, 1, 12, 0)
    fields = {
        "id": "t1",
        "user_id": "u1",
        "kind": "expense",
        "category": "Food",
        "amount": 10.0,
        "date": now,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return TransactionRecord(**fields)


def stored_user() -> UserRecord:
    now = datetime(2024, 3, 1, 12, 0)
    return UserRecord(
        id="u1",
        email="ana@example.com",
        password_hash="$2b$04$hash",
        first_name="Ana",
        last_name="Silva",
        created_at=now,
        updated_at=now,
    )


class TestTransactionValidation:
    """Tests for transaction validation."""
    
    def test_valid_transaction_passes(self, validator):
        """Test that a well-formed transaction is returned parsed."""
        txn = validator.validate_transaction({
            "user_id": "u1",
            "kind": "income",
            "category": "Salary",
            "amount": 999.99,
        })
        assert txn.amount == 999.99
    
    def test_schema_errors_are_collected(self, validator):
        """Test that every schema problem is reported at once."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_transaction({"user_id": "u1", "kind": "gift", "amount": -1})
        fields = {issue.field for issue in exc_info.value.issues}
        assert {"kind", "amount", "category"} <= fields
        assert exc_info.value.status_code == 400
    
    def test_amount_over_configured_maximum(self, validator):
        """Test the configured amount ceiling."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_transaction({
                "user_id": "u1", "kind": "expense", "category": "Car", "amount": 1000.01,
            })
        assert exc_info.value.issues[0].issue_type == "out_of_range"
    
    def test_description_over_configured_length(self, validator):
        """Test the configured description length."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_transaction({
                "user_id": "u1", "kind": "expense", "category": "Car",
                "amount": 5, "description": "x" * 21,
            })
        assert exc_info.value.issues[0].field == "description"
    
    def test_category_length_follows_configured_limit(self):
        """Test that a longer configured category limit is honored."""
        validator = RecordValidator(LimitsSettings(max_category_length=80))
        txn = validator.validate_transaction({
            "user_id": "u1", "kind": "expense", "category": "c" * 70, "amount": 5,
        })
        assert len(txn.category) == 70
        
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_transaction({
                "user_id": "u1", "kind": "expense", "category": "c" * 81, "amount": 5,
            })
        assert exc_info.value.issues[0].field == "category"
    
    def test_frequency_without_recurrence_is_only_a_warning(self, validator):
        """Test that warnings do not block the write."""
        txn = validator.validate_transaction({
            "user_id": "u1", "kind": "expense", "category": "Gym",
            "amount": 30, "recurring_frequency": "monthly",
        })
        assert txn.is_recurring is False
    
    def test_partial_update_returns_only_changes(self, validator):
        """Test that an update yields just the changed fields, as plain values."""
        changes = validator.validate_transaction_update(
            stored_transaction(), {"amount": 20.0, "kind": "income"}
        )
        assert changes == {"amount": 20.0, "kind": "income"}
    
    def test_partial_update_validates_merged_record(self, validator):
        """Test that a partial update cannot produce an invalid record."""
        with pytest.raises(ValidationFailedError):
            validator.validate_transaction_update(stored_transaction(), {"amount": 5000})
    
    def test_partial_update_rejects_owner_change(self, validator):
        """Test that ownership is fixed."""
        with pytest.raises(ValidationFailedError):
            validator.validate_transaction_update(stored_transaction(), {"user_id": "u2"})
    
    def test_error_body_lists_issues(self, validator):
        """Test the API error body."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validator.validate_transaction({"user_id": "u1", "kind": "expense", "category": "", "amount": 1})
        body = exc_info.value.to_dict()
        assert body["success"] is False
        assert body["errors"][0]["field"] == "category"


class TestUserValidation:
    """Tests for user validation."""
    
    def test_valid_user(self, validator):
        """Test a well-formed registration."""
        user = validator.validate_user({
            "email": "Ana@Example.com",
            "password": "secret123",
            "first_name": "Ana",
            "last_name": "Silva",
        })
        assert user.email == "ana@example.com"
    
    def test_missing_names_rejected(self, validator):
        """Test that empty names are rejected."""
        with pytest.raises(ValidationFailedError):
            validator.validate_user({
                "email": "ana@example.com",
                "password": "secret123",
                "first_name": "  ",
                "last_name": "Silva",
            })
    
    def test_preferences_merge_preserves_unspecified_keys(self, validator):
        """Test key-by-key preference merging."""
        changes = validator.validate_user_update(stored_user(), {"preferences": {"theme": "dark"}})
        assert changes["preferences"] == {
            "currency": "USD",
            "theme": "dark",
            "notifications": True,
            "language": "en",
        }
    
    def test_invalid_preference_value(self, validator):
        """Test that preference enums are enforced."""
        with pytest.raises(ValidationFailedError):
            validator.validate_user_update(stored_user(), {"preferences": {"currency": "XYZ"}})
    
    def test_email_is_not_updatable(self, validator):
        """Test that profile updates cannot change the email."""
        with pytest.raises(ValidationFailedError):
            validator.validate_user_update(stored_user(), {"email": "new@example.com"})
