"""
Two-Stage Record Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking and required fields (pydantic models)
- Closed enums (income | expense, payment methods, ...)
- Static bounds (amount > 0, non-empty category)

STAGE 2 - LIMIT VALIDATION:
- Configured limits (maximum amount, description and category length)
- Cross-field consistency (recurring frequency without recurrence)

Partial updates are merged over the stored record and the MERGED result
is validated, so a partial write can never leave an invalid record behind.

IMPORTANT: Validation NEVER silently fixes issues. Any error-level issue
raises ValidationFailedError carrying every issue found.
"""

from typing import Any, Union

from pydantic import BaseModel, ValidationError

from finedge.config.settings import LimitsSettings
from finedge.errors import ValidationFailedError
from finedge.models.base import storage_dump
from finedge.models.transaction import (
    TransactionCreate,
    TransactionRecord,
    TransactionUpdate,
)
from finedge.models.user import UserCreate, UserPreferences, UserRecord, UserUpdate
from finedge.models.validation import ValidationIssue


def issues_from_pydantic(error: ValidationError) -> list[ValidationIssue]:
    """Translate pydantic errors into ValidationIssues."""
    issues = []
    for detail in error.errors():
        field = ".".join(str(part) for part in detail.get("loc", ())) or "record"
        issues.append(ValidationIssue(
            field=field,
            issue_type=detail.get("type", "invalid"),
            message=detail.get("msg", "Invalid value"),
            severity="error",
        ))
    return issues


def _as_dict(data: Union[dict, BaseModel]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=True)
    return dict(data)


class RecordValidator:
    """
    Validates records before they reach storage.
    
    Stage 1: Schema validation (pydantic)
    Stage 2: Configured limits
    """
    
    def __init__(self, limits: LimitsSettings):
        self._limits = limits
    
    @property
    def limits(self) -> LimitsSettings:
        return self._limits
    
    def _parse(self, model: type[BaseModel], data: Any, what: str) -> Any:
        """Stage 1: schema validation."""
        try:
            return model.model_validate(_as_dict(data))
        except ValidationError as e:
            raise ValidationFailedError(f"Invalid {what}", issues_from_pydantic(e)) from e
    
    def _raise_on_errors(self, issues: list[ValidationIssue], what: str) -> None:
        if any(issue.severity == "error" for issue in issues):
            raise ValidationFailedError(f"Invalid {what}", issues)
    
    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    
    def _check_transaction_limits(self, txn: TransactionCreate) -> list[ValidationIssue]:
        """Stage 2: configured limits."""
        issues = []
        
        if txn.amount > self._limits.max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="out_of_range",
                message=f"Amount exceeds maximum limit of {self._limits.max_amount:,.2f}",
                severity="error",
                suggested_fix="Split the amount or check it was entered correctly",
            ))
        
        if len(txn.description) > self._limits.max_description_length:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message=(
                    f"Description is longer than "
                    f"{self._limits.max_description_length} characters"
                ),
                severity="error",
            ))
        
        if len(txn.category) > self._limits.max_category_length:
            issues.append(ValidationIssue(
                field="category",
                issue_type="too_long",
                message=(
                    f"Category is longer than "
                    f"{self._limits.max_category_length} characters"
                ),
                severity="error",
            ))
        
        if txn.recurring_frequency is not None and not txn.is_recurring:
            issues.append(ValidationIssue(
                field="recurring_frequency",
                issue_type="inconsistent",
                message="Recurring frequency is set but the transaction is not recurring",
                severity="warning",
            ))
        
        return issues
    
    def validate_transaction(self, data: Union[dict, TransactionCreate]) -> TransactionCreate:
        """Validate a new transaction. Raises ValidationFailedError."""
        txn = self._parse(TransactionCreate, data, "transaction")
        self._raise_on_errors(self._check_transaction_limits(txn), "transaction")
        return txn
    
    def validate_transaction_update(
        self,
        existing: TransactionRecord,
        partial: Union[dict, TransactionUpdate],
    ) -> dict:
        """
        Validate a partial transaction update.
        
        Returns:
            The changed fields, ready to merge into the stored record
        """
        update = self._parse(TransactionUpdate, partial, "transaction update")
        changes = update.model_dump(exclude_unset=True)
        
        merged_data = existing.model_dump(
            exclude={"id", "created_at", "updated_at"}
        )
        merged_data.update(changes)
        merged = self._parse(TransactionCreate, merged_data, "transaction")
        self._raise_on_errors(self._check_transaction_limits(merged), "transaction")
        
        return storage_dump(merged, include=set(changes))
    
    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    
    def validate_user(self, data: Union[dict, UserCreate]) -> UserCreate:
        """Validate a new user. Raises ValidationFailedError."""
        return self._parse(UserCreate, data, "user")
    
    def validate_user_update(
        self,
        existing: UserRecord,
        partial: Union[dict, UserUpdate],
    ) -> dict:
        """
        Validate a partial profile update.
        
        Preferences are merged key by key over the stored preferences.
        
        Returns:
            The changed fields, ready to merge into the stored record
        """
        update = self._parse(UserUpdate, partial, "user update")
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        
        if "preferences" in changes:
            merged = {**existing.preferences.model_dump(mode="json"), **changes["preferences"]}
            preferences = self._parse(UserPreferences, merged, "preferences")
            changes["preferences"] = preferences.model_dump(mode="json")
        
        return changes
