"""
Transaction Models

A transaction is a dated income or expense owned by one user.

DESIGN DECISION: The kind is a closed enum. There is no third value and
no "transfer"; anything else is rejected at the schema level.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from finedge.models.base import storage_now, storage_time


class TransactionKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    DIGITAL_WALLET = "digital_wallet"


class RecurringFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


def _clean_tags(tags: list[str]) -> list[str]:
    cleaned = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


class TransactionCreate(BaseModel):
    """
    Input for recording a transaction.
    
    Static bounds live here; configured limits (maximum amount, category and
    description length) are enforced by RecordValidator.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    user_id: str = Field(..., min_length=1)
    kind: TransactionKind
    category: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, description="Always positive; kind gives the sign")
    description: str = Field(default="")
    date: datetime = Field(
        default_factory=storage_now,
        description="Effective date (server local time, millisecond precision)"
    )
    tags: list[str] = Field(default_factory=list)
    payment_method: PaymentMethod = PaymentMethod.CASH
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    
    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v: list[str]) -> list[str]:
        return _clean_tags(v)
    
    @field_validator("date")
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return storage_time(v)


class TransactionUpdate(BaseModel):
    """
    Partial update of a transaction.
    
    Ownership is fixed at creation, so user_id is not accepted.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    kind: Optional[TransactionKind] = None
    category: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[float] = Field(default=None, gt=0)
    description: Optional[str] = None
    date: Optional[datetime] = None
    tags: Optional[list[str]] = None
    payment_method: Optional[PaymentMethod] = None
    is_recurring: Optional[bool] = None
    recurring_frequency: Optional[RecurringFrequency] = None
    
    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return _clean_tags(v) if v is not None else v
    
    @field_validator("date")
    @classmethod
    def normalize_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return storage_time(v) if v is not None else v


class TransactionRecord(TransactionCreate):
    """A stored transaction."""
    model_config = ConfigDict(extra="ignore")
    
    id: str
    created_at: datetime
    updated_at: datetime
    
    @property
    def month(self) -> str:
        """Calendar month of the effective date, as YYYY-MM."""
        return self.date.strftime("%Y-%m")
    
    @property
    def signed_amount(self) -> float:
        return self.amount if self.kind == TransactionKind.INCOME else -self.amount
    
    @property
    def formatted_amount(self) -> str:
        sign = "+" if self.kind == TransactionKind.INCOME else "-"
        return f"{sign}${self.amount:,.2f}"
