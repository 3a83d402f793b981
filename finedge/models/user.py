"""
User Models

A user owns transactions and carries display preferences.

CRITICAL: The raw password only ever exists on UserCreate. Stored records
carry a one-way bcrypt hash and the hash never leaves the facade through
to_public().
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    INR = "INR"
    JPY = "JPY"
    AUD = "AUD"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class Language(str, Enum):
    EN = "en"
    ES = "es"
    FR = "fr"
    DE = "de"
    JA = "ja"
    ZH = "zh"


class UserPreferences(BaseModel):
    """Per-user display and notification preferences."""
    
    currency: Currency = Currency.USD
    theme: Theme = Theme.LIGHT
    notifications: bool = True
    language: Language = Language.EN


def normalize_email(value: str) -> str:
    """Emails are unique case-insensitively, so they are stored lower-cased."""
    return value.strip().lower()


class UserCreate(BaseModel):
    """Input for registering a user."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    email: str = Field(..., max_length=254)
    password: str = Field(
        ...,
        min_length=6,
        max_length=72,  # bcrypt only hashes the first 72 bytes
        description="Raw password, hashed before it is stored"
    )
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    
    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = normalize_email(v)
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Valid email is required")
        return v


class UserUpdate(BaseModel):
    """
    Partial update of a user profile.
    
    Email and password are not updatable here; passwords change through
    the dedicated change-password flow.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")
    
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    preferences: Optional[dict] = None
    is_active: Optional[bool] = None


class UserRecord(BaseModel):
    """A stored user."""
    
    id: str
    email: str
    password_hash: str = Field(..., repr=False)
    first_name: str
    last_name: str
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
    
    def to_public(self) -> dict:
        """Serializable view without the password hash."""
        return self.model_dump(mode="json", exclude={"password_hash"})


class UserFilter(BaseModel):
    """Filter for listing users."""
    
    email: Optional[str] = None
    is_active: Optional[bool] = True
    search: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Case-insensitive match on email or name"
    )
    
    def to_query(self) -> dict:
        """Render as a query document both backends understand."""
        query: dict = {}
        if self.email:
            query["email"] = normalize_email(self.email)
        if self.is_active is not None:
            query["is_active"] = self.is_active
        if self.search:
            pattern = re.escape(self.search.strip())
            query["$or"] = [
                {"email": {"$regex": pattern, "$options": "i"}},
                {"first_name": {"$regex": pattern, "$options": "i"}},
                {"last_name": {"$regex": pattern, "$options": "i"}},
            ]
        return query
