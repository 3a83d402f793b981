"""Summary report models produced by the aggregation engine."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class SummaryReport(BaseModel):
    """Income/expense totals for a user, optionally scoped to one month."""
    
    total_income: float = 0.0
    total_expense: float = 0.0
    net_savings: float = 0.0
    savings_percentage: float = Field(
        default=0.0,
        description="Net savings as a share of income, rounded to 2 places"
    )
    income_by_category: dict[str, float] = Field(default_factory=dict)
    expense_by_category: dict[str, float] = Field(default_factory=dict)
    transaction_count: int = Field(default=0, ge=0)
    period: str = Field(
        default="all-time",
        description="YYYY-MM, or all-time when not scoped"
    )


class MonthlySummary(SummaryReport):
    """One month in a month-over-month comparison."""
    
    month: str


class CategorySummary(BaseModel):
    """Totals for a single category across both kinds."""
    
    category: str
    total_amount: float = 0.0
    transaction_count: int = 0
    income_count: int = 0
    expense_count: int = 0
    average: float = 0.0
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class DailySpending(BaseModel):
    """Expense total for one calendar day."""
    
    day: str = Field(..., description="YYYY-MM-DD")
    total: float
    count: int
