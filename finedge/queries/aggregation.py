"""
Aggregation Engine

DESIGN DECISION: Summaries are computed DETERMINISTICALLY from stored
transactions. There are two equivalent routes:

1. summarize(records): a single pass over records already in memory
2. summary_pipeline() + summary_from_rows(): the backend groups by
   (kind, category) and we fold the grouped rows

AggregationEngine uses route 2, so the document backend does the heavy
lifting server-side while the file backend evaluates the same pipeline
in process. Both routes produce the same SummaryReport.

LIMITATION: Month windows use the server's local calendar with no
timezone normalization. A transaction at 23:30 local time on the last day
of a month belongs to that month even if it is already the next month in
UTC.
"""

import calendar
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable, NamedTuple, Optional

from finedge.models.query import DateBound, end_of, start_of
from finedge.models.summary import (
    CategorySummary,
    DailySpending,
    MonthlySummary,
    SummaryReport,
)
from finedge.models.transaction import TransactionKind, TransactionRecord
from finedge.services.storage import RecordStoreInterface


MAX_MONTHS_BACK = 12
TRANSACTIONS = "transactions"


class MonthWindow(NamedTuple):
    """Inclusive [first-of-month 00:00, last-of-month 23:59:59.999999]."""
    
    month: str
    start: datetime
    end: datetime


def month_window(month: str) -> MonthWindow:
    """
    Window for a YYYY-MM month in server local time.
    
    Raises:
        ValueError: If month is not YYYY-MM
    """
    try:
        year, month_number = (int(part) for part in month.split("-"))
        first = date(year, month_number, 1)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Month must be YYYY-MM, got {month!r}") from e
    last_day = calendar.monthrange(year, month_number)[1]
    return MonthWindow(
        month=f"{year:04d}-{month_number:02d}",
        start=datetime.combine(first, time.min),
        end=datetime.combine(date(year, month_number, last_day), time.max),
    )


def recent_months(count: int, today: Optional[date] = None) -> list[str]:
    """
    The last `count` calendar months ending with the current one.
    
    Walks backwards from the current month and returns oldest first.
    """
    today = today or date.today()
    months = []
    year, month = today.year, today.month
    for _ in range(count):
        months.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    months.reverse()
    return months


def _round2(value: float) -> float:
    return round(value, 2)


def _report(
    total_income: float,
    total_expense: float,
    income_by_category: dict[str, float],
    expense_by_category: dict[str, float],
    count: int,
    period: str,
) -> SummaryReport:
    net_savings = total_income - total_expense
    savings_percentage = (net_savings / total_income) * 100 if total_income > 0 else 0.0
    return SummaryReport(
        total_income=total_income,
        total_expense=total_expense,
        net_savings=net_savings,
        savings_percentage=_round2(savings_percentage),
        income_by_category=income_by_category,
        expense_by_category=expense_by_category,
        transaction_count=count,
        period=period,
    )


def summarize(
    records: Iterable[TransactionRecord],
    period: str = "all-time",
) -> SummaryReport:
    """Income/expense totals and per-category breakdowns in a single pass."""
    total_income = 0.0
    total_expense = 0.0
    income_by_category: dict[str, float] = defaultdict(float)
    expense_by_category: dict[str, float] = defaultdict(float)
    count = 0
    
    for txn in records:
        count += 1
        if txn.kind == TransactionKind.INCOME:
            total_income += txn.amount
            income_by_category[txn.category] += txn.amount
        else:
            total_expense += txn.amount
            expense_by_category[txn.category] += txn.amount
    
    return _report(
        total_income,
        total_expense,
        dict(income_by_category),
        dict(expense_by_category),
        count,
        period,
    )


def category_summary(
    records: Iterable[TransactionRecord],
    category: str,
) -> CategorySummary:
    """Totals for one category; records of other categories are ignored."""
    total_amount = 0.0
    income_count = 0
    expense_count = 0
    
    for txn in records:
        if txn.category != category:
            continue
        total_amount += txn.amount
        if txn.kind == TransactionKind.INCOME:
            income_count += 1
        else:
            expense_count += 1
    
    count = income_count + expense_count
    average = total_amount / count if count > 0 else 0.0
    return CategorySummary(
        category=category,
        total_amount=total_amount,
        transaction_count=count,
        income_count=income_count,
        expense_count=expense_count,
        average=_round2(average),
    )


# =============================================================================
# PIPELINES
# =============================================================================

def _match(
    user_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    **extra,
) -> dict:
    match = {"user_id": user_id, **extra}
    if start or end:
        window = {}
        if start:
            window["$gte"] = start
        if end:
            window["$lte"] = end
        match["date"] = window
    return {"$match": match}


def summary_pipeline(user_id: str, window: Optional[MonthWindow] = None) -> list[dict]:
    """Group a user's transactions by (kind, category)."""
    return [
        _match(user_id, window.start if window else None, window.end if window else None),
        {"$group": {
            "_id": {"kind": "$kind", "category": "$category"},
            "total": {"$sum": "$amount"},
            "count": {"$sum": 1},
        }},
        {"$sort": {"_id.kind": 1, "_id.category": 1}},
    ]


def summary_from_rows(rows: Iterable[dict], period: str = "all-time") -> SummaryReport:
    """Fold (kind, category) groups into a SummaryReport."""
    total_income = 0.0
    total_expense = 0.0
    income_by_category: dict[str, float] = {}
    expense_by_category: dict[str, float] = {}
    count = 0
    
    for row in rows:
        kind = row["_id"]["kind"]
        category = row["_id"]["category"]
        count += row["count"]
        if kind == TransactionKind.INCOME.value:
            total_income += row["total"]
            income_by_category[category] = row["total"]
        else:
            total_expense += row["total"]
            expense_by_category[category] = row["total"]
    
    return _report(
        total_income,
        total_expense,
        income_by_category,
        expense_by_category,
        count,
        period,
    )


def category_pipeline(
    user_id: str,
    category: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[dict]:
    """Group one category's transactions by kind."""
    return [
        _match(user_id, start, end, category=category),
        {"$group": {
            "_id": "$kind",
            "total": {"$sum": "$amount"},
            "count": {"$sum": 1},
        }},
        {"$sort": {"_id": 1}},
    ]


def spending_pipeline(user_id: str, since: datetime) -> list[dict]:
    """Daily expense totals from `since` onwards, oldest day first."""
    return [
        _match(user_id, since, None, kind=TransactionKind.EXPENSE.value),
        {"$group": {
            "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$date"}},
            "total": {"$sum": "$amount"},
            "count": {"$sum": 1},
        }},
        {"$sort": {"_id": 1}},
    ]


class AggregationEngine:
    """
    Executes summaries against the record store.
    
    GUARANTEES:
    - Only returns figures derived from stored transactions
    - An empty period yields zeros, never an error
    - Errors from the store propagate unchanged
    """
    
    def __init__(self, store: RecordStoreInterface):
        self._store = store
    
    async def summarize_user(
        self,
        user_id: str,
        month: Optional[str] = None,
    ) -> SummaryReport:
        """Summary for a user, optionally scoped to one YYYY-MM month."""
        window = month_window(month) if month else None
        rows = await self._store.aggregate(TRANSACTIONS, summary_pipeline(user_id, window))
        return summary_from_rows(rows, period=window.month if window else "all-time")
    
    async def category_summary(
        self,
        user_id: str,
        category: str,
        start_date: Optional[DateBound] = None,
        end_date: Optional[DateBound] = None,
    ) -> CategorySummary:
        rows = await self._store.aggregate(
            TRANSACTIONS,
            category_pipeline(
                user_id,
                category,
                start_of(start_date) if start_date else None,
                end_of(end_date) if end_date else None,
            ),
        )
        counts = {row["_id"]: row for row in rows}
        income = counts.get(TransactionKind.INCOME.value, {"total": 0.0, "count": 0})
        expense = counts.get(TransactionKind.EXPENSE.value, {"total": 0.0, "count": 0})
        total_amount = income["total"] + expense["total"]
        count = income["count"] + expense["count"]
        return CategorySummary(
            category=category,
            total_amount=total_amount,
            transaction_count=count,
            income_count=income["count"],
            expense_count=expense["count"],
            average=_round2(total_amount / count) if count else 0.0,
            start_date=start_date.date() if isinstance(start_date, datetime) else start_date,
            end_date=end_date.date() if isinstance(end_date, datetime) else end_date,
        )
    
    async def monthly_comparison(
        self,
        user_id: str,
        months_back: int = 3,
        today: Optional[date] = None,
    ) -> list[MonthlySummary]:
        """
        One summary per calendar month, oldest first.
        
        months_back is clamped to [1, 12]; each month is summarized
        independently.
        """
        months_back = max(1, min(months_back, MAX_MONTHS_BACK))
        comparison = []
        for month in recent_months(months_back, today):
            report = await self.summarize_user(user_id, month)
            comparison.append(MonthlySummary(month=month, **report.model_dump()))
        return comparison
    
    async def spending_trends(
        self,
        user_id: str,
        days: int = 30,
        today: Optional[date] = None,
    ) -> list[DailySpending]:
        """Daily expense totals over the last `days` days, oldest first."""
        today = today or date.today()
        since = datetime.combine(today - timedelta(days=max(days, 0)), time.min)
        rows = await self._store.aggregate(TRANSACTIONS, spending_pipeline(user_id, since))
        return [
            DailySpending(day=row["_id"], total=row["total"], count=row["count"])
            for row in rows
            if row["_id"] is not None
        ]
