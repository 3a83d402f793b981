"""
FinEdge - Core Package

The storage and domain core of a personal-finance tracker: users,
income/expense transactions, summaries and session tokens.

DESIGN PRINCIPLES:
1. Validate before persisting; never silently fix input
2. Fail early, fail visibly (every error carries its HTTP status)
3. Every mutation must be auditable
4. Storage layer is swappable (flat JSON files or MongoDB)
"""

__version__ = "1.0.0"
__author__ = "FinEdge Team"
