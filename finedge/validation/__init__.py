"""Record validation package."""

from finedge.validation.validator import RecordValidator, issues_from_pydantic

__all__ = ["RecordValidator", "issues_from_pydantic"]
