"""
Query and Pagination Engine

DESIGN DECISION: Queries are expressed once, as Mongo-style query
documents, and evaluated DETERMINISTICALLY here for the flat-file backend.
The document backend hands the very same document to the database.
That is what keeps the two backends answering identically.

Supported query operators:
    equality (array fields match on membership), $eq, $ne, $gt, $gte,
    $lt, $lte, $in, $nin, $regex (+ $options), $and, $or, dotted paths

Supported pipeline stages (for aggregate on the file backend):
    $match, $group, $sort, $skip, $limit
"""

import re
from datetime import datetime
from functools import cmp_to_key
from typing import Any, Callable, Iterable, Optional, Sequence


class QueryError(ValueError):
    """A query or pipeline uses an operator this engine does not support."""
    pass


_MISSING = object()


def get_path(record: dict, path: str) -> Any:
    """Resolve a dotted path; returns _MISSING when any segment is absent."""
    value: Any = record
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _type_rank(value: Any) -> int:
    # Mongo-like cross-type ordering: missing/null, numbers, strings, objects, arrays, bools, dates
    if value is _MISSING or value is None:
        return 0
    if isinstance(value, bool):
        return 5
    if isinstance(value, (int, float)):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, dict):
        return 3
    if isinstance(value, (list, tuple)):
        return 4
    if isinstance(value, datetime):
        return 6
    return 7


def compare_values(left: Any, right: Any) -> int:
    """Total order over stored values, so sorting never raises."""
    left_rank, right_rank = _type_rank(left), _type_rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    if left_rank == 0:
        return 0
    if left_rank in (3, 4):
        left, right = repr(left), repr(right)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def _comparable(stored: Any, operand: Any) -> bool:
    return (
        stored is not _MISSING
        and stored is not None
        and _type_rank(stored) == _type_rank(operand)
    )


def _equals(stored: Any, operand: Any) -> bool:
    if stored is _MISSING:
        return operand is None
    if isinstance(stored, list) and not isinstance(operand, list):
        return operand in stored
    return stored == operand


def _match_operator(stored: Any, operator: str, operand: Any) -> bool:
    if operator == "$eq":
        return _equals(stored, operand)
    if operator == "$ne":
        return not _equals(stored, operand)
    if operator == "$in":
        return any(_equals(stored, candidate) for candidate in operand)
    if operator == "$nin":
        return not any(_equals(stored, candidate) for candidate in operand)
    if operator in ("$gt", "$gte", "$lt", "$lte"):
        if not _comparable(stored, operand):
            return False
        result = compare_values(stored, operand)
        return {
            "$gt": result > 0,
            "$gte": result >= 0,
            "$lt": result < 0,
            "$lte": result <= 0,
        }[operator]
    if operator == "$exists":
        return (stored is not _MISSING) == bool(operand)
    raise QueryError(f"Unsupported query operator: {operator}")


def _match_condition(stored: Any, condition: Any) -> bool:
    is_operator_doc = isinstance(condition, dict) and condition and all(
        key.startswith("$") for key in condition
    )
    if not is_operator_doc:
        return _equals(stored, condition)
    
    if "$regex" in condition:
        flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
        if not isinstance(stored, str) or not re.search(condition["$regex"], stored, flags):
            return False
    
    return all(
        _match_operator(stored, operator, operand)
        for operator, operand in condition.items()
        if operator not in ("$regex", "$options")
    )


def matches(record: dict, query: Optional[dict]) -> bool:
    """True when the record satisfies every clause of the query (logical AND)."""
    if not query:
        return True
    for key, condition in query.items():
        if key == "$and":
            if not all(matches(record, clause) for clause in condition):
                return False
        elif key == "$or":
            if not any(matches(record, clause) for clause in condition):
                return False
        elif key.startswith("$"):
            raise QueryError(f"Unsupported top-level operator: {key}")
        elif not _match_condition(get_path(record, key), condition):
            return False
    return True


def filter_records(records: Iterable[dict], query: Optional[dict]) -> list[dict]:
    """Order-preserving linear scan."""
    return [record for record in records if matches(record, query)]


def sort_records(
    records: Sequence[dict],
    sort: Sequence[tuple[str, int]],
) -> list[dict]:
    """Stable multi-key sort; each key is (path, 1 | -1)."""
    def compare(left: dict, right: dict) -> int:
        for path, direction in sort:
            result = compare_values(get_path(left, path), get_path(right, path))
            if result:
                return result * direction
        return 0
    
    return sorted(records, key=cmp_to_key(compare))


def project(record: dict, projection: Optional[dict]) -> dict:
    """Apply an inclusion or exclusion projection; id is always kept."""
    if not projection:
        return record
    included = {key for key, flag in projection.items() if flag}
    if included:
        return {
            key: value for key, value in record.items()
            if key in included or key == "id"
        }
    excluded = {key for key, flag in projection.items() if not flag}
    return {key: value for key, value in record.items() if key not in excluded}


# =============================================================================
# PIPELINE EVALUATION
# =============================================================================

def evaluate_expression(record: dict, expression: Any) -> Any:
    """Evaluate a pipeline expression against one record."""
    if isinstance(expression, str) and expression.startswith("$"):
        value = get_path(record, expression[1:])
        return None if value is _MISSING else value
    if isinstance(expression, dict):
        if "$dateToString" in expression:
            spec = expression["$dateToString"]
            value = evaluate_expression(record, spec["date"])
            if not isinstance(value, datetime):
                return None
            return value.strftime(spec.get("format", "%Y-%m-%d"))
        if any(key.startswith("$") for key in expression):
            raise QueryError(f"Unsupported expression: {sorted(expression)}")
        return {
            key: evaluate_expression(record, value)
            for key, value in expression.items()
        }
    return expression


def _accumulate(operator: str, values: list[Any]) -> Any:
    if operator == "$sum":
        return sum(value for value in values if isinstance(value, (int, float)) and not isinstance(value, bool))
    numeric = [value for value in values if value is not None]
    if operator == "$avg":
        numbers = [value for value in numeric if isinstance(value, (int, float))]
        return sum(numbers) / len(numbers) if numbers else None
    if operator == "$min":
        return min(numeric, key=cmp_to_key(compare_values)) if numeric else None
    if operator == "$max":
        return max(numeric, key=cmp_to_key(compare_values)) if numeric else None
    if operator == "$first":
        return values[0] if values else None
    raise QueryError(f"Unsupported accumulator: {operator}")


def _group(records: list[dict], spec: dict) -> list[dict]:
    if "_id" not in spec:
        raise QueryError("$group requires an _id")
    
    groups: dict[str, tuple[Any, list[dict]]] = {}
    for record in records:
        key = evaluate_expression(record, spec["_id"])
        bucket = groups.setdefault(repr(key), (key, []))
        bucket[1].append(record)
    
    rows = []
    for key, members in groups.values():
        row = {"_id": key}
        for field, accumulator in spec.items():
            if field == "_id":
                continue
            ((operator, expression),) = accumulator.items()
            row[field] = _accumulate(
                operator,
                [evaluate_expression(member, expression) for member in members],
            )
        rows.append(row)
    return rows


def run_pipeline(records: Iterable[dict], pipeline: Sequence[dict]) -> list[dict]:
    """Run a declarative multi-stage pipeline in process."""
    rows = list(records)
    for stage in pipeline:
        ((name, spec),) = stage.items()
        if name == "$match":
            rows = filter_records(rows, spec)
        elif name == "$group":
            rows = _group(rows, spec)
        elif name == "$sort":
            rows = sort_records(rows, list(spec.items()))
        elif name == "$skip":
            rows = rows[spec:]
        elif name == "$limit":
            rows = rows[:spec]
        else:
            raise QueryError(f"Unsupported pipeline stage: {name}")
    return rows


def paginate(
    records: Sequence[dict],
    skip: int,
    limit: int,
) -> list[dict]:
    """Offset slice of an already-ordered result set."""
    return list(records[skip:skip + limit])


RecordPredicate = Callable[[dict], bool]
