"""Helpers shared by the record models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


def local_naive(value: datetime) -> datetime:
    """Drop a UTC offset by converting to server-local wall time."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def storage_time(value: datetime) -> datetime:
    """
    Local naive time at millisecond precision.
    
    MongoDB keeps milliseconds only, so every stored datetime is cut to
    that here and both backends hold identical values.
    """
    value = local_naive(value)
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


def storage_now() -> datetime:
    return storage_time(datetime.now())


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def storage_dump(model: BaseModel, **kwargs: Any) -> dict:
    """model_dump with enums flattened to their values and datetimes kept native."""
    return _plain(model.model_dump(**kwargs))
