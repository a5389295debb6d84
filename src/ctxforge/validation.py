"""Argument checks run before any collaborator is called.

Out-of-range values are rejected, never clamped. Wrong types are rejected
the same way, so callers only ever see ValidationError.
"""

from __future__ import annotations

from ctxforge.exceptions import ValidationError


def _type_name(value: object) -> str:
    return type(value).__name__


def require_similarity(field: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(field, f"must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise ValidationError(field, f"must be within [0, 1], got {value}")
    return float(value)


def require_positive_int(field: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer, got {value!r}")
    if value < 1:
        raise ValidationError(field, f"must be >= 1, got {value}")
    return value


def require_int_range(field: str, value: int, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer, got {value!r}")
    if not low <= value <= high:
        raise ValidationError(field, f"must be within [{low}, {high}], got {value}")
    return value


def require_text(field: str, value: str | None) -> str:
    if value is None:
        raise ValidationError(field, "is required")
    if not isinstance(value, str):
        raise ValidationError(field, f"must be a string, got {_type_name(value)}")
    if not value.strip():
        raise ValidationError(field, "is required")
    return value


def require_optional_text(field: str, value: str | None) -> str:
    """None becomes an empty string; anything that is not a string is rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(field, f"must be a string, got {_type_name(value)}")
    return value


def require_id(field: str, value: str | None) -> str:
    if value is not None and not isinstance(value, str):
        raise ValidationError(field, f"must be a string, got {_type_name(value)}")
    if not value:
        raise ValidationError(field, "is required")
    return value
