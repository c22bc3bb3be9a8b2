"""
Request payload coercion.

Routes and services share these helpers so every field is checked the same
way and every failure names the offending field.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, TypeVar

from .errors import ValidationError


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999

MAX_TEXT_LENGTH = 2000

E = TypeVar("E", bound=Enum)


def coerce_int(field: str, value: Any) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and
    scientific notation, accepts plain digit strings.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", {"field": field})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)", {"field": field}
            )
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", {"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {"field": field})
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
    raise ValidationError(f"{field} must be an integer", {"field": field})


def require_positive_int(field: str, value: Any) -> int:
    if value is None:
        raise ValidationError(f"{field} is required", {"field": field})
    number = coerce_int(field, value)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0", {"field": field, "value": number})
    return number


def require_non_negative_int(field: str, value: Any) -> int:
    if value is None:
        raise ValidationError(f"{field} is required", {"field": field})
    number = coerce_int(field, value)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0", {"field": field, "value": number})
    return number


def require_amount_cents(field: str, value: Any) -> int:
    amount = require_non_negative_int(field, value)
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(
            f"{field} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})",
            {"field": field},
        )
    return amount


def require_text(field: str, value: Any, *, max_length: int | None = MAX_TEXT_LENGTH) -> str:
    """Non-blank string, stripped."""
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", {"field": field})
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", {"field": field})
    return text


def optional_text(field: str, value: Any, *, max_length: int | None = MAX_TEXT_LENGTH) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", {"field": field})
    text = value.strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", {"field": field})
    return text


def require_enum(field: str, value: Any, enum_cls: type[E]) -> E:
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", {"field": field})
    try:
        return enum_cls(value.strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {allowed}",
            {"field": field, "allowed": [member.value for member in enum_cls]},
        )


def require_list(field: str, value: Any) -> list:
    if value is None:
        raise ValidationError(f"{field} is required", {"field": field})
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list", {"field": field})
    return value


def require_object(field: str, value: Any) -> dict:
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object", {"field": field})
    return value


def normalize_code(value: str) -> str:
    """Normalize to uppercase, no spaces."""
    return value.upper().strip().replace(" ", "")


def page_params(page: Any, size: Any, *, default_size: int, max_size: int) -> tuple[int, int]:
    """Zero-based page and clamped page size."""
    page_num = 0 if page is None else coerce_int("page", page)
    page_size = default_size if size is None else coerce_int("size", size)
    if page_num < 0:
        raise ValidationError("page must be >= 0", {"field": "page"})
    page_size = max(1, min(page_size, max_size))
    return page_num, page_size
