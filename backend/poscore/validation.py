# Overview: Shared error taxonomy and strict input coercion for API payloads.

from __future__ import annotations

from typing import Any


# Maximum money value accepted from clients: $9,999,999.99
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        if code:
            self.code = code
        self.details = details or {}


class ConflictError(ValueError):
    """
    409-level business rule conflict (insufficient stock, refund cap,
    duplicate open drawer). Carries a machine-readable code plus the
    conflicting quantities or amounts in ``details``.
    """

    code = "CONFLICT"

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        if code:
            self.code = code
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level missing aggregate."""

    code = "NOT_FOUND"

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        if code:
            self.code = code
        self.details = details or {}


def error_body(exc: Exception) -> dict:
    return {
        "error": str(exc),
        "code": getattr(exc, "code", None),
        "details": getattr(exc, "details", None) or {},
    }


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion: rejects floats, booleans, decimals and
    scientific notation so money never passes through float.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}")
    return result


def coerce_optional_int(value: Any, field: str, **kwargs) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field, **kwargs)


def coerce_amount_cents(value: Any, field: str, *, allow_zero: bool = False) -> int:
    return coerce_int(value, field, minimum=0 if allow_zero else 1, maximum=MAX_AMOUNT_CENTS)


def optional_str(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if not value:
        return None
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value
