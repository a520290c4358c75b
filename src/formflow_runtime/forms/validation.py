"""
Field validation for form submissions.

``validate_fields`` coerces raw submitted values to their field types and
checks required-ness, length, numeric range, regex and option membership.
It returns the cleaned values in schema order together with a map of
field name to failure reason.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any
from urllib.parse import urlparse

from .types import FieldSpec, FieldType

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")
PHONE_REGEX = re.compile(r"^\+?[0-9 ()\-.]{7,20}$")

_TRUE = {"1", "true", "yes", "on", "checked"}
_FALSE = {"0", "false", "no", "off", ""}

_STRING_TYPES = {
    FieldType.TEXT,
    FieldType.TEXTAREA,
    FieldType.EMAIL,
    FieldType.PHONE,
    FieldType.URL,
    FieldType.HIDDEN,
    FieldType.SELECT,
}


class _Invalid(ValueError):
    pass


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def normalize_email(value: str) -> str:
    return value.strip().lower()


def _coerce(spec: FieldSpec, value: Any) -> Any:
    t = spec.type

    if t == FieldType.EMAIL:
        email = normalize_email(str(value))
        if not EMAIL_REGEX.match(email):
            raise _Invalid("invalid email address")
        return email

    if t == FieldType.PHONE:
        phone = str(value).strip()
        if not PHONE_REGEX.match(phone) or sum(c.isdigit() for c in phone) < 7:
            raise _Invalid("invalid phone number")
        return phone

    if t == FieldType.NUMBER:
        if isinstance(value, bool):
            raise _Invalid("must be a number")
        try:
            number = float(str(value).strip())
        except ValueError:
            raise _Invalid("must be a number") from None
        if number != number or number in (float("inf"), float("-inf")):
            raise _Invalid("must be a finite number")
        return int(number) if number.is_integer() else number

    if t == FieldType.URL:
        url = str(value).strip()
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise _Invalid("invalid URL")
        return url

    if t == FieldType.SELECT:
        choice = str(value).strip()
        if choice not in spec.options:
            raise _Invalid("not one of the allowed options")
        return choice

    if t == FieldType.MULTISELECT:
        if isinstance(value, str):
            items = [v.strip() for v in value.split(",") if v.strip()]
        elif isinstance(value, (list, tuple)):
            items = [str(v).strip() for v in value]
        else:
            raise _Invalid("must be a list of options")
        unknown = [v for v in items if v not in spec.options]
        if unknown:
            raise _Invalid(f"not allowed: {', '.join(unknown)}")
        return items

    if t == FieldType.CHECKBOX:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise _Invalid("must be true or false")

    if t == FieldType.DATE:
        try:
            return date.fromisoformat(str(value).strip()).isoformat()
        except ValueError:
            raise _Invalid("must be a date (YYYY-MM-DD)") from None

    return str(value).strip()


def _check_constraints(spec: FieldSpec, value: Any) -> None:
    if spec.type in _STRING_TYPES and isinstance(value, str):
        if spec.min_length is not None and len(value) < spec.min_length:
            raise _Invalid(f"must be at least {spec.min_length} characters")
        if spec.max_length is not None and len(value) > spec.max_length:
            raise _Invalid(f"must be at most {spec.max_length} characters")
        if spec.pattern is not None and not re.fullmatch(spec.pattern, value):
            raise _Invalid("does not match the expected format")

    if spec.type == FieldType.NUMBER:
        if spec.min_value is not None and value < spec.min_value:
            raise _Invalid(f"must be >= {spec.min_value:g}")
        if spec.max_value is not None and value > spec.max_value:
            raise _Invalid(f"must be <= {spec.max_value:g}")

    if spec.type == FieldType.MULTISELECT:
        if spec.min_length is not None and len(value) < spec.min_length:
            raise _Invalid(f"select at least {spec.min_length}")
        if spec.max_length is not None and len(value) > spec.max_length:
            raise _Invalid(f"select at most {spec.max_length}")

    if spec.type == FieldType.CHECKBOX and spec.required and value is not True:
        raise _Invalid("required")


def validate_fields(
    fields: tuple[FieldSpec, ...],
    raw: dict[str, Any],
) -> tuple[dict[str, Any], dict[str, str]]:
    """Validate raw values against field specs.

    Returns:
        Tuple of (clean values in schema order, field -> reason).
        Fields not in the schema are dropped.
    """
    clean: dict[str, Any] = {}
    errors: dict[str, str] = {}

    for spec in fields:
        value = raw.get(spec.name)
        if _is_empty(value) and spec.type != FieldType.CHECKBOX:
            if spec.required:
                errors[spec.name] = "required"
            continue
        if value is None:
            value = False
        try:
            coerced = _coerce(spec, value)
            _check_constraints(spec, coerced)
        except _Invalid as exc:
            errors[spec.name] = str(exc)
            continue
        clean[spec.name] = coerced

    return clean, errors


def contact_values(fields: tuple[FieldSpec, ...], clean: dict[str, Any]) -> dict[str, Any]:
    """Map cleaned values onto contact attributes; the first field per attribute wins."""
    values: dict[str, Any] = {}
    for spec in fields:
        attribute = spec.contact_attribute
        if attribute is None or attribute in values:
            continue
        value = clean.get(spec.name)
        if value is None or value == "":
            continue
        values[attribute] = normalize_email(value) if attribute == "email" else value
    return values


__all__ = [
    "EMAIL_REGEX",
    "contact_values",
    "normalize_email",
    "validate_fields",
]
