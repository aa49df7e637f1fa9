"""Shared helpers for coercing untrusted values from remote payloads."""
from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def normalize_address(value: object) -> str:
    """Lowercase and strip an address; ``""`` for anything that is not a non-empty string."""
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def to_float(value: object) -> float:
    """Coerce a numeric field. Missing values become 0.0; garbage raises ValueError."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"not a number: {value!r}") from exc


def to_bool(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("true", "1", "yes", "active")


def to_str(value: object) -> str:
    if value is None:
        return ""
    return str(value)
