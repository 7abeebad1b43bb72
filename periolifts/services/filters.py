"""Builders for PocketBase filter expressions."""
from datetime import datetime, timezone
from typing import Any


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def quote(value: Any) -> str:
    if isinstance(value, datetime):
        text = format_datetime(value)
    elif isinstance(value, bool):
        return "true" if value else "false"
    elif isinstance(value, (int, float)):
        return str(value)
    else:
        text = str(value)
    text = text.replace("\\", "\\\\").replace('"', '\\"').replace("\r", " ").replace("\n", " ").strip()
    return f'"{text}"'


def eq(field: str, value: Any) -> str:
    return f"{field} = {quote(value)}"


def gte(field: str, value: Any) -> str:
    return f"{field} >= {quote(value)}"


def lte(field: str, value: Any) -> str:
    return f"{field} <= {quote(value)}"


def contains(field: str, value: Any) -> str:
    return f"{field} ~ {quote(value)}"


def all_of(*parts: str | None) -> str:
    present = [part for part in parts if part]
    if not present:
        return ""
    if len(present) == 1:
        return present[0]
    return " && ".join(f"({part})" for part in present)


def any_of(*parts: str | None) -> str:
    present = [part for part in parts if part]
    if len(present) <= 1:
        return present[0] if present else ""
    return "(" + " || ".join(f"({part})" for part in present) + ")"
