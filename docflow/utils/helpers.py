"""Shared request helpers for blueprints."""

from datetime import date, datetime, time, timezone

from flask import request


def current_principal() -> str:
    """Current principal from the gateway-provided X-User header.

    Authentication happens upstream; an anonymous call acts as "anonymous"
    and therefore owns nothing.
    """
    return (
        request.headers.get("X-User", "").strip()
        or request.headers.get("X-Forwarded-User", "").strip()
        or "anonymous"
    )


def parse_datetime(value):
    """Parse an ISO date or datetime to an aware UTC datetime.

    Returns None for empty input and raises ValueError on bad input.
    Naive values are taken as UTC; a bare date means midnight UTC.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid datetime '{value}'. Use ISO 8601.") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_int(value, default=None):
    """int(value) or ``default``; raises ValueError on non-numeric input."""
    if value in (None, ""):
        return default
    if isinstance(value, bool):
        raise ValueError("expected an integer")
    return int(value)
