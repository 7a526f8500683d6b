"""
Shared utility functions.
"""

import logging
import re
import uuid as uuid_mod
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from fastapi import HTTPException

from adsteward.errors import ActionExpiredError, NotFoundError, UpstreamError, ValidationFailure

logger = logging.getLogger(__name__)

_MARKDOWN_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")


def parse_uuid(value: str, field_name: str = "id") -> uuid_mod.UUID:
    """
    Parse a string as UUID, raising a 400 HTTPException on invalid input
    instead of letting a bare ValueError bubble up as a 500.
    """
    try:
        return uuid_mod.UUID(str(value))
    except (ValueError, AttributeError):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid UUID for '{field_name}': {value!r}",
        )


def safe_error_detail(exc: Exception, fallback: str = "An internal error occurred. Please try again later.") -> str:
    """
    Return a sanitized error message safe for client consumption.
    Logs the real exception detail server-side.
    """
    logger.error(f"Operation failed: {exc}", exc_info=True)
    return fallback


def to_http_error(exc: Exception) -> HTTPException:
    """Map a domain error to an HTTPException. Upstream and unknown errors are not echoed to the client."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, ActionExpiredError):
        return HTTPException(status_code=410, detail=exc.message)
    if isinstance(exc, ValidationFailure):
        return HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, UpstreamError):
        return HTTPException(status_code=502, detail=safe_error_detail(exc, f"Upstream service '{exc.service}' failed."))
    return HTTPException(status_code=500, detail=safe_error_detail(exc))


def utcnow() -> datetime:
    """
    Return the current UTC time as a naive datetime (no tzinfo).
    Naive datetimes are used because our DB columns are TIMESTAMP WITHOUT TIME ZONE.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return utcnow().date()


def days_ago(n: int, ref: Optional[date] = None) -> date:
    return (ref or today()) - timedelta(days=n)


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of dates from start to end."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def percent_change(current: float, previous: float) -> Optional[float]:
    """Relative change in percent; None when there is no baseline."""
    if not previous:
        return None
    return round((current - previous) / previous * 100, 2)


def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> Optional[float]:
    if not denominator:
        return None
    return round(numerator / denominator * scale, 4)


def escape_markdown(text: str) -> str:
    """Escape Telegram MarkdownV2 special characters."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text or "")


def truncate(text: str, limit: int = 4000, suffix: str = "…") -> str:
    """Cut text to the chat message limit."""
    if text is None:
        return ""
    if len(text) <= limit:
        return text
    return text[: max(limit - len(suffix), 0)] + suffix


def format_money(value: Optional[float]) -> str:
    if value is None:
        return "—"
    return f"{value:,.2f} ₽"
