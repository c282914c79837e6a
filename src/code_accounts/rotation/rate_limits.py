"""Rate limit detection and resume-time parsing.

Helpers for callers that turn an upstream refusal into a scheduler outcome.
"""

import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from dateutil import parser as dateutil_parser
from structlog import get_logger

from code_accounts.utils.datetime_utils import ensure_utc, utc_now


logger = get_logger(__name__)


# Rate limit detection patterns
RATE_LIMIT_PATTERNS = [
    re.compile(r"rate.?limit", re.IGNORECASE),
    re.compile(r"usage.?limit", re.IGNORECASE),
    re.compile(r"too.?many.?requests", re.IGNORECASE),
    re.compile(r"quota.?exceeded", re.IGNORECASE),
]

# Reset header carrying either an epoch timestamp or a relative delay
RESET_HEADER = "x-ratelimit-reset"


def is_rate_limit_error(status_code: int, error_message: str | None = None) -> bool:
    """Check if an error indicates rate limiting.

    Args:
        status_code: HTTP status code
        error_message: Optional error message to check

    Returns:
        True if this appears to be a rate limit error
    """
    if status_code == 429:
        return True

    if error_message:
        return any(pattern.search(error_message) for pattern in RATE_LIMIT_PATTERNS)

    return False


def _parse_date(value: str) -> datetime | None:
    try:
        dt = dateutil_parser.parse(value)
    except (ValueError, OverflowError, dateutil_parser.ParserError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _parse_seconds(value: str) -> float | None:
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) else None


def _parse_reset(value: str, now: datetime) -> datetime | None:
    """Resolve a reset value that may be an epoch, a delay or a date.

    Numbers naming an instant before now are read as seconds from now.
    """
    number = _parse_seconds(value)
    if number is None:
        return _parse_date(value)

    try:
        as_epoch = datetime.fromtimestamp(number, tz=UTC)
    except (OverflowError, OSError, ValueError):
        logger.debug("reset_header_unparseable", header=RESET_HEADER, value=value)
        return None
    if as_epoch > now:
        return as_epoch
    return now + timedelta(seconds=max(number, 0.0))


def parse_retry_after(
    headers: Mapping[str, str], now: datetime | None = None
) -> datetime | None:
    """Parse when a rate-limited account may be retried.

    Checks headers in order of preference:
    1. retry-after (seconds or HTTP date)
    2. x-ratelimit-reset (epoch seconds, relative seconds or a date)

    Args:
        headers: Response headers (case-insensitive lookup)
        now: Reference time for relative values (defaults to current time)

    Returns:
        Aware UTC datetime of the resume time, or None
    """
    now = ensure_utc(now) if now is not None else utc_now()
    headers_lower = {k.lower(): v for k, v in headers.items()}

    retry_after = headers_lower.get("retry-after")
    if retry_after is not None:
        seconds = _parse_seconds(retry_after)
        if seconds is not None:
            return now + timedelta(seconds=max(seconds, 0.0))
        dt = _parse_date(retry_after)
        if dt is not None:
            return dt

    if reset_value := headers_lower.get(RESET_HEADER):
        return _parse_reset(reset_value, now)

    return None
