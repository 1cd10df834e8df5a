"""
Rate limiting utilities for the QuickBooks API.

Parses the Retry-After header of 429 responses and computes the wait before
the next attempt.
"""

import logging
from email.utils import parsedate_to_datetime

from requests import Response

from finsync.common.http import get_header
from finsync.utils.time_windows import utc_now

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_BASE = 2.0
DEFAULT_MAX_RETRY_AFTER = 60.0


class RateLimitInfo:
    """Container for rate limit information from a 429 response."""

    def __init__(self, retry_after: float | None = None, intuit_tid: str | None = None):
        self.retry_after = retry_after
        self.intuit_tid = intuit_tid

    def __repr__(self) -> str:
        return f"RateLimitInfo(retry_after={self.retry_after}, intuit_tid={self.intuit_tid})"


def parse_retry_after(value: str | None) -> float | None:
    """
    Parse a Retry-After header value into seconds.

    Accepts delta-seconds or an HTTP date. Returns None when absent or unparseable.
    """
    if not value:
        return None

    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            seconds = (parsedate_to_datetime(value) - utc_now()).total_seconds()
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to parse Retry-After header '{value}': {e}")
            return None

    return max(seconds, 0.0)


def parse_quickbooks_rate_limit(response: Response) -> RateLimitInfo:
    """Parse QuickBooks 429 headers (Retry-After plus the intuit_tid trace id)."""
    return RateLimitInfo(
        retry_after=parse_retry_after(get_header(response, "Retry-After")),
        intuit_tid=get_header(response, "intuit_tid"),
    )


def calculate_backoff(
    attempt: int,
    retry_after: float | None = None,
    base_delay: float = DEFAULT_BACKOFF_BASE,
    max_retry_after: float = DEFAULT_MAX_RETRY_AFTER,
) -> float:
    """
    Seconds to wait before retry number ``attempt`` (1-based).

    A provider-supplied Retry-After wins, capped at ``max_retry_after``;
    otherwise exponential backoff: base, 2*base, 4*base, ...
    """
    if retry_after is not None:
        return min(retry_after, max_retry_after)
    return base_delay * (2 ** (max(attempt, 1) - 1))
