"""
Time window utilities for report syncs.

Provides UTC helpers and maps dashboard range presets (3m, 6m, 12m, 4q) onto
the date spans requested from the QuickBooks reports endpoint.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime

logger = logging.getLogger(__name__)

RANGE_MONTHS = {"3m": 3, "6m": 6, "12m": 12}
RANGE_LABELS = {
    "3m": "Last 3 Months",
    "6m": "Last 6 Months",
    "12m": "Last 12 Months",
    "4q": "Last 4 Quarters",
}
VALID_RANGES = tuple(RANGE_LABELS)
VALID_PERIOD_TYPES = ("month", "quarter")


@dataclass(frozen=True, slots=True)
class PeriodInfo:
    start_date: date
    end_date: date
    label: str


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt is None:
        return None
    if not dt.tzinfo:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_iso_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 string in UTC."""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _quarter_start_month(month: int) -> int:
    return ((month - 1) // 3) * 3 + 1


def _validate_range(range_key: str) -> None:
    if range_key not in RANGE_LABELS:
        raise ValueError(f"Unsupported range {range_key!r}; expected one of {VALID_RANGES}")


def get_single_date_range(range_key: str, today: date | None = None) -> PeriodInfo:
    """
    Return one period spanning the full requested range.

    - 3m/6m/12m: first day of the oldest month to last day of the current month.
    - 4q: first day of the oldest quarter to last day of the current quarter.
    """
    _validate_range(range_key)
    today = today or utc_now().date()

    if range_key == "4q":
        q_start = _quarter_start_month(today.month)
        start_year, start_month = _shift_month(today.year, q_start, -9)
        end_year, end_month = _shift_month(today.year, q_start, 2)
    else:
        count = RANGE_MONTHS[range_key]
        start_year, start_month = _shift_month(today.year, today.month, -(count - 1))
        end_year, end_month = today.year, today.month

    return PeriodInfo(
        start_date=date(start_year, start_month, 1),
        end_date=_month_end(end_year, end_month),
        label=RANGE_LABELS[range_key],
    )


def get_date_ranges(
    range_key: str, period_type: str, today: date | None = None
) -> list[PeriodInfo]:
    """
    Build the per-bucket period list for a range, oldest first.

    Monthly buckets are labelled ``YYYY-MM``; quarterly buckets ``Q<n> YYYY``.
    The 4q preset and the quarter period type always produce 4 quarters.
    """
    _validate_range(range_key)
    today = today or utc_now().date()
    periods: list[PeriodInfo] = []

    if period_type == "month" and range_key != "4q":
        count = RANGE_MONTHS[range_key]
        for i in range(count - 1, -1, -1):
            year, month = _shift_month(today.year, today.month, -i)
            periods.append(
                PeriodInfo(
                    start_date=date(year, month, 1),
                    end_date=_month_end(year, month),
                    label=f"{year}-{month:02d}",
                )
            )
        return periods

    q_start = _quarter_start_month(today.month)
    for i in range(3, -1, -1):
        year, month = _shift_month(today.year, q_start, -3 * i)
        end_year, end_month = _shift_month(year, month, 2)
        periods.append(
            PeriodInfo(
                start_date=date(year, month, 1),
                end_date=_month_end(end_year, end_month),
                label=f"Q{(month - 1) // 3 + 1} {year}",
            )
        )
    return periods


def period_type_for_range(range_key: str) -> str:
    """Period type recorded for a range preset: quarters for 4q, months otherwise."""
    _validate_range(range_key)
    return "quarter" if range_key == "4q" else "month"
