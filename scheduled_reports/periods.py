# ============================================================================
# Scheduled Reports - Periods
# ============================================================================
# Recurrence granularities, their labels, and the date range a dispatch
# covers (the last complete period before the run).
# ============================================================================

from datetime import date, datetime, timedelta
from typing import Tuple

PERIOD_NEVER = "never"
PERIOD_DAY = "day"
PERIOD_WEEK = "week"
PERIOD_MONTH = "month"
PERIOD_YEAR = "year"
PERIOD_RANGE = "range"

PERIODS = (PERIOD_NEVER, PERIOD_DAY, PERIOD_WEEK, PERIOD_MONTH, PERIOD_YEAR, PERIOD_RANGE)
DEFAULT_PERIOD = PERIOD_WEEK
DEFAULT_HOUR = 0

# Number of days covered by a range report.
RANGE_DAYS = 7

# Used in report listings
PERIOD_TO_FREQUENCY = {
    PERIOD_NEVER: "Never",
    PERIOD_DAY: "Daily",
    PERIOD_WEEK: "Weekly",
    PERIOD_MONTH: "Monthly",
    PERIOD_YEAR: "Yearly",
    PERIOD_RANGE: "Date range",
}

# Used in the email body, ie "your monthly report"
PERIOD_TO_ADJECTIVE = {
    PERIOD_DAY: "daily",
    PERIOD_WEEK: "weekly",
    PERIOD_MONTH: "monthly",
    PERIOD_YEAR: "yearly",
    PERIOD_RANGE: "date range",
}


def period_adjective(period: str) -> str:
    return PERIOD_TO_ADJECTIVE.get(period, period)


def previous_period_range(period: str, today: date) -> Tuple[date, date]:
    """Return the (start, end) dates of the last complete *period* before *today*."""
    yesterday = today - timedelta(days=1)

    if period == PERIOD_WEEK:
        this_monday = today - timedelta(days=today.weekday())
        start = this_monday - timedelta(days=7)
        return start, start + timedelta(days=6)

    if period == PERIOD_MONTH:
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end

    if period == PERIOD_YEAR:
        year = today.year - 1
        return date(year, 1, 1), date(year, 12, 31)

    if period == PERIOD_RANGE:
        return yesterday - timedelta(days=RANGE_DAYS - 1), yesterday

    return yesterday, yesterday


def _long_date(d: date) -> str:
    return f"{d.day} {d:%B %Y}"


def pretty_date(period: str, start: date, end: date) -> str:
    """Human readable label for a report's date range."""
    if period == PERIOD_DAY:
        return f"{start:%A} {_long_date(start)}"
    if period == PERIOD_WEEK:
        return f"Week {_long_date(start)} to {_long_date(end)}"
    if period == PERIOD_MONTH:
        return f"{start:%B %Y}"
    if period == PERIOD_YEAR:
        return str(start.year)
    return f"{_long_date(start)} to {_long_date(end)}"


def report_dates(period: str, now: datetime) -> Tuple[Tuple[date, date], str]:
    """Date range and pretty label for a dispatch happening at *now* (site-local)."""
    start, end = previous_period_range(period, now.date())
    return (start, end), pretty_date(period, start, end)
