"""
Expiration Calendar

Enumerates candidate option expiration dates for building synthetic
contract symbols when scanning a full chain:
- Weekly Fridays
- Monthly (3rd Friday)
- End-of-month (last Friday)
- Last-week-of-month weekdays (day 25 onward)
"""

import calendar
from datetime import date, timedelta
from typing import Optional

FRIDAY = 4
LAST_WEEK_START_DAY = 25
DEFAULT_HORIZON_DAYS = 365


def is_third_friday(d: date) -> bool:
    """Standard monthly expiration: the 3rd Friday falls on day 15-21."""
    return d.weekday() == FRIDAY and 15 <= d.day <= 21


def is_last_friday(d: date) -> bool:
    if d.weekday() != FRIDAY:
        return False
    days_in_month = calendar.monthrange(d.year, d.month)[1]
    return d.day + 7 > days_in_month


def is_expiration_candidate(d: date) -> bool:
    if d.weekday() == FRIDAY or is_third_friday(d) or is_last_friday(d):
        return True
    return d.day >= LAST_WEEK_START_DAY and d.weekday() < 5


def generate_expirations(
    max_count: int,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    today: Optional[date] = None,
) -> list[str]:
    """
    Candidate expirations as YYMMDD strings, in calendar order.

    Args:
        max_count: Stop once this many distinct dates are collected
        horizon_days: Number of calendar days to walk, starting at today
        today: Starting date (default: date.today())

    Returns:
        Ordered list of distinct YYMMDD strings
    """
    start = today or date.today()
    expirations: list[str] = []

    for offset in range(horizon_days):
        if len(expirations) >= max_count:
            break
        d = start + timedelta(days=offset)
        if is_expiration_candidate(d):
            expirations.append(d.strftime("%y%m%d"))

    return expirations


def format_expiry(expiration: str) -> str:
    """Convert YYMMDD to YYYY-MM-DD."""
    return f"{2000 + int(expiration[:2])}-{expiration[2:4]}-{expiration[4:6]}"


if __name__ == "__main__":
    print("Expiration Calendar")
    print("=" * 60)
    for exp in generate_expirations(20):
        print(f"  {exp} -> {format_expiry(exp)}")
