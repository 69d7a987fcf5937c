"""
Market Hours (ET)

Regular session is 9:30 AM - 4:00 PM ET, Monday-Friday. Trade timestamps
arrive as UTC epoch milliseconds and are converted with pytz so DST is
handled.
"""

from datetime import date, datetime, timedelta
from typing import Optional

import pytz

from .config import DEFAULT_CONFIG, FlowConfig

ET = pytz.timezone("America/New_York")


def to_et(timestamp_ms: int) -> datetime:
    """Epoch milliseconds -> aware ET datetime."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=pytz.utc).astimezone(ET)


def trade_date_et(timestamp_ms: int) -> date:
    return to_et(timestamp_ms).date()


def is_within_market_hours(timestamp_ms: int, config: FlowConfig = DEFAULT_CONFIG) -> bool:
    """
    Minute-of-day check against the regular session, both ends inclusive.
    A print at 16:00:45 ET still counts as 16:00.
    """
    local = to_et(timestamp_ms).time().replace(second=0, microsecond=0)
    return config.MARKET_OPEN <= local <= config.MARKET_CLOSE


def _now_et(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(ET)
    if now.tzinfo is None:
        return ET.localize(now)
    return now.astimezone(ET)


def is_market_open(now: Optional[datetime] = None, config: FlowConfig = DEFAULT_CONFIG) -> bool:
    """Check if the regular session is open (weekends closed, close exclusive)."""
    eastern = _now_et(now)
    if eastern.weekday() >= 5:
        return False
    return config.MARKET_OPEN <= eastern.time() < config.MARKET_CLOSE


def last_trading_day(now: Optional[datetime] = None) -> date:
    """Today on weekdays, otherwise the preceding Friday."""
    day = _now_et(now).date()
    if day.weekday() == 5:
        return day - timedelta(days=1)
    if day.weekday() == 6:
        return day - timedelta(days=2)
    return day


def market_open_timestamp_ms(now: Optional[datetime] = None, config: FlowConfig = DEFAULT_CONFIG) -> int:
    """Epoch ms of the most recent trading day's 9:30 AM ET open."""
    open_dt = ET.localize(datetime.combine(last_trading_day(now), config.MARKET_OPEN))
    return int(open_dt.timestamp() * 1000)
