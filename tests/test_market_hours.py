from datetime import date, datetime

from conftest import et_ms
from flow.config import FlowConfig
from flow.market_hours import (
    ET,
    is_market_open,
    is_within_market_hours,
    last_trading_day,
    market_open_timestamp_ms,
    trade_date_et,
)


def test_session_minutes_inclusive():
    assert not is_within_market_hours(et_ms(9, 29, 59))
    assert is_within_market_hours(et_ms(9, 30))
    assert is_within_market_hours(et_ms(16, 0, 59))
    assert not is_within_market_hours(et_ms(16, 1))


def test_session_handles_standard_time():
    winter = date(2025, 1, 15)

    assert is_within_market_hours(et_ms(9, 30, day=winter))
    assert not is_within_market_hours(et_ms(9, 29, day=winter))


def test_custom_session():
    config = FlowConfig(MARKET_CLOSE=datetime(2025, 1, 1, 13, 0).time())

    assert not is_within_market_hours(et_ms(14, 0), config)


def test_trade_date_uses_new_york_calendar():
    # 23:30 ET is already the next day in UTC
    ts = et_ms(23, 30, day=date(2025, 10, 16))

    assert trade_date_et(ts) == date(2025, 10, 16)


def test_market_open_weekday_and_weekend():
    assert is_market_open(ET.localize(datetime(2025, 10, 17, 10, 0)))
    assert not is_market_open(ET.localize(datetime(2025, 10, 17, 16, 0)))
    assert not is_market_open(ET.localize(datetime(2025, 10, 18, 11, 0)))


def test_last_trading_day_rolls_back_weekends():
    assert last_trading_day(datetime(2025, 10, 18, 12, 0)) == date(2025, 10, 17)
    assert last_trading_day(datetime(2025, 10, 19, 12, 0)) == date(2025, 10, 17)
    assert last_trading_day(datetime(2025, 10, 20, 12, 0)) == date(2025, 10, 20)


def test_market_open_timestamp():
    assert market_open_timestamp_ms(datetime(2025, 10, 19, 12, 0)) == et_ms(9, 30)
