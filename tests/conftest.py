"""
Shared fixtures and builders for the flow tests.

All timestamps sit on Friday 2025-10-17, a regular session day, so
market-hours filtering only drops what a test means to drop.
"""
import asyncio
from datetime import date, datetime
from typing import Optional

import pytest

from adapters.polygon_bars import Bar, BarData
from adapters.polygon_client import TransportError
from flow.market_hours import ET
from flow.models import OPTIONS_MULTIPLIER, NormalizedTrade, exchange_name
from utils.occ_parser import encode

TRADE_DAY = date(2025, 10, 17)
EXPIRY = date(2025, 11, 21)


def et_ms(hour: int, minute: int, second: int = 0, millis: int = 0, day: date = TRADE_DAY) -> int:
    """Epoch milliseconds for a wall-clock time in New York."""
    local = ET.localize(datetime(day.year, day.month, day.day, hour, minute, second))
    return int(local.timestamp()) * 1000 + millis


def make_trade(
    underlying: str = "SPY",
    strike: float = 100.0,
    option_type: str = "call",
    size: int = 100,
    price: float = 5.0,
    spot: float = 100.0,
    timestamp_ms: Optional[int] = None,
    expiry: date = EXPIRY,
    exchange: int = 1,
    **overrides,
) -> NormalizedTrade:
    """
    Build a NormalizedTrade with premium derived from price and size.

    Usage:
        trade = make_trade(strike=105, price=3.0, size=200)
    """
    fields = dict(
        contract_symbol=encode(underlying, expiry, option_type, strike),
        underlying=underlying,
        strike=strike,
        expiry=expiry,
        option_type=option_type,
        size=size,
        price_per_contract=price,
        total_premium=price * size * OPTIONS_MULTIPLIER,
        spot_price=spot,
        exchange_code=exchange,
        exchange_name=exchange_name(exchange),
        trade_timestamp=et_ms(10, 30) if timestamp_ms is None else timestamp_ms,
    )
    fields.update(overrides)
    return NormalizedTrade(**fields)


class FakeBarsFetcher:
    """Stands in for PolygonBarsFetcher; counts calls per endpoint."""

    def __init__(
        self,
        bars: Optional[dict] = None,
        previous_close: Optional[dict] = None,
        fail: bool = False,
        delay: float = 0.0,
    ):
        self.bars = bars or {}
        self.previous_close = previous_close or {}
        self.fail = fail
        self.delay = delay  # seconds each call yields to the loop
        self.minute_calls = []
        self.prev_calls = []

    async def get_minute_bars(self, symbol: str, day: date) -> BarData:
        self.minute_calls.append((symbol, day))
        await asyncio.sleep(self.delay)
        if self.fail:
            raise TransportError("connection reset", "https://api.polygon.io/v2/aggs")
        return BarData(symbol=symbol, bars=list(self.bars.get(symbol, [])))

    async def get_previous_close(self, symbol: str) -> Optional[float]:
        self.prev_calls.append(symbol)
        await asyncio.sleep(self.delay)
        if self.fail:
            raise TransportError("connection reset", "https://api.polygon.io/v2/aggs")
        return self.previous_close.get(symbol)


def minute_bars(symbol: str, start_ms: int, closes: list[float]) -> list[Bar]:
    """Consecutive 1-minute bars opening at start_ms."""
    return [
        Bar(symbol=symbol, timestamp=start_ms + i * 60_000, open=c, high=c, low=c, close=c, volume=1000)
        for i, c in enumerate(closes)
    ]


@pytest.fixture
def bars_fetcher() -> FakeBarsFetcher:
    start = et_ms(9, 30)
    return FakeBarsFetcher(
        bars={"SPY": minute_bars("SPY", start, [100.0 + i * 0.1 for i in range(390)])},
        previous_close={"SPY": 99.0, "QQQ": 400.0},
    )
