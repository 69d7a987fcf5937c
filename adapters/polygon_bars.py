"""
Polygon Aggregates Fetcher

Fetches underlying price aggregates from Polygon.io REST API:
- Previous-day close (/v2/aggs/ticker/{symbol}/prev)
- One day of 1-minute bars (/v2/aggs/ticker/{symbol}/range/1/minute/{date}/{date})

Used to resolve the underlying's spot price at each option trade's timestamp.

Usage:
    fetcher = PolygonBarsFetcher(client)
    bars = await fetcher.get_minute_bars("AAPL", date(2025, 10, 17))
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, List

from .polygon_client import ParseError, PolygonClient

logger = logging.getLogger(__name__)


@dataclass
class Bar:
    """Single OHLCV bar."""
    symbol: str
    timestamp: int  # bar open, Unix timestamp (ms)
    open: float
    high: float
    low: float
    close: float
    volume: int
    vwap: Optional[float] = None
    trade_count: Optional[int] = None


@dataclass
class BarData:
    """Collection of bars for a symbol."""
    symbol: str
    bars: List[Bar]
    latest_price: Optional[float] = None

    @property
    def has_data(self) -> bool:
        return len(self.bars) > 0

    def closest_bar(self, timestamp_ms: int) -> Optional[Bar]:
        """Bar whose open time is nearest to timestamp_ms (first wins on ties)."""
        closest = None
        closest_diff = None
        for bar in self.bars:
            diff = abs(bar.timestamp - timestamp_ms)
            if closest_diff is None or diff < closest_diff:
                closest = bar
                closest_diff = diff
        return closest


class PolygonBarsFetcher:
    """
    Fetches underlying aggregates through a shared PolygonClient.

    Transport and status errors propagate (after the client's retries);
    malformed payloads are logged and treated as empty.
    """

    def __init__(self, client: PolygonClient):
        self.client = client

        # Metrics
        self._total_requests = 0
        self._empty_responses = 0

    async def get_minute_bars(self, symbol: str, day: date) -> BarData:
        """
        Get one trading day of 1-minute bars for a symbol.

        Args:
            symbol: Stock symbol
            day: Calendar date (ET)

        Returns:
            BarData sorted by bar open time
        """
        day_str = day.strftime('%Y-%m-%d')
        path = f"/v2/aggs/ticker/{symbol}/range/1/minute/{day_str}/{day_str}"
        params = {"adjusted": "true", "sort": "asc", "limit": 50000}

        self._total_requests += 1
        try:
            data = await self.client.get_json(path, params)
        except ParseError as e:
            logger.warning(f"Minute bars for {symbol} {day_str} unreadable: {e}")
            self._empty_responses += 1
            return BarData(symbol=symbol, bars=[])

        bar_data = self._parse_response(symbol, data)
        if not bar_data.has_data:
            self._empty_responses += 1
        return bar_data

    async def get_previous_close(self, symbol: str) -> Optional[float]:
        """
        Previous session close for a symbol.

        Returns:
            Close price, or None when Polygon has no result
        """
        self._total_requests += 1
        try:
            data = await self.client.get_json(f"/v2/aggs/ticker/{symbol}/prev", {"adjusted": "true"})
        except ParseError as e:
            logger.warning(f"Previous close for {symbol} unreadable: {e}")
            return None

        results = data.get("results") or []
        if not results:
            self._empty_responses += 1
            return None

        close = results[0].get("c")
        return float(close) if close else None

    def _parse_response(self, symbol: str, data: dict) -> BarData:
        """Parse Polygon aggregates response."""
        bars = []

        for r in data.get("results") or []:
            try:
                bars.append(Bar(
                    symbol=symbol,
                    timestamp=int(r["t"]),
                    open=float(r["o"]),
                    high=float(r["h"]),
                    low=float(r["l"]),
                    close=float(r["c"]),
                    volume=int(r.get("v", 0)),
                    vwap=float(r["vw"]) if r.get("vw") else None,
                    trade_count=int(r["n"]) if r.get("n") else None,
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed bar for {symbol}: {e}")

        bars.sort(key=lambda x: x.timestamp)

        bar_data = BarData(symbol=symbol, bars=bars)
        if bars:
            bar_data.latest_price = bars[-1].close

        return bar_data

    def get_metrics(self) -> dict:
        """Get fetcher metrics."""
        return {
            "total_requests": self._total_requests,
            "empty_responses": self._empty_responses,
        }
