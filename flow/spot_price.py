"""
Historical Spot Price Resolver

Resolves the underlying's price at an option trade's own timestamp, so
moneyness reflects the market when the trade printed rather than now.

Lookup order:
1. Cache keyed on (symbol, minute bucket)
2. Closest 1-minute bar on the trade's ET calendar date (one fetch per
   symbol and day, shared by concurrent callers)
3. Previous session close (also cached under the minute bucket)
4. 0.0 (logged; the trade is later dropped by the ITM band)

The cache is capacity bounded with no TTL: once it holds more than
max_entries, the oldest evict_count insertions are removed.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from threading import Lock
from typing import Awaitable, Callable, Optional

from adapters.polygon_bars import BarData, PolygonBarsFetcher
from adapters.polygon_client import PolygonError
from .config import DEFAULT_CONFIG, FlowConfig
from .market_hours import trade_date_et

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000


def minute_bucket(timestamp_ms: int) -> int:
    """Round down to the containing minute."""
    return timestamp_ms // MS_PER_MINUTE * MS_PER_MINUTE


@dataclass
class PriceCacheEntry:
    symbol: str
    minute_bucket: int
    price: float
    inserted_at: float


class PriceCache:
    """
    Insertion-ordered price cache.

    Thread-safe; multiple in-flight resolutions touch it during a batch.
    """

    def __init__(self, max_entries: int = 1000, evict_count: int = 200):
        self.max_entries = max_entries
        self.evict_count = evict_count
        self._entries: "OrderedDict[tuple[str, int], PriceCacheEntry]" = OrderedDict()
        self._lock = Lock()

        # Stats
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, symbol: str, bucket: int) -> Optional[float]:
        with self._lock:
            entry = self._entries.get((symbol, bucket))
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry.price

    def put(self, symbol: str, bucket: int, price: float):
        """Insert or refresh an entry, evicting the oldest batch when over capacity."""
        key = (symbol, bucket)
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            self._entries[key] = PriceCacheEntry(symbol, bucket, price, time.time())

            if len(self._entries) > self.max_entries:
                for _ in range(min(self.evict_count, len(self._entries))):
                    self._entries.popitem(last=False)
                    self._evictions += 1
                logger.debug(f"Price cache evicted {self.evict_count}, {len(self._entries)} resident")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._entries

    def clear(self):
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'entries': len(self._entries),
                'hits': self._hits,
                'misses': self._misses,
                'evictions': self._evictions,
            }


class SpotPriceResolver:
    """
    Spot price at trade time, backed by PriceCache.

    Never raises: fetch failures degrade to the previous close, then 0.0.
    Concurrent misses for the same (symbol, day) share one minute-bars
    request, and a fetched day is reused for later minutes it covers.
    Previous closes are remembered per symbol for the current ET date.

    Usage:
        resolver = SpotPriceResolver(PolygonBarsFetcher(client))
        spot = await resolver.resolve("AAPL", trade.timestamp_ms)
    """

    def __init__(
        self,
        bars_fetcher: PolygonBarsFetcher,
        config: FlowConfig = DEFAULT_CONFIG,
        cache: Optional[PriceCache] = None,
    ):
        self.bars_fetcher = bars_fetcher
        self.config = config
        self.cache = cache or PriceCache(
            max_entries=config.PRICE_CACHE_MAX_ENTRIES,
            evict_count=config.PRICE_CACHE_EVICT_COUNT,
        )

        self._day_bars: "OrderedDict[tuple[str, date], BarData]" = OrderedDict()
        self._prev_closes: dict[tuple[str, date], float] = {}
        self._bars_inflight: dict[tuple[str, date], asyncio.Future] = {}
        self._prev_inflight: dict[tuple[str, date], asyncio.Future] = {}

    async def resolve(self, symbol: str, timestamp_ms: int) -> float:
        bucket = minute_bucket(timestamp_ms)
        cached = self.cache.get(symbol, bucket)
        if cached is not None:
            return cached

        day = trade_date_et(timestamp_ms)
        bar_data = await self.day_bars(symbol, day, timestamp_ms)
        if bar_data is not None and bar_data.has_data:
            bar = bar_data.closest_bar(timestamp_ms)
            self.cache.put(symbol, bucket, bar.close)
            return bar.close

        price = await self.current_price(symbol)
        if price:
            logger.debug(f"{symbol}: no bars for {day}, using previous close {price}")
            self.cache.put(symbol, bucket, price)
            return price

        logger.error(f"No spot price for {symbol} at {timestamp_ms}")
        return 0.0

    async def day_bars(self, symbol: str, day: date, timestamp_ms: int) -> Optional[BarData]:
        """
        Minute bars for symbol on day, fetched at most once per key in flight.

        A remembered day is reused when it covers timestamp_ms: past days
        always do, the current day only up to its latest bar.
        """
        key = (symbol, day)
        known = self._day_bars.get(key)
        if known is not None and self._covers(known, day, timestamp_ms):
            return known
        return await self._shared(self._bars_inflight, key, lambda: self._fetch_day_bars(symbol, day))

    async def current_price(self, symbol: str) -> float:
        """Most recent daily close (0.0 when unavailable)."""
        key = (symbol, _today_et())
        if key in self._prev_closes:
            return self._prev_closes[key]
        return await self._shared(self._prev_inflight, key, lambda: self._fetch_previous_close(key))

    async def _fetch_day_bars(self, symbol: str, day: date) -> Optional[BarData]:
        try:
            bar_data = await self.bars_fetcher.get_minute_bars(symbol, day)
        except PolygonError as e:
            logger.warning(f"Minute bars unavailable for {symbol} {day}: {e}")
            return None

        if bar_data.has_data:
            key = (symbol, day)
            self._day_bars.pop(key, None)
            self._day_bars[key] = bar_data
            while len(self._day_bars) > self.config.SPOT_BARS_MEMO_DAYS:
                self._day_bars.popitem(last=False)
        return bar_data

    async def _fetch_previous_close(self, key: tuple[str, date]) -> float:
        symbol = key[0]
        try:
            price = await self.bars_fetcher.get_previous_close(symbol)
        except PolygonError as e:
            logger.warning(f"Previous close unavailable for {symbol}: {e}")
            return 0.0

        if price:
            self._prev_closes[key] = price
        return price or 0.0

    @staticmethod
    async def _shared(inflight: dict, key, fetch: Callable[[], Awaitable]):
        """Await the running fetch for key, starting one if none is in flight."""
        task = inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fetch())
            inflight[key] = task
            task.add_done_callback(lambda _: inflight.pop(key, None))
        # A cancelled caller must not cancel the fetch other callers await
        return await asyncio.shield(task)

    @staticmethod
    def _covers(bar_data: BarData, day: date, timestamp_ms: int) -> bool:
        if day < _today_et():
            return True
        return timestamp_ms < bar_data.bars[-1].timestamp + MS_PER_MINUTE


def _today_et() -> date:
    return trade_date_et(int(time.time() * 1000))
