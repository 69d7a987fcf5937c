import asyncio
from concurrent.futures import ThreadPoolExecutor

from conftest import EXPIRY, TRADE_DAY, FakeBarsFetcher, et_ms, minute_bars
from flow.models import NS_PER_MS, RawTick
from flow.normalizer import TradeNormalizer
from flow.spot_price import PriceCache, SpotPriceResolver, minute_bucket
from utils.occ_parser import encode


# =============================================================================
# PriceCache
# =============================================================================

def test_cache_bound_evicts_oldest_batch():
    cache = PriceCache(max_entries=1000, evict_count=200)

    for i in range(1001):
        cache.put("SPY", i * 60_000, float(i))

    assert len(cache) == 801
    assert cache.get("SPY", 0) is None
    assert cache.get("SPY", 199 * 60_000) is None
    assert cache.get("SPY", 200 * 60_000) == 200.0
    assert cache.get("SPY", 1000 * 60_000) == 1000.0
    assert cache.get_stats()['evictions'] == 200


def test_cache_refresh_moves_entry_to_newest():
    cache = PriceCache(max_entries=3, evict_count=1)
    cache.put("A", 0, 1.0)
    cache.put("B", 0, 2.0)
    cache.put("A", 0, 1.5)
    cache.put("C", 0, 3.0)
    cache.put("D", 0, 4.0)

    assert cache.get("B", 0) is None
    assert cache.get("A", 0) == 1.5


def test_cache_membership_by_key():
    cache = PriceCache()
    cache.put("SPY", et_ms(10, 0), 101.5)

    assert ("SPY", et_ms(10, 0)) in cache
    assert ("SPY", et_ms(10, 1)) not in cache
    assert ("QQQ", et_ms(10, 0)) not in cache


def test_cache_concurrent_puts_stay_bounded():
    cache = PriceCache(max_entries=100, evict_count=20)

    def fill(symbol):
        for i in range(500):
            cache.put(symbol, i, float(i))

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(fill, ["A", "B", "C", "D"]))

    assert len(cache) <= 100


def test_minute_bucket():
    assert minute_bucket(et_ms(10, 30, 59, 999)) == et_ms(10, 30)


# =============================================================================
# SpotPriceResolver
# =============================================================================

def test_resolve_nearest_bar(bars_fetcher):
    resolver = SpotPriceResolver(bars_fetcher)

    # 10:30:40 is closer to the 10:31 bar (index 61) than to 10:30
    price = asyncio.run(resolver.resolve("SPY", et_ms(10, 30, 40)))

    assert round(price, 2) == round(100.0 + 61 * 0.1, 2)


def test_resolve_hits_cache_within_minute(bars_fetcher):
    resolver = SpotPriceResolver(bars_fetcher)

    async def run():
        first = await resolver.resolve("SPY", et_ms(11, 0, 1))
        second = await resolver.resolve("SPY", et_ms(11, 0, 2))
        return first, second

    first, second = asyncio.run(run())

    assert first == second
    assert len(bars_fetcher.minute_calls) == 1
    assert len(resolver.cache) == 1


def test_resolve_requests_trade_date_bars(bars_fetcher):
    resolver = SpotPriceResolver(bars_fetcher)

    asyncio.run(resolver.resolve("SPY", et_ms(15, 59)))

    symbol, day = bars_fetcher.minute_calls[0]
    assert (symbol, day.isoformat()) == ("SPY", "2025-10-17")


def test_resolve_falls_back_to_previous_close(bars_fetcher):
    resolver = SpotPriceResolver(bars_fetcher)

    price = asyncio.run(resolver.resolve("QQQ", et_ms(10, 0)))

    assert price == 400.0
    assert bars_fetcher.prev_calls == ["QQQ"]


def test_resolve_never_raises():
    resolver = SpotPriceResolver(FakeBarsFetcher(fail=True))

    assert asyncio.run(resolver.resolve("SPY", et_ms(10, 0))) == 0.0
    assert asyncio.run(resolver.current_price("SPY")) == 0.0


def test_resolve_tie_takes_earlier_bar():
    start = et_ms(10, 0)
    fetcher = FakeBarsFetcher(bars={"IWM": minute_bars("IWM", start, [200.0, 201.0])})
    resolver = SpotPriceResolver(fetcher)

    assert asyncio.run(resolver.resolve("IWM", start + 30_000)) == 200.0


def _spy_bars(delay):
    return FakeBarsFetcher(
        bars={"SPY": minute_bars("SPY", et_ms(9, 30), [100.0 + i * 0.1 for i in range(390)])},
        previous_close={"SPY": 99.0, "QQQ": 400.0},
        delay=delay,
    )


def test_concurrent_misses_share_one_bars_fetch():
    fetcher = _spy_bars(delay=0.01)
    normalizer = TradeNormalizer(SpotPriceResolver(fetcher))
    symbol = encode("SPY", EXPIRY, "call", 105)
    ticks = [RawTick(symbol, 2.5, 10, 302, (), et_ms(10, 30, 5) * NS_PER_MS) for _ in range(200)]

    trades = asyncio.run(normalizer.normalize_many(ticks, "SPY"))

    assert len(trades) == 200
    assert fetcher.minute_calls == [("SPY", TRADE_DAY)]
    assert len({t.spot_price for t in trades}) == 1


def test_fetched_day_serves_later_minutes():
    fetcher = _spy_bars(delay=0.01)
    resolver = SpotPriceResolver(fetcher)

    async def run():
        first = await asyncio.gather(*(resolver.resolve("SPY", et_ms(10, m)) for m in range(30)))
        later = await resolver.resolve("SPY", et_ms(14, 0))
        return first, later

    first, later = asyncio.run(run())

    assert len(fetcher.minute_calls) == 1
    assert round(first[0], 2) == 103.0
    assert round(later, 2) == 127.0
    assert len(resolver.cache) == 31


def test_previous_close_fallback_fetched_once():
    fetcher = _spy_bars(delay=0.01)
    resolver = SpotPriceResolver(fetcher)

    async def run():
        prices = await asyncio.gather(*(resolver.resolve("QQQ", et_ms(10, m)) for m in range(20)))
        again = await resolver.resolve("QQQ", et_ms(10, 5))
        later = await resolver.resolve("QQQ", et_ms(11, 0))
        return prices, again, later

    prices, again, later = asyncio.run(run())

    assert set(prices) == {400.0}
    assert again == later == 400.0
    assert fetcher.prev_calls == ["QQQ"]
    # empty days are not remembered, but the fallback minute is cached
    assert len(fetcher.minute_calls) == 2
    assert ("QQQ", et_ms(10, 5)) in resolver.cache


def test_failed_fetches_are_retried_later():
    fetcher = FakeBarsFetcher(fail=True, delay=0.01)
    resolver = SpotPriceResolver(fetcher)

    async def run():
        concurrent = await asyncio.gather(*(resolver.resolve("SPY", et_ms(10, 0)) for _ in range(10)))
        later = await resolver.resolve("SPY", et_ms(10, 1))
        return concurrent, later

    concurrent, later = asyncio.run(run())

    assert set(concurrent) == {0.0}
    assert later == 0.0
    assert len(fetcher.minute_calls) == 2
    assert len(fetcher.prev_calls) == 2
    assert len(resolver.cache) == 0
