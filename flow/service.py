"""
Options Flow Service

Public entry points for the flow engine:
- fetch_live_flow: batch scan of one/many/ALL tickers, classified and ranked
- fetch_live_flow_streaming: same, with a re-ranked progress callback per batch
- fetch_ticker_trades: one ticker's normalized trades (live or snapshot mode)
- scan_for_sweeps: full-chain scan over a synthetic strike/expiry grid
- process_raw_trades: normalize + classify ticks obtained elsewhere

Usage:
    async with OptionsFlowService(api_key) as service:
        flow = await service.fetch_live_flow("SPY,QQQ")
"""

import asyncio
import inspect
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from adapters.polygon_bars import PolygonBarsFetcher
from adapters.polygon_client import PolygonClient
from adapters.polygon_snapshot import PolygonSnapshotFetcher
from adapters.polygon_trades import ContractRef, PolygonTradesFetcher
from utils.expirations import generate_expirations
from utils.occ_parser import encode
from .classifier import TradeClassifier, parse_ticker_filter, rank_trades, summarize
from .config import DEFAULT_CONFIG, FlowConfig
from .market_hours import is_market_open, market_open_timestamp_ms
from .models import NS_PER_MS, NormalizedTrade, RawTick
from .normalizer import TradeNormalizer
from .scanner import BatchScanner, ScanProgress
from .spot_price import SpotPriceResolver

logger = logging.getLogger(__name__)


@dataclass
class FlowProgress:
    """Cumulative, re-ranked flow after a batch of tickers."""
    trades: list[NormalizedTrade]
    batch_index: int
    batch_count: int
    tickers_in_batch: list[str]
    message: str = ""
    failed_tickers: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.batch_index == self.batch_count - 1


def build_strike_grid(spot: float, config: FlowConfig = DEFAULT_CONFIG) -> list[float]:
    """
    Every listed-looking strike from min% to max% of spot.

    Union of the multiples of each increment in SWEEP_SCAN_STRIKE_INCREMENTS.
    """
    if spot <= 0:
        return []
    low = spot * config.SWEEP_SCAN_MIN_STRIKE_PCT
    high = max(spot * 1.10, spot * config.SWEEP_SCAN_MAX_STRIKE_PCT)

    strikes = set()
    for increment in config.SWEEP_SCAN_STRIKE_INCREMENTS:
        for k in range(math.floor(low / increment), math.ceil(high / increment) + 1):
            strike = round(k * increment, 2)
            if low <= strike <= high:
                strikes.add(strike)
    return sorted(strikes)


def prefilter_contracts(
    contracts: list[ContractRef],
    spot: float,
    limit: int,
    max_itm_pct: float = DEFAULT_CONFIG.MAX_ITM_PCT,
) -> list[ContractRef]:
    """Contracts inside the ITM band, nearest strikes first, capped at limit."""
    if spot <= 0:
        return contracts[:limit]

    kept = []
    for c in contracts:
        pct = (c.strike - spot) / spot
        if (c.option_type == 'call' and pct >= -max_itm_pct) or (c.option_type == 'put' and pct <= max_itm_pct):
            kept.append(c)

    kept.sort(key=lambda c: abs(c.strike - spot))
    return kept[:limit]


class OptionsFlowService:
    """
    Options flow scanner over Polygon REST.

    Collaborators can be injected; by default everything is built on one
    shared PolygonClient.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: FlowConfig = DEFAULT_CONFIG,
        client: Optional[PolygonClient] = None,
        trades_fetcher: Optional[PolygonTradesFetcher] = None,
        snapshot_fetcher: Optional[PolygonSnapshotFetcher] = None,
        bars_fetcher: Optional[PolygonBarsFetcher] = None,
    ):
        self.config = config
        api_key = api_key or config.POLYGON_API_KEY or os.environ.get("POLYGON_API_KEY", "")
        if client is None and not api_key and None in (trades_fetcher, snapshot_fetcher, bars_fetcher):
            raise ValueError("POLYGON_API_KEY not set")

        self.client = client or PolygonClient(
            api_key,
            timeout=config.REQUEST_TIMEOUT_SEC,
            max_retries=config.MAX_RETRIES,
            backoff_base=config.BACKOFF_BASE_SEC,
        )
        self.trades_fetcher = trades_fetcher or PolygonTradesFetcher(
            self.client, page_limit=config.TRADES_PAGE_LIMIT
        )
        self.snapshot_fetcher = snapshot_fetcher or PolygonSnapshotFetcher(self.client)
        self.bars_fetcher = bars_fetcher or PolygonBarsFetcher(self.client)

        self.resolver = SpotPriceResolver(self.bars_fetcher, config)
        self.normalizer = TradeNormalizer(self.resolver, config)
        self.classifier = TradeClassifier(config)

    async def close(self):
        await self.client.close()

    async def __aenter__(self) -> "OptionsFlowService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def resolve_tickers(self, ticker: Optional[str]) -> list[str]:
        """None/"ALL" -> configured universe, "A,B" -> [A, B], else [ticker]."""
        wanted = parse_ticker_filter(ticker)
        if wanted is None:
            return list(self.config.UNIVERSE)
        # keep request order
        return [t.strip().upper() for t in ticker.split(",") if t.strip()]

    # =========================================================================
    # Per-ticker fetch
    # =========================================================================

    async def fetch_ticker_trades(self, ticker: str, now: Optional[datetime] = None) -> list[NormalizedTrade]:
        """
        Normalized trades for one underlying.

        Market open: today's trade ticks for the nearest in-band contracts.
        Otherwise: each contract's last trade from the chain snapshot.
        """
        if is_market_open(now, self.config):
            ticks = await self._fetch_live_ticks(ticker, now)
            mode = "live"
        else:
            snapshot = await self.snapshot_fetcher.get_option_chain(ticker)
            ticks = snapshot.last_trades
            mode = "snapshot"

        trades = await self.normalizer.normalize_many(ticks, ticker)
        logger.debug(f"{ticker} ({mode}): {len(ticks)} ticks -> {len(trades)} trades")
        return trades

    async def _fetch_live_ticks(self, ticker: str, now: Optional[datetime]) -> list[RawTick]:
        config = self.config
        contracts = await self.trades_fetcher.get_contracts(ticker, limit=config.CONTRACTS_PAGE_LIMIT)
        if not contracts:
            return []

        spot = await self.resolver.current_price(ticker)
        selected = prefilter_contracts(contracts, spot, config.MAX_CONTRACTS_PER_TICKER, config.MAX_ITM_PCT)
        since_ns = market_open_timestamp_ms(now, config) * NS_PER_MS

        scanner = BatchScanner(
            batch_size=config.CONTRACT_BATCH_SIZE,
            inter_batch_delay=config.CONTRACT_BATCH_DELAY_SEC,
            name=f"{ticker} contracts",
        )
        return await scanner.scan(
            [c.symbol for c in selected],
            lambda symbol: self.trades_fetcher.get_trades(symbol, since_ns),
        )

    # =========================================================================
    # Scans
    # =========================================================================

    async def fetch_live_flow(self, ticker: Optional[str] = None) -> list[NormalizedTrade]:
        """
        Classified, ranked flow for one ticker, a comma list, or ALL.

        Failed tickers contribute nothing. Honors SCAN_DEADLINE_SEC.
        """
        tickers = self.resolve_tickers(ticker)
        scanner = BatchScanner(
            batch_size=self.config.TICKER_BATCH_SIZE,
            inter_batch_delay=self.config.TICKER_BATCH_DELAY_SEC,
            name="flow",
        )
        logger.info(f"Scanning {len(tickers)} tickers in {len(scanner.batches(tickers))} batches")

        trades = await scanner.scan_with_deadline(tickers, self.fetch_ticker_trades, self.config.SCAN_DEADLINE_SEC)
        flow = self.classifier.classify(trades, ticker)

        stats = scanner.get_stats()
        logger.info(f"Flow scan done: {len(flow)} trades from {stats['succeeded']}/{len(tickers)} tickers")
        return flow

    async def fetch_live_flow_streaming(
        self,
        ticker: Optional[str],
        on_progress: Callable[[FlowProgress], Any],
    ) -> list[NormalizedTrade]:
        """
        Batch scan that reports cumulative, re-ranked flow after every batch.

        Args:
            ticker: One ticker, comma list, or None/"ALL"
            on_progress: Sync or async callback receiving FlowProgress

        Returns:
            Final ranked flow
        """
        tickers = self.resolve_tickers(ticker)
        scanner = BatchScanner(
            batch_size=self.config.TICKER_BATCH_SIZE,
            inter_batch_delay=self.config.STREAMING_BATCH_DELAY_SEC,
            name="flow-stream",
        )
        cumulative: list[NormalizedTrade] = []

        async def handle_batch(progress: ScanProgress):
            nonlocal cumulative
            new_trades = [t for r in progress.batch_results for t in r.items]
            classified = self.classifier.classify(new_trades, ticker)
            cumulative = rank_trades(cumulative + classified, self.config.RANK_TIE_PREMIUM)

            update = FlowProgress(
                trades=list(cumulative),
                batch_index=progress.batch_index,
                batch_count=progress.batch_count,
                tickers_in_batch=progress.tickers_in_batch,
                message=(
                    f"Batch {progress.batch_index + 1}/{progress.batch_count}: "
                    f"{len(classified)} new trades, {len(cumulative)} total"
                ),
                failed_tickers=[r.ticker for r in progress.batch_results if not r.success],
            )
            outcome = on_progress(update)
            if inspect.isawaitable(outcome):
                await outcome

        await scanner.scan_with_deadline(
            tickers, self.fetch_ticker_trades, self.config.SCAN_DEADLINE_SEC, on_progress=handle_batch
        )
        return cumulative

    async def scan_for_sweeps(self, ticker: str, now: Optional[datetime] = None) -> list[NormalizedTrade]:
        """
        Full-chain scan: today's trades on every synthetic contract in the
        strike/expiry grid, then classified. Partial results after
        SWEEP_SCAN_DEADLINE_SEC.
        """
        config = self.config
        ticker = ticker.upper()

        spot = await self.resolver.current_price(ticker)
        if spot <= 0:
            logger.warning(f"No reference price for {ticker}, skipping full-chain scan")
            return []

        strikes = build_strike_grid(spot, config)
        expirations = generate_expirations(config.SWEEP_SCAN_EXPIRATIONS)
        symbols = [
            encode(ticker, exp, kind, strike)
            for exp in expirations
            for strike in strikes
            for kind in ('call', 'put')
        ]
        logger.info(
            f"{ticker} @ ${spot:.2f}: scanning {len(symbols)} contracts "
            f"({len(strikes)} strikes x {len(expirations)} expirations)"
        )

        since_ns = market_open_timestamp_ms(now, config) * NS_PER_MS
        scanner = BatchScanner(
            batch_size=config.CONTRACT_BATCH_SIZE,
            inter_batch_delay=config.CONTRACT_BATCH_DELAY_SEC,
            name=f"{ticker} sweep-scan",
        )
        ticks = await scanner.scan_with_deadline(
            symbols,
            lambda symbol: self.trades_fetcher.get_trades(symbol, since_ns),
            config.SWEEP_SCAN_DEADLINE_SEC,
        )

        flow = await self.process_raw_trades(ticks, ticker)
        if scanner.timed_out:
            logger.warning(f"{ticker} full-chain scan hit deadline; {len(flow)} trades from partial data")
        return flow

    async def process_raw_trades(self, ticks: list[RawTick], ticker: Optional[str] = None) -> list[NormalizedTrade]:
        """Normalize and classify ticks obtained outside the scanners."""
        trades = await self.normalizer.normalize_many(ticks)
        return self.classifier.classify(trades, ticker)


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    async def main():
        target = sys.argv[1] if len(sys.argv) > 1 else "SPY"
        config = FlowConfig.from_env()
        if not config.POLYGON_API_KEY:
            print("POLYGON_API_KEY not set")
            return

        async with OptionsFlowService(config=config) as service:
            flow = await service.fetch_live_flow(target)

        print(f"\n{len(flow)} trades for {target}")
        for trade in flow[:20]:
            print(
                f"  {trade.classification.value:10} {trade.contract_symbol:24} "
                f"{trade.size:>6} @ ${trade.price_per_contract:<8.2f} "
                f"${trade.total_premium:>12,.0f}  {trade.moneyness.value}  {trade.exchange_name}"
            )
        print(f"\nSummary: {summarize(flow)}")

    asyncio.run(main())
