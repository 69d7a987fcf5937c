"""
Options Flow Configuration

Classification rules:
- SWEEP: same contract, 5-second window, >= 100 contracts and >= $50K combined
- MULTI-LEG: same underlying, identical millisecond, >= $50K combined,
  differing strikes, types or expiries
- BLOCK: single trade >= $25K on one exchange
- Institutional tiers: price/size floors, any tier passes
- Only 9:30 AM - 4:00 PM ET, at most 5% ITM (unlimited OTM)
"""

import os
from dataclasses import dataclass
from datetime import time as dt_time
from typing import Optional


@dataclass(frozen=True)
class InstitutionalTier:
    """Minimum price/size (and optional total premium) for institutional size."""
    label: str
    min_price: float
    min_size: int
    min_total: Optional[float] = None

    def matches(self, price: float, size: int, total_premium: float) -> bool:
        if price < self.min_price or size < self.min_size:
            return False
        return self.min_total is None or total_premium >= self.min_total


DEFAULT_TIERS: tuple[InstitutionalTier, ...] = (
    InstitutionalTier("Tier 1: Premium institutional", 8.00, 80),
    InstitutionalTier("Tier 2: High-value large volume", 7.00, 100),
    InstitutionalTier("Tier 3: Mid-premium bulk", 5.00, 150),
    InstitutionalTier("Tier 4: Moderate premium large", 3.50, 200),
    InstitutionalTier("Tier 5: Lower premium large", 2.50, 200),
    InstitutionalTier("Tier 6: Small premium massive", 1.00, 800),
    InstitutionalTier("Tier 7: Penny options massive", 0.50, 2000),
    InstitutionalTier("Tier 8: Premium bypass", 0.01, 20, min_total=50_000),
)

# Most active options names, scanned when no universe is supplied
PRIORITY_TICKERS: tuple[str, ...] = (
    # ETFs
    "SPY", "QQQ", "IWM", "XLF", "XLE", "XLK", "GDX", "EEM", "VXX",
    # Mega caps with high options volume
    "TSLA", "AAPL", "NVDA", "AMZN", "MSFT", "GOOGL", "META", "AMD", "NFLX", "DIS",
)


@dataclass
class FlowConfig:
    """Options flow scanner configuration."""

    # Polygon
    POLYGON_API_KEY: str = ""
    REQUEST_TIMEOUT_SEC: float = 30
    MAX_RETRIES: int = 3
    BACKOFF_BASE_SEC: float = 1.0

    # Sweep detection
    SWEEP_WINDOW_MS: int = 5_000
    SWEEP_MIN_CONTRACTS: int = 100
    SWEEP_MIN_PREMIUM: float = 50_000

    # Multi-leg detection
    MULTI_LEG_MIN_PREMIUM: float = 50_000

    # Block classification
    BLOCK_MIN_PREMIUM: float = 25_000

    # Institutional tiers (OR across tiers)
    TIERS: tuple[InstitutionalTier, ...] = DEFAULT_TIERS

    # Moneyness
    MAX_ITM_PCT: float = 0.05      # at most 5% in the money
    ATM_BAND: float = 0.50         # |strike - spot| <= $0.50 is ATM

    # Ranking
    RANK_TIE_PREMIUM: float = 1_000  # premiums this close tie-break on recency

    # Market hours (ET)
    MARKET_OPEN: dt_time = dt_time(9, 30)
    MARKET_CLOSE: dt_time = dt_time(16, 0)

    # Ticker-level batching
    TICKER_BATCH_SIZE: int = 5
    TICKER_BATCH_DELAY_SEC: float = 0.1
    STREAMING_BATCH_DELAY_SEC: float = 0.2

    # Contract-level batching
    CONTRACT_BATCH_SIZE: int = 50
    CONTRACT_BATCH_DELAY_SEC: float = 0.01
    MAX_CONTRACTS_PER_TICKER: int = 50
    CONTRACTS_PAGE_LIMIT: int = 1000
    TRADES_PAGE_LIMIT: int = 1000

    # Full-chain sweep scan
    SWEEP_SCAN_EXPIRATIONS: int = 50
    SWEEP_SCAN_MIN_STRIKE_PCT: float = 0.90
    SWEEP_SCAN_MAX_STRIKE_PCT: float = 1.50
    SWEEP_SCAN_STRIKE_INCREMENTS: tuple[float, ...] = (0.5, 1, 2.5, 5, 10)
    SWEEP_SCAN_DEADLINE_SEC: float = 180

    # Whole-scan deadline (None = unbounded)
    SCAN_DEADLINE_SEC: Optional[float] = None

    # Price cache
    PRICE_CACHE_MAX_ENTRIES: int = 1000
    PRICE_CACHE_EVICT_COUNT: int = 200

    # Spot resolution: day bar sets kept per resolver, ticks normalized at once
    SPOT_BARS_MEMO_DAYS: int = 64
    NORMALIZE_CONCURRENCY: int = 50

    # Universe scanned for "ALL" requests
    UNIVERSE: tuple[str, ...] = PRIORITY_TICKERS

    @classmethod
    def from_env(cls, **overrides) -> "FlowConfig":
        """Build a config from environment variables (POLYGON_API_KEY, FLOW_*)."""
        config = cls(**overrides)
        if not config.POLYGON_API_KEY:
            config.POLYGON_API_KEY = os.environ.get("POLYGON_API_KEY", "")

        deadline = os.environ.get("FLOW_SCAN_DEADLINE_SEC")
        if deadline and "SCAN_DEADLINE_SEC" not in overrides:
            config.SCAN_DEADLINE_SEC = float(deadline)

        batch_size = os.environ.get("FLOW_TICKER_BATCH_SIZE")
        if batch_size and "TICKER_BATCH_SIZE" not in overrides:
            config.TICKER_BATCH_SIZE = int(batch_size)

        universe = os.environ.get("FLOW_UNIVERSE")
        if universe and "UNIVERSE" not in overrides:
            config.UNIVERSE = tuple(t.strip().upper() for t in universe.split(",") if t.strip())

        return config


# Default config instance
DEFAULT_CONFIG = FlowConfig()
