"""
Trade Normalizer

Turns a RawTick into a NormalizedTrade: decodes the OCC symbol, resolves
spot at the trade's own timestamp, and derives premium, moneyness,
days-to-expiry and the exchange name. Ticks with undecodable symbols are
dropped.
"""

import asyncio
import logging
from typing import Iterable, Optional

from utils.occ_parser import OCCParseError, decode
from .config import DEFAULT_CONFIG, FlowConfig
from .market_hours import trade_date_et
from .models import (
    OPTIONS_MULTIPLIER,
    Moneyness,
    NormalizedTrade,
    RawTick,
    exchange_name,
)
from .spot_price import SpotPriceResolver

logger = logging.getLogger(__name__)


def compute_moneyness(option_type: str, strike: float, spot: float, atm_band: float = 0.50) -> Moneyness:
    """ATM within atm_band dollars of spot, else ITM/OTM by side."""
    if spot <= 0:
        return Moneyness.OTM
    if abs(strike - spot) <= atm_band:
        return Moneyness.ATM
    if option_type == 'call':
        return Moneyness.ITM if spot > strike else Moneyness.OTM
    return Moneyness.ITM if spot < strike else Moneyness.OTM


class TradeNormalizer:
    """Enrich raw ticks into NormalizedTrade records."""

    def __init__(self, resolver: SpotPriceResolver, config: FlowConfig = DEFAULT_CONFIG):
        self.resolver = resolver
        self.config = config
        self._dropped = 0

    async def normalize(self, tick: RawTick, underlying_hint: Optional[str] = None) -> Optional[NormalizedTrade]:
        """
        Normalize one tick.

        Args:
            tick: Raw provider trade
            underlying_hint: Expected underlying; a mismatch is logged, the
                decoded underlying wins

        Returns:
            NormalizedTrade, or None when the symbol cannot be decoded
        """
        try:
            parsed = decode(tick.contract_symbol)
        except OCCParseError as e:
            self._dropped += 1
            logger.debug(f"Dropping tick: {e}")
            return None

        if underlying_hint and parsed.underlying != underlying_hint.upper():
            logger.debug(f"{tick.contract_symbol} decoded as {parsed.underlying}, expected {underlying_hint}")

        timestamp_ms = tick.timestamp_ms
        spot = await self.resolver.resolve(parsed.underlying, timestamp_ms)

        return NormalizedTrade(
            contract_symbol=tick.contract_symbol,
            underlying=parsed.underlying,
            strike=parsed.strike,
            expiry=parsed.expiry,
            option_type=parsed.option_type,
            size=tick.size,
            price_per_contract=tick.price,
            total_premium=tick.price * tick.size * OPTIONS_MULTIPLIER,
            spot_price=spot,
            exchange_code=tick.exchange,
            exchange_name=exchange_name(tick.exchange),
            trade_timestamp=timestamp_ms,
            sip_timestamp=tick.sip_timestamp,
            conditions=frozenset(tick.conditions),
            moneyness=compute_moneyness(parsed.option_type, parsed.strike, spot, self.config.ATM_BAND),
            days_to_expiry=(parsed.expiry - trade_date_et(timestamp_ms)).days,
        )

    async def normalize_many(
        self,
        ticks: Iterable[RawTick],
        underlying_hint: Optional[str] = None,
    ) -> list[NormalizedTrade]:
        """Normalize concurrently, preserving input order and dropping failures."""
        semaphore = asyncio.Semaphore(self.config.NORMALIZE_CONCURRENCY)

        async def normalize_limited(tick: RawTick) -> Optional[NormalizedTrade]:
            async with semaphore:
                return await self.normalize(tick, underlying_hint)

        results = await asyncio.gather(*(normalize_limited(t) for t in ticks))
        return [t for t in results if t is not None]

    @property
    def dropped_count(self) -> int:
        return self._dropped
