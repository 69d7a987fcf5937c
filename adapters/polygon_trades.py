"""
Polygon Options Trades & Contracts Fetcher

- Contract reference list (/v3/reference/options/contracts?underlying_ticker=...)
- Individual trade ticks per contract (/v3/trades/{contract}?timestamp.gte=...)

Both endpoints paginate via next_url.

Usage:
    fetcher = PolygonTradesFetcher(client)
    contracts = await fetcher.get_contracts("AAPL")
    ticks = await fetcher.get_trades(contracts[0].symbol, since_ns)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, date
from typing import Optional

from .polygon_client import ParseError, PolygonClient

logger = logging.getLogger(__name__)

NS_PER_MS = 1_000_000
DEFAULT_PAGE_LIMIT = 1000
MAX_PAGES = 10


@dataclass(frozen=True)
class RawTick:
    """Provider-native options trade (Polygon v3 trade object)."""
    contract_symbol: str
    price: float
    size: int
    exchange: int
    conditions: tuple
    sip_timestamp: int  # nanoseconds
    sequence_number: Optional[int] = None

    @property
    def timestamp_ms(self) -> int:
        return self.sip_timestamp // NS_PER_MS

    @classmethod
    def from_polygon(cls, symbol: str, data: dict) -> "RawTick":
        """Build from {price, size, exchange, conditions, sip_timestamp}."""
        return cls(
            contract_symbol=symbol,
            price=float(data["price"]),
            size=int(data.get("size") or 0),
            exchange=int(data.get("exchange") or 0),
            conditions=tuple(data.get("conditions") or ()),
            sip_timestamp=int(data["sip_timestamp"]),
            sequence_number=data.get("sequence_number"),
        )


@dataclass(frozen=True)
class ContractRef:
    """Contract metadata from the reference endpoint."""
    symbol: str
    underlying: str
    strike: float
    expiry: date
    option_type: str  # 'call' or 'put'


class PolygonTradesFetcher:
    """
    Reference-contract and trade-tick fetcher on top of PolygonClient.

    Transport/status errors propagate after the client's retries; malformed
    pages are logged and end pagination with what was parsed.
    """

    def __init__(
        self,
        client: PolygonClient,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        max_pages: int = MAX_PAGES,
    ):
        self.client = client
        self.page_limit = page_limit
        self.max_pages = max_pages

        # Metrics
        self._total_requests = 0
        self._ticks_fetched = 0

    async def _paginate(self, path: str, params: dict, what: str) -> list[dict]:
        results: list[dict] = []
        url: Optional[str] = path
        query: Optional[dict] = params
        pages = 0

        while url and pages < self.max_pages:
            self._total_requests += 1
            try:
                data = await self.client.get_json(url, query)
            except ParseError as e:
                logger.warning(f"{what}: unreadable page {pages + 1}: {e}")
                break

            pages += 1
            results.extend(data.get("results") or [])
            url = data.get("next_url")
            query = None

        return results

    async def get_contracts(self, underlying: str, limit: Optional[int] = None) -> list[ContractRef]:
        """
        List option contracts for an underlying.

        Args:
            underlying: Ticker symbol
            limit: Page size override

        Returns:
            Contracts with strike/expiry/type (unparseable entries skipped)
        """
        params = {"underlying_ticker": underlying, "limit": limit or self.page_limit}
        raw = await self._paginate("/v3/reference/options/contracts", params, f"{underlying} contracts")

        contracts = []
        for item in raw:
            try:
                contracts.append(ContractRef(
                    symbol=item["ticker"],
                    underlying=item.get("underlying_ticker", underlying),
                    strike=float(item["strike_price"]),
                    expiry=datetime.strptime(item["expiration_date"], "%Y-%m-%d").date(),
                    option_type=item["contract_type"].lower(),
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed contract for {underlying}: {e}")

        logger.debug(f"{underlying}: {len(contracts)} reference contracts")
        return contracts

    async def get_trades(self, contract_symbol: str, since_ns: int) -> list[RawTick]:
        """
        Trade ticks for one contract at or after a SIP timestamp.

        Args:
            contract_symbol: OCC symbol (O:...)
            since_ns: Lower bound, Unix nanoseconds

        Returns:
            RawTick list in provider order
        """
        params = {"timestamp.gte": since_ns, "limit": self.page_limit}
        raw = await self._paginate(f"/v3/trades/{contract_symbol}", params, f"{contract_symbol} trades")

        ticks = []
        for item in raw:
            try:
                ticks.append(RawTick.from_polygon(contract_symbol, item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed trade for {contract_symbol}: {e}")

        self._ticks_fetched += len(ticks)
        return ticks

    def get_metrics(self) -> dict:
        """Get fetcher metrics."""
        return {
            "total_requests": self._total_requests,
            "ticks_fetched": self._ticks_fetched,
        }
