"""
Polygon Option Chain Snapshot Fetcher

Fetches the option chain snapshot for an underlying from Polygon REST API
(/v3/snapshot/options/{ticker}). Each contract carries its last trade, which
is how the flow scanner reads activity outside market hours.

Pagination follows next_url until exhausted or MAX_PAGES.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, date
from typing import Optional

from .polygon_client import ParseError, PolygonClient
from .polygon_trades import RawTick

logger = logging.getLogger(__name__)

SNAPSHOT_PAGE_LIMIT = 250
MAX_PAGES = 20


@dataclass
class OptionContract:
    """Option contract from a Polygon snapshot."""
    symbol: str           # OCC symbol (e.g., O:AAPL250117C00150000)
    underlying: str
    strike: float
    expiry: date
    is_call: bool
    open_interest: int
    last_trade: Optional[RawTick] = None

    @property
    def option_type(self) -> str:
        return "call" if self.is_call else "put"


@dataclass
class SnapshotResult:
    """Result of option chain snapshot fetch."""
    underlying: str
    spot_price: Optional[float]
    contracts: list[OptionContract] = field(default_factory=list)
    fetch_time: datetime = field(default_factory=datetime.now)
    pages: int = 0

    @property
    def last_trades(self) -> list[RawTick]:
        return [c.last_trade for c in self.contracts if c.last_trade is not None]


class PolygonSnapshotFetcher:
    """
    Snapshot fetcher on top of PolygonClient.

    Usage:
        fetcher = PolygonSnapshotFetcher(client)
        snapshot = await fetcher.get_option_chain("AAPL")
    """

    def __init__(self, client: PolygonClient, max_pages: int = MAX_PAGES):
        self.client = client
        self.max_pages = max_pages
        self._request_count = 0

    async def get_option_chain(self, underlying: str) -> SnapshotResult:
        """
        Fetch the option chain snapshot for an underlying.

        Transport/status errors propagate after the client's retries.
        Unreadable pages end pagination with whatever was parsed so far.
        """
        result = SnapshotResult(underlying=underlying, spot_price=None)
        url = f"/v3/snapshot/options/{underlying}"
        params: Optional[dict] = {"limit": SNAPSHOT_PAGE_LIMIT}

        while url and result.pages < self.max_pages:
            self._request_count += 1
            try:
                data = await self.client.get_json(url, params)
            except ParseError as e:
                logger.warning(f"Snapshot page for {underlying} unreadable: {e}")
                break

            result.pages += 1
            self._parse_snapshot(underlying, data, result)

            # next_url already carries the cursor and limit
            url = data.get("next_url")
            params = None

        logger.debug(f"{underlying} snapshot: {len(result.contracts)} contracts in {result.pages} pages")
        return result

    def _parse_snapshot(self, underlying: str, data: dict, result: SnapshotResult):
        """Parse one Polygon snapshot page into result."""
        for item in data.get("results") or []:
            try:
                details = item.get("details") or {}
                underlying_asset = item.get("underlying_asset") or {}

                if result.spot_price is None and underlying_asset.get("price"):
                    result.spot_price = float(underlying_asset["price"])

                exp_str = details.get("expiration_date", "")
                if not exp_str:
                    continue

                symbol = details.get("ticker") or item.get("ticker", "")
                last_trade = None
                trade = item.get("last_trade") or {}
                if trade.get("price") and trade.get("sip_timestamp"):
                    last_trade = RawTick.from_polygon(symbol, trade)

                result.contracts.append(OptionContract(
                    symbol=symbol,
                    underlying=underlying,
                    strike=float(details.get("strike_price", 0)),
                    expiry=datetime.strptime(exp_str, "%Y-%m-%d").date(),
                    is_call=details.get("contract_type", "").lower() == "call",
                    open_interest=int(item.get("open_interest") or 0),
                    last_trade=last_trade,
                ))

            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Error parsing contract: {e}")
                continue

    def get_stats(self) -> dict:
        """Get fetcher statistics."""
        return {'request_count': self._request_count}
