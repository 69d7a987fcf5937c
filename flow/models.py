"""
Flow data model.

RawTick is what Polygon hands us; NormalizedTrade is the enriched record
every classification stage works on.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from adapters.polygon_trades import NS_PER_MS, RawTick

OPTIONS_MULTIPLIER = 100

EXCHANGE_NAMES = {
    1: 'CBOE',
    2: 'ISE',
    3: 'NASDAQ',
    4: 'NYSE',
    5: 'MIAX',
    6: 'PEARL',
    7: 'EMERALD',
    8: 'BOX',
    9: 'GEMINI',
    300: 'OPRA',
    302: 'BATO',
    303: 'BZX',
    304: 'EDGX',
    309: 'MIAX',
    313: 'ISE',
    322: 'NASDAQ',
}

MULTI_EXCHANGE_PREFIX = "MULTI-EXCHANGE"


def exchange_name(code: Optional[int]) -> str:
    return EXCHANGE_NAMES.get(code, 'UNKNOWN')


class Classification(Enum):
    UNCLASSIFIED = "UNCLASSIFIED"
    BLOCK = "BLOCK"
    SWEEP = "SWEEP"
    MULTI_LEG = "MULTI-LEG"


class Moneyness(Enum):
    ITM = "ITM"
    ATM = "ATM"
    OTM = "OTM"


@dataclass
class NormalizedTrade:
    """Enriched options trade."""
    contract_symbol: str
    underlying: str
    strike: float
    expiry: date
    option_type: str          # 'call' or 'put'
    size: int                 # contracts
    price_per_contract: float
    total_premium: float      # price * size * 100
    spot_price: float         # underlying price at trade time
    exchange_code: int
    exchange_name: str
    trade_timestamp: int      # Unix timestamp (ms)
    sip_timestamp: int = 0    # Unix timestamp (ns)
    conditions: frozenset = field(default_factory=frozenset)
    moneyness: Moneyness = Moneyness.OTM
    days_to_expiry: int = 0
    classification: Classification = Classification.UNCLASSIFIED
    group_id: Optional[str] = None
    related_contracts: tuple = ()

    # Group membership flags set by detection stages
    is_sweep: bool = False
    multi_leg_group: Optional[str] = None

    @property
    def is_call(self) -> bool:
        return self.option_type == 'call'

    @property
    def is_put(self) -> bool:
        return self.option_type == 'put'

    @property
    def is_multi_exchange(self) -> bool:
        return self.exchange_name.startswith(MULTI_EXCHANGE_PREFIX)

    @property
    def is_grouped(self) -> bool:
        return self.is_sweep or self.multi_leg_group is not None

    @property
    def trade_datetime(self) -> datetime:
        """Trade time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.trade_timestamp / 1000, tz=timezone.utc)

    def to_dict(self) -> dict:
        """Convert to dictionary for the presentation layer."""
        return {
            "ticker": self.contract_symbol,
            "underlying_ticker": self.underlying,
            "strike": self.strike,
            "expiry": self.expiry.isoformat(),
            "type": self.option_type,
            "trade_size": self.size,
            "premium_per_contract": round(self.price_per_contract, 4),
            "total_premium": round(self.total_premium, 2),
            "spot_price": self.spot_price,
            "exchange": self.exchange_code,
            "exchange_name": self.exchange_name,
            "trade_timestamp": self.trade_datetime.isoformat(),
            "sip_timestamp": self.sip_timestamp,
            "conditions": sorted(self.conditions),
            "moneyness": self.moneyness.value,
            "days_to_expiry": self.days_to_expiry,
            "trade_type": (
                None if self.classification is Classification.UNCLASSIFIED
                else self.classification.value
            ),
            "window_group": self.group_id,
            "related_trades": list(self.related_contracts),
        }
