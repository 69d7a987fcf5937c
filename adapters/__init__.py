"""Adapters module - Polygon.io REST integrations."""

from .polygon_client import (
    PolygonClient,
    PolygonError,
    TransportError,
    UpstreamStatusError,
    ParseError,
)
from .polygon_trades import (
    PolygonTradesFetcher,
    RawTick,
    ContractRef,
)
from .polygon_snapshot import (
    PolygonSnapshotFetcher,
    SnapshotResult,
    OptionContract,
)
from .polygon_bars import (
    PolygonBarsFetcher,
    Bar,
    BarData,
)

__all__ = [
    'PolygonClient',
    'PolygonError',
    'TransportError',
    'UpstreamStatusError',
    'ParseError',
    'PolygonTradesFetcher',
    'RawTick',
    'ContractRef',
    'PolygonSnapshotFetcher',
    'SnapshotResult',
    'OptionContract',
    'PolygonBarsFetcher',
    'Bar',
    'BarData',
]
