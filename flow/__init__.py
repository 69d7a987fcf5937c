"""Flow module - options trade ingestion and classification."""

from .config import FlowConfig, InstitutionalTier, DEFAULT_CONFIG, DEFAULT_TIERS
from .models import (
    RawTick,
    NormalizedTrade,
    Classification,
    Moneyness,
)
from .spot_price import PriceCache, SpotPriceResolver
from .normalizer import TradeNormalizer
from .scanner import BatchScanner, ScanProgress, TickerResult
from .classifier import TradeClassifier
from .service import OptionsFlowService, FlowProgress

__all__ = [
    'FlowConfig',
    'InstitutionalTier',
    'DEFAULT_CONFIG',
    'DEFAULT_TIERS',
    'RawTick',
    'NormalizedTrade',
    'Classification',
    'Moneyness',
    'PriceCache',
    'SpotPriceResolver',
    'TradeNormalizer',
    'BatchScanner',
    'ScanProgress',
    'TickerResult',
    'TradeClassifier',
    'OptionsFlowService',
    'FlowProgress',
]
