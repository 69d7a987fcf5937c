"""
Trade Classification Engine

One pass over a scan's normalized trades:

    ticker filter -> sweep detection -> multi-leg detection -> institutional
    tiers -> market hours -> ITM band -> type assignment -> ranking

Detection stages only set group flags (is_sweep / multi_leg_group). The
classification itself is written once, at the end, from those flags.
Records that already carry a classification or a group flag are never
regrouped, so running the pass over its own output changes nothing.

Usage:
    classifier = TradeClassifier()
    flow = classifier.classify(trades, target_ticker="SPY")
"""

import logging
from collections import Counter
from dataclasses import replace
from functools import cmp_to_key
from typing import Iterable, Optional

from .config import DEFAULT_CONFIG, FlowConfig, InstitutionalTier
from .market_hours import is_within_market_hours
from .models import (
    MULTI_EXCHANGE_PREFIX,
    OPTIONS_MULTIPLIER,
    Classification,
    NormalizedTrade,
)

logger = logging.getLogger(__name__)


def _is_settled(trade: NormalizedTrade) -> bool:
    """Already classified or grouped by an earlier pass."""
    return trade.classification is not Classification.UNCLASSIFIED or trade.is_grouped


def _is_leg_settled(trade: NormalizedTrade) -> bool:
    # merged sweeps may still be a leg
    return trade.classification is not Classification.UNCLASSIFIED or trade.multi_leg_group is not None


def parse_ticker_filter(target_ticker: Optional[str]) -> Optional[set[str]]:
    """None for all tickers, else the set of requested underlyings."""
    if not target_ticker or target_ticker.strip().upper() == "ALL":
        return None
    return {t.strip().upper() for t in target_ticker.split(",") if t.strip()}


def filter_by_ticker(trades: list[NormalizedTrade], target_ticker: Optional[str]) -> list[NormalizedTrade]:
    wanted = parse_ticker_filter(target_ticker)
    if wanted is None:
        return list(trades)
    return [t for t in trades if t.underlying in wanted]


# =============================================================================
# Grouping
# =============================================================================

def _slot_groups(trades: Iterable[NormalizedTrade], key_fn, settled=_is_settled) -> list:
    """
    Group unsettled trades by key, keeping first-seen order.

    Returns a list of slots: a settled trade on its own, or a list of
    trades sharing a key (placed where the key was first seen).
    """
    slots: list = []
    groups: dict = {}
    for trade in trades:
        if settled(trade):
            slots.append(trade)
            continue
        key = key_fn(trade)
        if key not in groups:
            groups[key] = []
            slots.append(groups[key])
        groups[key].append(trade)
    return slots


def detect_sweeps(trades: list[NormalizedTrade], config: FlowConfig = DEFAULT_CONFIG) -> list[NormalizedTrade]:
    """
    Merge fills on one contract inside a window bucket into a single record.

    A bucket of two or more fills merges when its combined size and premium
    both reach the sweep thresholds. The merged record keeps the first fill's
    identity with aggregate size/premium and the volume-weighted price.
    """
    window = config.SWEEP_WINDOW_MS

    def sweep_key(t: NormalizedTrade) -> tuple[str, int]:
        return (t.contract_symbol, t.trade_timestamp // window * window)

    result = []
    for slot in _slot_groups(trades, sweep_key):
        if isinstance(slot, NormalizedTrade):
            result.append(slot)
            continue

        total_size = sum(t.size for t in slot)
        total_premium = sum(t.total_premium for t in slot)
        if (
            len(slot) < 2
            or total_size < config.SWEEP_MIN_CONTRACTS
            or total_premium < config.SWEEP_MIN_PREMIUM
        ):
            result.extend(slot)
            continue

        first = slot[0]
        symbol, bucket = sweep_key(first)
        merged = replace(
            first,
            size=total_size,
            total_premium=total_premium,
            price_per_contract=total_premium / (total_size * OPTIONS_MULTIPLIER),
            exchange_name=f"{MULTI_EXCHANGE_PREFIX} ({len(slot)} fills)",
            related_contracts=tuple(t.contract_symbol for t in slot),
            group_id=f"{symbol}@{bucket}",
            is_sweep=True,
        )
        logger.debug(f"Sweep {merged.group_id}: {len(slot)} fills, {total_size} contracts, ${total_premium:,.0f}")
        result.append(merged)

    return result


def detect_multi_leg(trades: list[NormalizedTrade], config: FlowConfig = DEFAULT_CONFIG) -> list[NormalizedTrade]:
    """
    Tag simultaneous trades on one underlying as a multi-leg strategy.

    Legs share (underlying, exact millisecond). A group qualifies when its
    premium reaches the threshold and the legs differ in strike, type or expiry.
    """
    def leg_key(t: NormalizedTrade) -> tuple[str, int]:
        return (t.underlying, t.trade_timestamp)

    result = []
    for slot in _slot_groups(trades, leg_key, _is_leg_settled):
        if isinstance(slot, NormalizedTrade):
            result.append(slot)
            continue

        if len(slot) < 2:
            result.extend(slot)
            continue

        total_premium = sum(t.total_premium for t in slot)
        distinct = (
            len({t.strike for t in slot}) >= 2
            or len({t.option_type for t in slot}) >= 2
            or len({t.expiry for t in slot}) >= 2
        )
        if total_premium < config.MULTI_LEG_MIN_PREMIUM or not distinct:
            result.extend(slot)
            continue

        underlying, ts = leg_key(slot[0])
        group_id = f"{underlying}#{ts}"
        related = tuple(t.contract_symbol for t in slot)
        logger.debug(f"Multi-leg {group_id}: {len(slot)} legs, ${total_premium:,.0f}")
        result.extend(
            replace(t, multi_leg_group=group_id, group_id=group_id, related_contracts=related)
            for t in slot
        )

    return result


# =============================================================================
# Filters
# =============================================================================

def matching_tier(
    trade: NormalizedTrade,
    tiers: Iterable[InstitutionalTier] = DEFAULT_CONFIG.TIERS,
) -> Optional[InstitutionalTier]:
    """First tier the trade satisfies, if any."""
    for tier in tiers:
        if tier.matches(trade.price_per_contract, trade.size, trade.total_premium):
            return tier
    return None


def passes_institutional_tier(
    trade: NormalizedTrade,
    tiers: Iterable[InstitutionalTier] = DEFAULT_CONFIG.TIERS,
) -> bool:
    return matching_tier(trade, tiers) is not None


def is_within_itm_band(trade: NormalizedTrade, max_itm_pct: float = DEFAULT_CONFIG.MAX_ITM_PCT) -> bool:
    """At most max_itm_pct in the money, any distance out of the money."""
    if trade.spot_price <= 0:
        return False
    pct = (trade.strike - trade.spot_price) / trade.spot_price
    if trade.is_call:
        return pct >= -max_itm_pct
    return pct <= max_itm_pct


# =============================================================================
# Assignment & ranking
# =============================================================================

def assign_classification(trade: NormalizedTrade, config: FlowConfig = DEFAULT_CONFIG) -> NormalizedTrade:
    """Final type from group flags. Existing classifications are kept."""
    if trade.classification is not Classification.UNCLASSIFIED:
        return trade

    if trade.is_sweep:
        kind = Classification.SWEEP
    elif trade.multi_leg_group is not None:
        kind = Classification.MULTI_LEG
    elif trade.total_premium >= config.BLOCK_MIN_PREMIUM and not trade.is_multi_exchange:
        kind = Classification.BLOCK
    else:
        return trade

    return replace(trade, classification=kind)


def rank_trades(trades: list[NormalizedTrade], tie_premium: float = DEFAULT_CONFIG.RANK_TIE_PREMIUM) -> list[NormalizedTrade]:
    """
    Premium descending; premiums within tie_premium go newest first.

    The tie rule is pairwise and not transitive: in a chain of premiums
    each within tie_premium of the next, but whose ends are further apart,
    the result can depend on input order. Re-ranking an already ranked
    list returns it unchanged.
    """
    def compare(a: NormalizedTrade, b: NormalizedTrade) -> int:
        diff = b.total_premium - a.total_premium
        if abs(diff) <= tie_premium:
            return b.trade_timestamp - a.trade_timestamp
        return 1 if diff > 0 else -1

    return sorted(trades, key=cmp_to_key(compare))


def summarize(trades: list[NormalizedTrade]) -> dict:
    """Counts per classification and total premium."""
    counts = Counter(t.classification.value for t in trades)
    return {
        'total': len(trades),
        'total_premium': sum(t.total_premium for t in trades),
        'by_type': {kind.value: counts.get(kind.value, 0) for kind in Classification
                    if kind is not Classification.UNCLASSIFIED},
        'calls': sum(1 for t in trades if t.is_call),
        'puts': sum(1 for t in trades if t.is_put),
    }


class TradeClassifier:
    """Runs the full classification pass and records per-stage counts."""

    def __init__(self, config: FlowConfig = DEFAULT_CONFIG):
        self.config = config
        self.last_stats: dict[str, int] = {}

    def classify(self, trades: list[NormalizedTrade], target_ticker: Optional[str] = None) -> list[NormalizedTrade]:
        """
        Classify and rank one scan's trades.

        Args:
            trades: Normalized trades (any order)
            target_ticker: Underlying, comma list, or None/"ALL"

        Returns:
            BLOCK / SWEEP / MULTI-LEG trades, ranked
        """
        config = self.config
        stats = {'input': len(trades)}

        current = filter_by_ticker(trades, target_ticker)
        stats['ticker_filtered'] = len(current)

        current = detect_sweeps(current, config)
        stats['sweep_grouped'] = len(current)
        stats['sweeps'] = sum(1 for t in current if t.is_sweep)

        current = detect_multi_leg(current, config)
        stats['multi_leg_members'] = sum(1 for t in current if t.multi_leg_group is not None)

        current = [t for t in current if passes_institutional_tier(t, config.TIERS)]
        stats['tier_filtered'] = len(current)

        current = [t for t in current if is_within_market_hours(t.trade_timestamp, config)]
        stats['hours_filtered'] = len(current)

        current = [t for t in current if is_within_itm_band(t, config.MAX_ITM_PCT)]
        stats['itm_filtered'] = len(current)

        current = [assign_classification(t, config) for t in current]
        current = [t for t in current if t.classification is not Classification.UNCLASSIFIED]
        stats['classified'] = len(current)

        ranked = rank_trades(current, config.RANK_TIE_PREMIUM)

        self.last_stats = stats
        logger.info(
            f"Classified {stats['input']} -> {stats['classified']} trades "
            f"(ticker {stats['ticker_filtered']}, sweeps {stats['sweeps']}, "
            f"multi-leg legs {stats['multi_leg_members']}, tiers {stats['tier_filtered']}, "
            f"hours {stats['hours_filtered']}, ITM band {stats['itm_filtered']})"
        )
        return ranked
