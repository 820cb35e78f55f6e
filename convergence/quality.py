"""
Quality Classifier

Scores a wallet from its realized-PnL trades and assigns a tier:
- pnl_7d / pnl_30d summed over trailing windows (filter first, then sum)
- Win rate, profit factor and trade count over the 30-day window
- elite / good / unqualified thresholds from EngineConfig
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

import numpy as np
import structlog

from convergence.batching import run_in_batches
from convergence.config import EngineConfig
from convergence.datastore import DataStore
from convergence.hl_client import HyperliquidClient, fills_to_closed_trades
from convergence.models import ClosedTrade, QualityTier, WalletQuality, utc_now

log = structlog.get_logger()

# Profit factor reported when a wallet has winning trades and no losing ones.
PROFIT_FACTOR_NO_LOSSES = 999.0


@dataclass
class TradeStats:
    pnl_7d: float
    pnl_30d: float
    win_rate: float
    profit_factor: float
    trade_count: int


def trades_in_window(
    trades: list[ClosedTrade], now: datetime, window: timedelta
) -> list[ClosedTrade]:
    """Trades with ``timestamp >= now - window``.

    The fills endpoint can return a fixed-size page that reaches far outside
    the requested range, so every windowed aggregate goes through here.
    """
    start = now - window
    return [t for t in trades if t.timestamp >= start]


def pnl_in_window(trades: list[ClosedTrade], now: datetime, window: timedelta) -> float:
    return float(sum(t.closed_pnl for t in trades_in_window(trades, now, window)))


def compute_profit_factor(pnls: list[float]) -> float:
    """Gross profit / gross loss with a fixed sentinel when nothing was lost."""
    arr = np.asarray(pnls, dtype=float)
    gross_profit = float(arr[arr > 0].sum()) if arr.size else 0.0
    gross_loss = float(abs(arr[arr < 0].sum())) if arr.size else 0.0
    if gross_loss > 0:
        return gross_profit / gross_loss
    return PROFIT_FACTOR_NO_LOSSES if gross_profit > 0 else 0.0


def compute_trade_stats(
    trades: list[ClosedTrade],
    now: datetime,
    lookback_days: int = 30,
) -> TradeStats:
    """Aggregate realized PnL trades into the metrics used for tiering."""
    window_trades = [
        t for t in trades_in_window(trades, now, timedelta(days=lookback_days))
        if t.closed_pnl != 0
    ]
    pnls = [t.closed_pnl for t in window_trades]
    wins = sum(1 for p in pnls if p > 0)
    losses = sum(1 for p in pnls if p < 0)
    decided = wins + losses

    return TradeStats(
        pnl_7d=pnl_in_window(window_trades, now, timedelta(days=7)),
        pnl_30d=pnl_in_window(window_trades, now, timedelta(days=30)),
        win_rate=wins / decided if decided else 0.0,
        profit_factor=compute_profit_factor(pnls),
        trade_count=len(window_trades),
    )


def assign_tier(stats: TradeStats, config: EngineConfig) -> QualityTier:
    """Elite is checked before good; the first match wins."""
    if (
        stats.pnl_7d >= config.ELITE_MIN_PNL_7D
        and stats.pnl_30d >= config.ELITE_MIN_PNL_30D
        and stats.win_rate >= config.ELITE_MIN_WIN_RATE
        and stats.trade_count >= config.ELITE_MIN_TRADES
        and stats.profit_factor >= config.ELITE_MIN_PROFIT_FACTOR
    ):
        return QualityTier.ELITE
    if (
        stats.pnl_7d >= config.GOOD_MIN_PNL_7D
        and stats.pnl_30d >= config.GOOD_MIN_PNL_30D
        and stats.win_rate >= config.GOOD_MIN_WIN_RATE
        and stats.trade_count >= config.GOOD_MIN_TRADES
        and stats.profit_factor >= config.GOOD_MIN_PROFIT_FACTOR
    ):
        return QualityTier.GOOD
    return QualityTier.UNQUALIFIED


def classify(
    address: str,
    trades: list[ClosedTrade],
    account_value: float,
    now: datetime,
    config: EngineConfig | None = None,
) -> WalletQuality | None:
    """Classify a wallet, or return None when there is too little history.

    ``None`` means "not yet decidable": the stored record must be left as it
    is rather than demoted.
    """
    config = config or EngineConfig()
    stats = compute_trade_stats(trades, now, config.QUALITY_LOOKBACK_DAYS)
    if stats.trade_count < config.MIN_TRADES_TO_CLASSIFY:
        return None

    tier = assign_tier(stats, config)
    return WalletQuality(
        address=address.lower(),
        tier=tier,
        pnl_7d=stats.pnl_7d,
        pnl_30d=stats.pnl_30d,
        win_rate=stats.win_rate,
        profit_factor=stats.profit_factor,
        trade_count=stats.trade_count,
        account_value=account_value,
        is_tracked=tier in (QualityTier.ELITE, QualityTier.GOOD),
        analyzed_at=now,
    )


def describe_tier_change(old: QualityTier, new: QualityTier, quality: WalletQuality) -> str:
    verb = "promoted" if new.rank > old.rank else "demoted"
    return (
        f"{verb} {old.value}->{new.value}: pnl7d={quality.pnl_7d:.0f} "
        f"wr={quality.win_rate:.2f} pf={quality.profit_factor:.2f} "
        f"trades={quality.trade_count}"
    )


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


async def analyze_wallet(
    client: HyperliquidClient,
    store: DataStore,
    address: str,
    config: EngineConfig,
    now: datetime | None = None,
) -> WalletQuality | None:
    """Fetch, classify and persist one wallet.  Returns None when skipped."""
    now = now or utc_now()
    state = await client.get_clearinghouse_state(address)
    fills = await client.get_fills(address, now - timedelta(days=config.QUALITY_LOOKBACK_DAYS))
    trades = fills_to_closed_trades(fills)

    quality = classify(address, trades, state.margin_summary.account_value, now, config)
    if quality is None:
        log.info("wallet_analysis_skipped", address=address, trades=len(trades))
        return None

    previous = store.get_wallet_quality(address)
    store.upsert_wallet_quality(quality)

    old_tier = previous.tier if previous and previous.analyzed_at else QualityTier.UNQUALIFIED
    if old_tier != quality.tier:
        reason = describe_tier_change(old_tier, quality.tier, quality)
        store.record_tier_change(old_tier, quality, reason)
        log.info(
            "wallet_tier_changed",
            address=address,
            old_tier=old_tier.value,
            new_tier=quality.tier.value,
        )
    return quality


async def reanalyze_wallets(
    client: HyperliquidClient,
    store: DataStore,
    addresses: list[str],
    config: EngineConfig,
) -> dict[str, int]:
    """Analyze *addresses* in bounded batches; one failure never stops the rest."""
    now = utc_now()

    async def _one(address: str) -> WalletQuality | None:
        return await analyze_wallet(client, store, address, config, now=now)

    outcome = await run_in_batches(
        addresses,
        _one,
        batch_size=config.BATCH_SIZE,
        delay=config.BATCH_DELAY_SECONDS,
        timeout=config.ITEM_TIMEOUT_SECONDS,
        label="wallet",
    )

    counts = {"elite": 0, "good": 0, "unqualified": 0, "skipped": 0, "failed": len(outcome.failed)}
    for _, quality in outcome.succeeded:
        if quality is None:
            counts["skipped"] += 1
        else:
            counts[quality.tier.value] += 1

    log.info("wallet_reanalysis_complete", total=len(addresses), **counts)
    return counts
