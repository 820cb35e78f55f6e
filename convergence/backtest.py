"""Backtest harness for persisted convergence signals.

Replays hourly candles forward from each signal's creation time, resolves a
single exit (stop, highest take-profit touched, or horizon expiry) and
aggregates performance statistics across signals.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import numpy as np
import structlog

from convergence.batching import run_in_batches
from convergence.datastore import DataStore
from convergence.hl_client import HyperliquidClient
from convergence.models import Candle, Direction, Outcome, Signal, utc_now

log = structlog.get_logger()

CANDLE_INTERVAL = "1h"
CANDLE_SPAN = timedelta(hours=1)
PROFIT_FACTOR_NO_LOSSES = 999.0

CONFIDENCE_BUCKETS = (
    ("90+", 90, 101),
    ("75-89", 75, 90),
    ("60-74", 60, 75),
    ("<60", 0, 60),
)


# ---------------------------------------------------------------------------
# Per-signal replay
# ---------------------------------------------------------------------------


@dataclass
class BacktestResult:
    """Outcome of replaying one signal."""

    signal_id: int | None
    coin: str
    direction: Direction
    created_at: datetime
    entry_price: float
    exit_price: float
    outcome: Outcome
    pnl_pct: float
    max_profit_pct: float
    max_adverse_pct: float
    duration_hours: float
    confidence: int
    strength: str

    @property
    def is_closed(self) -> bool:
        return self.outcome is not Outcome.OPEN


def signed_pnl_pct(direction: Direction, entry: float, price: float) -> float:
    """PnL of a move from *entry* to *price*, in percent, signed for *direction*."""
    if direction is Direction.LONG:
        return (price - entry) / entry * 100
    return (entry - price) / entry * 100


def simulate_signal(
    signal: Signal,
    candles: list[Candle],
    max_hours: int = 168,
) -> BacktestResult:
    """Replay *candles* against *signal* with a conservative single exit.

    Per candle the stop is checked first (low <= stop for longs, high >= stop
    for shorts).  Otherwise take-profits are checked from tp3 down to tp1 so
    the highest level touched inside the candle wins.  The first trigger ends
    the replay.  With no trigger the signal is ``expired`` at the last close
    once the replayed candles reach the horizon, else ``open``.

    Candles are hourly and stamped with their open time.  The candle that
    spans ``created_at`` is replayed; one that closed at or before it is not.
    """
    created_at = signal.created_at or utc_now()
    horizon_end = created_at + timedelta(hours=max_hours)
    window = [
        c for c in candles
        if c.timestamp + CANDLE_SPAN > created_at and c.timestamp < horizon_end
    ]
    window.sort(key=lambda c: c.timestamp)

    entry = signal.suggested_entry or (window[0].close if window else 0.0)
    direction = signal.direction
    is_long = direction is Direction.LONG

    def _result(outcome: Outcome, exit_price: float, exit_time: datetime,
                max_profit: float, max_adverse: float) -> BacktestResult:
        pnl = signed_pnl_pct(direction, entry, exit_price) if entry > 0 else 0.0
        return BacktestResult(
            signal_id=signal.id,
            coin=signal.coin,
            direction=direction,
            created_at=created_at,
            entry_price=entry,
            exit_price=exit_price,
            outcome=outcome,
            pnl_pct=pnl,
            max_profit_pct=max_profit,
            max_adverse_pct=abs(max_adverse),
            duration_hours=max(0.0, (exit_time - created_at).total_seconds() / 3600),
            confidence=signal.confidence,
            strength=signal.signal_strength.value,
        )

    if not window or entry <= 0:
        return _result(Outcome.OPEN, entry, created_at, 0.0, 0.0)

    targets = (
        (Outcome.TP3, signal.take_profit_3),
        (Outcome.TP2, signal.take_profit_2),
        (Outcome.TP1, signal.take_profit_1),
    )
    max_profit = 0.0
    max_adverse = 0.0

    for candle in window:
        excursions = (
            signed_pnl_pct(direction, entry, candle.high),
            signed_pnl_pct(direction, entry, candle.low),
        )
        max_profit = max(max_profit, *excursions)
        max_adverse = min(max_adverse, *excursions)

        stopped = candle.low <= signal.stop_loss if is_long else candle.high >= signal.stop_loss
        if stopped:
            return _result(Outcome.STOPPED, signal.stop_loss, candle.timestamp, max_profit, max_adverse)

        for outcome, level in targets:
            hit = candle.high >= level if is_long else candle.low <= level
            if hit:
                return _result(outcome, level, candle.timestamp, max_profit, max_adverse)

    last = window[-1]
    replay_end = last.timestamp + CANDLE_SPAN
    if replay_end >= horizon_end:
        return _result(Outcome.EXPIRED, last.close, horizon_end, max_profit, max_adverse)
    return _result(Outcome.OPEN, last.close, replay_end, max_profit, max_adverse)


# ---------------------------------------------------------------------------
# Aggregate statistics
# ---------------------------------------------------------------------------


@dataclass
class BucketStats:
    count: int
    win_rate: float
    avg_pnl_pct: float


@dataclass
class BacktestSummary:
    """Aggregate performance statistics for a backtest run."""

    total_signals: int
    closed_signals: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    avg_pnl_pct: float
    total_pnl_pct: float
    max_drawdown_pct: float
    profit_factor: float
    sharpe_ratio: float
    avg_duration_hours: float
    by_outcome: dict[str, int] = field(default_factory=dict)
    by_strength: dict[str, BucketStats] = field(default_factory=dict)
    by_confidence: dict[str, BucketStats] = field(default_factory=dict)
    name: str = "backtest"


def max_drawdown(pnls: list[float]) -> float:
    """Largest peak-to-trough drop of the cumulative PnL sequence.

    The running peak starts at 0 (flat equity before the first trade).
    """
    if not pnls:
        return 0.0
    cumulative = np.concatenate(([0.0], np.cumsum(pnls)))
    peaks = np.maximum.accumulate(cumulative)
    return float(np.max(peaks - cumulative))


def _bucket(results: list[BacktestResult]) -> BucketStats:
    wins = sum(1 for r in results if r.pnl_pct > 0)
    return BucketStats(
        count=len(results),
        win_rate=wins / len(results),
        avg_pnl_pct=sum(r.pnl_pct for r in results) / len(results),
    )


def summarize(results: list[BacktestResult], name: str = "backtest") -> BacktestSummary:
    """Aggregate per-signal results; ``open`` outcomes are excluded from stats."""
    closed = sorted(
        (r for r in results if r.is_closed),
        key=lambda r: (r.created_at, r.signal_id or 0),
    )
    by_outcome: dict[str, int] = {}
    for r in results:
        by_outcome[r.outcome.value] = by_outcome.get(r.outcome.value, 0) + 1

    if not closed:
        return BacktestSummary(
            total_signals=len(results),
            closed_signals=0,
            winning_trades=0,
            losing_trades=0,
            win_rate=0.0,
            avg_pnl_pct=0.0,
            total_pnl_pct=0.0,
            max_drawdown_pct=0.0,
            profit_factor=0.0,
            sharpe_ratio=0.0,
            avg_duration_hours=0.0,
            by_outcome=by_outcome,
            name=name,
        )

    pnls = [r.pnl_pct for r in closed]
    winning = [p for p in pnls if p > 0]
    losing = [p for p in pnls if p <= 0]

    gross_profit = sum(winning)
    gross_loss = abs(sum(losing))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = PROFIT_FACTOR_NO_LOSSES if gross_profit > 0 else 0.0

    # Sharpe-style ratio over per-signal returns
    if len(pnls) > 1:
        std = float(np.std(pnls, ddof=1))
        sharpe = float(np.mean(pnls)) / std * math.sqrt(len(pnls)) if std > 0 else 0.0
    else:
        sharpe = 0.0

    by_strength = {}
    for strength in ("strong", "medium"):
        bucket = [r for r in closed if r.strength == strength]
        if bucket:
            by_strength[strength] = _bucket(bucket)

    by_confidence = {}
    for label, lo, hi in CONFIDENCE_BUCKETS:
        bucket = [r for r in closed if lo <= r.confidence < hi]
        if bucket:
            by_confidence[label] = _bucket(bucket)

    total = sum(pnls)
    return BacktestSummary(
        total_signals=len(results),
        closed_signals=len(closed),
        winning_trades=len(winning),
        losing_trades=len(losing),
        win_rate=round(len(winning) / len(closed), 4),
        avg_pnl_pct=round(total / len(closed), 4),
        total_pnl_pct=round(total, 4),
        max_drawdown_pct=round(max_drawdown(pnls), 4),
        profit_factor=round(profit_factor, 4),
        sharpe_ratio=round(sharpe, 4),
        avg_duration_hours=round(sum(r.duration_hours for r in closed) / len(closed), 2),
        by_outcome=by_outcome,
        by_strength=by_strength,
        by_confidence=by_confidence,
        name=name,
    )


def print_report(summary: BacktestSummary) -> None:
    """Print a human-readable performance report to stdout."""
    width = 50
    print()
    print("=" * width)
    print(f"  SIGNAL BACKTEST: {summary.name}")
    print("=" * width)
    print(f"  Signals (closed/total): {summary.closed_signals:>5d} / {summary.total_signals:<5d}")
    print(f"  Win Rate:               {summary.win_rate * 100:>10.2f} %")
    print(f"  Avg PnL:                {summary.avg_pnl_pct:>+10.2f} %")
    print(f"  Total PnL:              {summary.total_pnl_pct:>+10.2f} %")
    print(f"  Max Drawdown:           {summary.max_drawdown_pct:>10.2f} %")
    print(f"  Profit Factor:          {summary.profit_factor:>10.2f}")
    print(f"  Sharpe Ratio:           {summary.sharpe_ratio:>10.2f}")
    print(f"  Avg Duration:           {summary.avg_duration_hours:>10.2f} h")
    print("-" * width)
    for outcome, count in sorted(summary.by_outcome.items()):
        print(f"  {outcome:<24}{count:>10d}")
    if summary.by_strength:
        print("-" * width)
        for strength, stats in summary.by_strength.items():
            print(
                f"  {strength:<10} n={stats.count:<4d} wr={stats.win_rate * 100:5.1f}% "
                f"avg={stats.avg_pnl_pct:+.2f}%"
            )
    if summary.by_confidence:
        print("-" * width)
        for label, stats in summary.by_confidence.items():
            print(
                f"  conf {label:<5} n={stats.count:<4d} wr={stats.win_rate * 100:5.1f}% "
                f"avg={stats.avg_pnl_pct:+.2f}%"
            )
    print("=" * width)
    print()


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def load_candles(
    client: HyperliquidClient,
    store: DataStore,
    coin: str,
    start: datetime,
    end: datetime,
) -> list[Candle]:
    """Hourly candles for ``[start, end]``, served from the store when it covers the range."""
    cached = store.get_cached_candles(coin, CANDLE_INTERVAL, start, end)
    if (
        cached
        and cached[0].timestamp <= start + CANDLE_SPAN
        and cached[-1].timestamp >= end - CANDLE_SPAN
    ):
        return cached

    candles = await client.get_candles(coin, CANDLE_INTERVAL, start, end)
    if candles:
        store.cache_candles(coin, CANDLE_INTERVAL, candles)
    return candles


async def run_backtest(
    store: DataStore,
    client: HyperliquidClient,
    lookback_days: int = 180,
    max_signals: int = 500,
    max_hours: int = 168,
    now: datetime | None = None,
    batch_size: int = 10,
    batch_delay: float = 0.1,
) -> BacktestSummary:
    """Backtest persisted signals created in the last *lookback_days*."""
    now = now or utc_now()
    signals = store.get_signals_since(now - timedelta(days=lookback_days), max_signals)
    log.info("backtest_start", lookback_days=lookback_days, signals=len(signals))

    async def _replay(signal: Signal) -> BacktestResult:
        created_at = signal.created_at or now
        # Start at the open of the candle spanning creation
        start = created_at.replace(minute=0, second=0, microsecond=0)
        end = min(created_at + timedelta(hours=max_hours), now)
        candles = await load_candles(client, store, signal.coin, start, end)
        return simulate_signal(signal, candles, max_hours)

    outcome = await run_in_batches(
        signals,
        _replay,
        batch_size=batch_size,
        delay=batch_delay,
        timeout=None,
        label="signal",
    )

    summary = summarize(outcome.results, name=f"backtest {lookback_days}d")
    log.info(
        "backtest_complete",
        total=summary.total_signals,
        closed=summary.closed_signals,
        failed=len(outcome.failed),
        win_rate=summary.win_rate,
        total_pnl_pct=summary.total_pnl_pct,
    )
    return summary
