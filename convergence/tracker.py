"""Live outcome tracking for active signals.

Each pass marks every active signal to the current mid price: PnL, best and
worst excursion, peak and trough price, and sticky stop/target hit flags.  A
newly hit stop or third target closes the signal.  Expiry and invalidation
stay with the lifecycle paths, which close the row at its last tracked PnL.

The performance reads summarize closed signals overall and per coin.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import structlog

from convergence.backtest import signed_pnl_pct
from convergence.datastore import DataStore
from convergence.models import Direction, Outcome, Signal, SignalTracking, utc_now

log = structlog.get_logger()

REASON_STOP_HIT = "stop_loss_hit"
REASON_TP3_HIT = "take_profit_3_hit"


# ---------------------------------------------------------------------------
# Per-signal marking
# ---------------------------------------------------------------------------


def _stop_hit(direction: Direction, price: float, stop: float) -> bool:
    return price <= stop if direction is Direction.LONG else price >= stop


def _target_hit(direction: Direction, price: float, target: float) -> bool:
    return price >= target if direction is Direction.LONG else price <= target


def track_signal(signal: Signal, price: float) -> SignalTracking:
    """Mark *signal* to *price*.

    PnL is measured from the entry recorded when the row was created, falling
    back to the current suggested entry.  Hit flags never reset.  The stop is
    checked before the third target.
    """
    direction = signal.direction
    is_long = direction is Direction.LONG
    entry = signal.entry_price or signal.suggested_entry
    pnl = signed_pnl_pct(direction, entry, price)

    if signal.peak_price is None:
        peak = trough = price
    elif is_long:
        peak = max(signal.peak_price, price)
        trough = min(signal.trough_price or price, price)
    else:
        peak = min(signal.peak_price, price)
        trough = max(signal.trough_price or price, price)

    tracking = SignalTracking(
        signal_id=signal.id,
        current_price=price,
        current_pnl_pct=pnl,
        max_pnl_pct=max(signal.max_pnl_pct, pnl),
        min_pnl_pct=min(signal.min_pnl_pct, pnl),
        peak_price=peak,
        trough_price=trough,
        hit_stop=signal.hit_stop or _stop_hit(direction, price, signal.stop_loss),
        hit_tp1=signal.hit_tp1 or _target_hit(direction, price, signal.take_profit_1),
        hit_tp2=signal.hit_tp2 or _target_hit(direction, price, signal.take_profit_2),
        hit_tp3=signal.hit_tp3 or _target_hit(direction, price, signal.take_profit_3),
    )

    if tracking.hit_stop and not signal.hit_stop:
        tracking.outcome = Outcome.STOPPED
        tracking.close_reason = REASON_STOP_HIT
    elif tracking.hit_tp3 and not signal.hit_tp3:
        tracking.outcome = Outcome.TP3
        tracking.close_reason = REASON_TP3_HIT
    return tracking


@dataclass
class TrackerResult:
    updated: int = 0
    closed: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def update_signal_prices(
    store: DataStore,
    get_price: Callable[[str], float | None],
    now: datetime | None = None,
) -> TrackerResult:
    """Mark every active signal to its current price and persist the result.

    Coins without a usable price are skipped and keep their last marks.
    """
    now = now or utc_now()
    result = TrackerResult()

    for signal in store.get_active_signals(now):
        price = get_price(signal.coin)
        if price is None or signal.id is None:
            result.skipped.append(signal.coin)
            continue

        tracking = track_signal(signal, price)
        for level in ("tp1", "tp2"):
            if getattr(tracking, f"hit_{level}") and not getattr(signal, f"hit_{level}"):
                log.info(
                    "signal_target_hit",
                    coin=signal.coin,
                    direction=signal.direction.value,
                    level=level,
                    pnl_pct=round(tracking.current_pnl_pct, 2),
                )

        if not store.record_signal_tracking(tracking, now):
            continue
        result.updated += 1
        if tracking.outcome is not None:
            result.closed.append(signal.key)
            log.info(
                "signal_closed",
                coin=signal.coin,
                direction=signal.direction.value,
                outcome=tracking.outcome.value,
                entry=signal.entry_price or signal.suggested_entry,
                exit=tracking.current_price,
                pnl_pct=round(tracking.current_pnl_pct, 2),
            )

    log.debug("signal_tracking_complete", updated=result.updated, closed=len(result.closed))
    return result


# ---------------------------------------------------------------------------
# Performance reads
# ---------------------------------------------------------------------------


@dataclass
class PerformanceSummary:
    total_signals: int = 0
    active_signals: int = 0
    closed_signals: int = 0
    by_outcome: dict[str, int] = field(default_factory=dict)
    win_rate: float = 0.0
    avg_pnl_pct: float = 0.0
    total_pnl_pct: float = 0.0
    avg_duration_hours: float = 0.0
    avg_max_profit_pct: float = 0.0
    avg_max_drawdown_pct: float = 0.0
    best: Signal | None = None
    worst: Signal | None = None


@dataclass
class AssetPerformance:
    coin: str
    total_signals: int
    winning_signals: int
    losing_signals: int
    win_rate: float
    avg_pnl_pct: float
    total_pnl_pct: float
    avg_duration_hours: float
    best_pnl_pct: float
    worst_pnl_pct: float
    last_signal_at: datetime | None


def _closed(signals: list[Signal]) -> list[Signal]:
    """Inactive signals that were marked at least once before closing."""
    return [s for s in signals if not s.is_active and s.final_pnl_pct is not None]


def _duration_hours(signal: Signal) -> float:
    if signal.created_at is None or signal.closed_at is None:
        return 0.0
    return max(0.0, (signal.closed_at - signal.created_at).total_seconds() / 3600)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def performance_summary(signals: list[Signal]) -> PerformanceSummary:
    """Win rate, PnL and excursion averages over closed signals.

    A closed signal wins when its final PnL is strictly positive.
    """
    closed = _closed(signals)
    summary = PerformanceSummary(
        total_signals=len(signals),
        active_signals=sum(1 for s in signals if s.is_active),
        closed_signals=len(closed),
    )
    if not closed:
        return summary

    for s in closed:
        key = (s.outcome or Outcome.CLOSED).value
        summary.by_outcome[key] = summary.by_outcome.get(key, 0) + 1

    pnls = [s.final_pnl_pct for s in closed]
    summary.win_rate = round(sum(1 for p in pnls if p > 0) / len(closed), 4)
    summary.total_pnl_pct = round(sum(pnls), 4)
    summary.avg_pnl_pct = round(_mean(pnls), 4)
    summary.avg_duration_hours = round(_mean([_duration_hours(s) for s in closed]), 2)
    summary.avg_max_profit_pct = round(_mean([s.max_pnl_pct for s in closed]), 4)
    summary.avg_max_drawdown_pct = round(_mean([s.min_pnl_pct for s in closed]), 4)

    ranked = sorted(closed, key=lambda s: s.final_pnl_pct, reverse=True)
    summary.best, summary.worst = ranked[0], ranked[-1]
    return summary


def asset_performance(signals: list[Signal]) -> list[AssetPerformance]:
    """Per-coin results over closed signals, highest total PnL first."""
    by_coin: dict[str, list[Signal]] = {}
    for s in _closed(signals):
        by_coin.setdefault(s.coin, []).append(s)

    rows = []
    for coin, group in by_coin.items():
        pnls = [s.final_pnl_pct for s in group]
        wins = sum(1 for p in pnls if p > 0)
        created = [s.created_at for s in group if s.created_at is not None]
        rows.append(
            AssetPerformance(
                coin=coin,
                total_signals=len(group),
                winning_signals=wins,
                losing_signals=len(group) - wins,
                win_rate=round(wins / len(group), 4),
                avg_pnl_pct=round(_mean(pnls), 4),
                total_pnl_pct=round(sum(pnls), 4),
                avg_duration_hours=round(_mean([_duration_hours(s) for s in group]), 2),
                best_pnl_pct=max(pnls),
                worst_pnl_pct=min(pnls),
                last_signal_at=max(created) if created else None,
            )
        )
    rows.sort(key=lambda r: r.total_pnl_pct, reverse=True)
    return rows
