"""Signals router: active, recent and tracked performance of convergence signals."""
from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from backend.dependencies import get_datastore
from backend.schemas import (
    AssetPerformanceOut,
    PerformanceResponse,
    PerformanceSummaryOut,
    SignalOut,
    SignalResultOut,
    SignalsResponse,
)
from convergence.datastore import DataStore
from convergence.models import Signal, utc_now
from convergence.tracker import asset_performance, performance_summary

router = APIRouter(prefix="/api/v1", tags=["signals"])


def signal_to_out(signal: Signal) -> SignalOut:
    return SignalOut(
        id=signal.id,
        coin=signal.coin,
        direction=signal.direction.value,
        signal_strength=signal.signal_strength.value,
        confidence=signal.confidence,
        risk_score=signal.risk_score,
        elite_count=signal.elite_count,
        good_count=signal.good_count,
        total_traders=signal.total_traders,
        opposing_count=signal.opposing_count,
        directional_agreement=signal.directional_agreement,
        combined_pnl_7d=signal.combined_pnl_7d,
        avg_win_rate=signal.avg_win_rate,
        avg_profit_factor=signal.avg_profit_factor,
        total_position_value=signal.total_position_value,
        suggested_entry=signal.suggested_entry,
        entry_range_low=signal.entry_range_low,
        entry_range_high=signal.entry_range_high,
        stop_loss=signal.stop_loss,
        stop_distance_pct=signal.stop_distance_pct,
        take_profit_1=signal.take_profit_1,
        take_profit_2=signal.take_profit_2,
        take_profit_3=signal.take_profit_3,
        suggested_leverage=signal.suggested_leverage,
        traders=signal.traders,
        is_active=signal.is_active,
        created_at=signal.created_at,
        updated_at=signal.updated_at,
        expires_at=signal.expires_at,
        invalidated_at=signal.invalidated_at,
        invalidation_reason=signal.invalidation_reason,
        entry_price=signal.entry_price,
        current_price=signal.current_price,
        current_pnl_pct=signal.current_pnl_pct,
        max_pnl_pct=signal.max_pnl_pct,
        min_pnl_pct=signal.min_pnl_pct,
        hit_stop=signal.hit_stop,
        hit_tp1=signal.hit_tp1,
        hit_tp2=signal.hit_tp2,
        hit_tp3=signal.hit_tp3,
        outcome=signal.outcome.value if signal.outcome else None,
        final_pnl_pct=signal.final_pnl_pct,
        closed_at=signal.closed_at,
    )


@router.get("/signals/active", response_model=SignalsResponse)
def get_active_signals(
    min_confidence: int = Query(default=0, ge=0, le=100),
    datastore: DataStore = Depends(get_datastore),
) -> SignalsResponse:
    """Active, unexpired signals ordered by confidence then recency."""
    signals = datastore.get_active_signals(utc_now(), min_confidence)
    return SignalsResponse(signals=[signal_to_out(s) for s in signals], count=len(signals))


@router.get("/signals/recent", response_model=SignalsResponse)
def get_recent_signals(
    hours: int = Query(default=24, ge=1, le=24 * 30),
    datastore: DataStore = Depends(get_datastore),
) -> SignalsResponse:
    """Every signal created in the last *hours*, active or not, newest first."""
    signals = datastore.get_recent_signals(utc_now() - timedelta(hours=hours))
    return SignalsResponse(signals=[signal_to_out(s) for s in signals], count=len(signals))


def _result(signal: Signal | None) -> SignalResultOut | None:
    if signal is None:
        return None
    return SignalResultOut(
        coin=signal.coin,
        direction=signal.direction.value,
        pnl_pct=signal.final_pnl_pct or 0.0,
    )


@router.get("/signals/performance", response_model=PerformanceResponse)
def get_signal_performance(
    days: int = Query(default=30, ge=1, le=365),
    datastore: DataStore = Depends(get_datastore),
) -> PerformanceResponse:
    """Tracked outcomes of signals created in the last *days*, overall and per coin."""
    signals = datastore.get_recent_signals(utc_now() - timedelta(days=days))
    summary = performance_summary(signals)
    return PerformanceResponse(
        days=days,
        summary=PerformanceSummaryOut(
            total_signals=summary.total_signals,
            active_signals=summary.active_signals,
            closed_signals=summary.closed_signals,
            by_outcome=summary.by_outcome,
            win_rate=summary.win_rate,
            avg_pnl_pct=summary.avg_pnl_pct,
            total_pnl_pct=summary.total_pnl_pct,
            avg_duration_hours=summary.avg_duration_hours,
            avg_max_profit_pct=summary.avg_max_profit_pct,
            avg_max_drawdown_pct=summary.avg_max_drawdown_pct,
            best_signal=_result(summary.best),
            worst_signal=_result(summary.worst),
        ),
        assets=[AssetPerformanceOut(**vars(a)) for a in asset_performance(signals)],
    )
