"""Pydantic v2 response models for the convergence signal API."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

class SignalOut(BaseModel):
    """One convergence signal with its trade levels."""

    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    coin: str
    direction: str
    signal_strength: str
    confidence: int
    risk_score: int
    elite_count: int
    good_count: int
    total_traders: int
    opposing_count: int
    directional_agreement: float
    combined_pnl_7d: float
    avg_win_rate: float
    avg_profit_factor: float
    total_position_value: float
    suggested_entry: float
    entry_range_low: float
    entry_range_high: float
    stop_loss: float
    stop_distance_pct: float
    take_profit_1: float
    take_profit_2: float
    take_profit_3: float
    suggested_leverage: float
    traders: list[str] = []
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None
    invalidated_at: datetime | None = None
    invalidation_reason: str | None = None
    entry_price: float | None = None
    current_price: float | None = None
    current_pnl_pct: float | None = None
    max_pnl_pct: float = 0.0
    min_pnl_pct: float = 0.0
    hit_stop: bool = False
    hit_tp1: bool = False
    hit_tp2: bool = False
    hit_tp3: bool = False
    outcome: str | None = None
    final_pnl_pct: float | None = None
    closed_at: datetime | None = None


class SignalsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signals: list[SignalOut]
    count: int


class SignalResultOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    coin: str
    direction: str
    pnl_pct: float


class PerformanceSummaryOut(BaseModel):
    """Results of closed signals over the requested window."""

    model_config = ConfigDict(populate_by_name=True)

    total_signals: int
    active_signals: int
    closed_signals: int
    by_outcome: dict[str, int] = {}
    win_rate: float
    avg_pnl_pct: float
    total_pnl_pct: float
    avg_duration_hours: float
    avg_max_profit_pct: float
    avg_max_drawdown_pct: float
    best_signal: SignalResultOut | None = None
    worst_signal: SignalResultOut | None = None


class AssetPerformanceOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

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
    last_signal_at: datetime | None = None


class PerformanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    days: int
    summary: PerformanceSummaryOut
    assets: list[AssetPerformanceOut] = []


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------

class WalletStatsResponse(BaseModel):
    """Tier counts across all known wallets."""

    model_config = ConfigDict(populate_by_name=True)

    elite: int
    good: int
    unqualified: int
    tracked: int
    unanalyzed: int


class WalletPositionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    coin: str
    direction: str
    size: float
    entry_price: float
    leverage: float
    liquidation_price: float | None = None
    notional_value: float
    unrealized_pnl: float
    updated_at: datetime | None = None


class TierChangeOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    old_tier: str
    new_tier: str
    reason: str | None = None
    recorded_at: str


class WalletDetailResponse(BaseModel):
    """Quality metrics, open positions and tier history for one wallet."""

    model_config = ConfigDict(populate_by_name=True)

    address: str
    tier: str
    is_tracked: bool
    pnl_7d: float
    pnl_30d: float
    win_rate: float
    profit_factor: float
    trade_count: int
    account_value: float
    analyzed_at: datetime | None = None
    positions: list[WalletPositionOut] = []
    tier_history: list[TierChangeOut] = []


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    """Response model for the health check endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    db_connected: bool
    active_signals: int = 0
    last_synthesis: str | None = None
