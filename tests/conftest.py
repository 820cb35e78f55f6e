"""Shared pytest fixtures for the convergence test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from convergence.config import EngineConfig
from convergence.datastore import DataStore
from convergence.models import (
    Direction,
    Position,
    QualityTier,
    Signal,
    SignalStrength,
    WalletQuality,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def config() -> EngineConfig:
    """Default engine config, ignoring any local .env file."""
    return EngineConfig(_env_file=None)


@pytest.fixture()
def store() -> DataStore:
    """Provide a fresh in-memory store; closed after the test finishes."""
    ds = DataStore(":memory:")
    yield ds
    ds.close()


@pytest.fixture()
def make_quality():
    """Factory for tracked WalletQuality records."""

    def _make(address: str, tier: QualityTier = QualityTier.ELITE, **overrides) -> WalletQuality:
        defaults = dict(
            address=address,
            tier=tier,
            pnl_7d=30_000.0,
            pnl_30d=60_000.0,
            win_rate=0.6,
            profit_factor=2.0,
            trade_count=25,
            account_value=250_000.0,
            is_tracked=tier in (QualityTier.ELITE, QualityTier.GOOD),
            analyzed_at=NOW - timedelta(hours=1),
        )
        defaults.update(overrides)
        return WalletQuality(**defaults)

    return _make


@pytest.fixture()
def make_position():
    """Factory for open positions; negative ``size`` means short."""

    def _make(wallet: str, coin: str = "BTC", size: float = 1.0, **overrides) -> Position:
        defaults = dict(
            wallet=wallet,
            coin=coin,
            size=size,
            entry_price=60_000.0,
            leverage=5.0,
            liquidation_price=None,
            notional_value=abs(size) * 60_000.0,
            unrealized_pnl=0.0,
            updated_at=NOW,
        )
        defaults.update(overrides)
        return Position(**defaults)

    return _make


@pytest.fixture()
def make_signal():
    """Factory for a long BTC signal with 1R/2R/3R levels around 100."""

    def _make(coin: str = "BTC", direction: Direction = Direction.LONG, **overrides) -> Signal:
        sign = 1 if direction is Direction.LONG else -1
        defaults = dict(
            coin=coin,
            direction=direction,
            elite_count=2,
            good_count=1,
            total_traders=3,
            combined_pnl_7d=90_000.0,
            avg_win_rate=0.6,
            avg_profit_factor=2.0,
            total_position_value=500_000.0,
            suggested_entry=100.0,
            entry_range_low=99.0,
            entry_range_high=101.0,
            stop_loss=100.0 - sign * 3.0,
            stop_distance_pct=0.03,
            take_profit_1=100.0 + sign * 3.0,
            take_profit_2=100.0 + sign * 6.0,
            take_profit_3=100.0 + sign * 9.0,
            suggested_leverage=0.5,
            risk_score=20,
            confidence=80,
            signal_strength=SignalStrength.STRONG,
            directional_agreement=1.0,
            traders=["0x" + "a" * 40, "0x" + "b" * 40, "0x" + "c" * 40],
            created_at=NOW,
        )
        defaults.update(overrides)
        return Signal(**defaults)

    return _make
