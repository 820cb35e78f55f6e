"""Tests for signal synthesis: eligibility, levels, scores and end-to-end scenarios."""

from __future__ import annotations

import pytest

from convergence.aggregator import aggregate
from convergence.models import (
    Direction,
    QualityTier,
    SignalCandidate,
    SignalStrength,
    TraderPosition,
)
from convergence.synthesizer import (
    compute_confidence,
    compute_entry_range,
    compute_risk_score,
    compute_stop_loss,
    determine_strength,
    passes_eligibility,
    suggested_leverage,
    synthesize,
    take_profit_ladder,
)

E1 = "0x" + "01" * 20
E2 = "0x" + "02" * 20
E3 = "0x" + "03" * 20
G1 = "0x" + "11" * 20
G2 = "0x" + "12" * 20
G3 = "0x" + "13" * 20


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _trader(address: str, tier: QualityTier, entry: float = 100.0, liq: float | None = None) -> TraderPosition:
    return TraderPosition(
        address=address,
        tier=tier,
        entry_price=entry,
        leverage=5.0,
        liquidation_price=liq,
        notional_value=10_000.0,
        pnl_7d=20_000.0,
        pnl_30d=40_000.0,
        win_rate=0.6,
        profit_factor=2.0,
    )


def _candidate(direction: Direction = Direction.LONG, elite: int = 2, good: int = 1, **overrides) -> SignalCandidate:
    tiers = [QualityTier.ELITE] * elite + [QualityTier.GOOD] * good
    traders = [_trader(f"0x{i:040x}", tier) for i, tier in enumerate(tiers)]
    defaults = dict(
        coin="BTC",
        direction=direction,
        elite_traders=[t for t in traders if t.tier is QualityTier.ELITE],
        good_traders=[t for t in traders if t.tier is QualityTier.GOOD],
        opposing_count=0,
        directional_agreement=1.0,
        combined_pnl_7d=60_000.0,
        combined_pnl_30d=120_000.0,
        avg_win_rate=0.6,
        avg_profit_factor=2.0,
        avg_leverage=5.0,
        total_position_value=30_000.0,
    )
    defaults.update(overrides)
    return SignalCandidate(**defaults)


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


class TestEligibility:
    def test_passes(self, config) -> None:
        ok, reason = passes_eligibility(_candidate(), config)
        assert ok is True
        assert reason == "passed"

    def test_low_agreement(self, config) -> None:
        ok, reason = passes_eligibility(_candidate(directional_agreement=0.6), config)
        assert ok is False
        assert "agreement" in reason

    def test_single_good_wallet_is_not_enough(self, config) -> None:
        ok, reason = passes_eligibility(_candidate(elite=0, good=1), config)
        assert ok is False
        assert "traders" in reason

    def test_two_good_wallets_are_enough(self, config) -> None:
        assert passes_eligibility(_candidate(elite=0, good=2), config)[0] is True

    def test_low_combined_pnl(self, config) -> None:
        ok, reason = passes_eligibility(_candidate(combined_pnl_7d=9_999.0), config)
        assert ok is False
        assert "pnl7d" in reason

    def test_low_win_rate(self, config) -> None:
        ok, reason = passes_eligibility(_candidate(avg_win_rate=0.49), config)
        assert ok is False
        assert "win rate" in reason


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------


class TestLevels:
    def test_entry_range_from_member_entries(self, config) -> None:
        candidate = _candidate(elite=0, good=0)
        candidate.elite_traders = [_trader(E1, QualityTier.ELITE, 99.0), _trader(E2, QualityTier.ELITE, 103.0)]
        assert compute_entry_range(candidate, 101.0, config) == (99.0, 103.0)

    def test_entry_range_fallback(self, config) -> None:
        candidate = _candidate(elite=0, good=0)
        candidate.elite_traders = [_trader(E1, QualityTier.ELITE, 0.0)]
        low, high = compute_entry_range(candidate, 200.0, config)
        assert low == pytest.approx(198.0)
        assert high == pytest.approx(202.0)

    def test_long_stop_from_highest_liquidation(self, config) -> None:
        stop = compute_stop_loss(Direction.LONG, 100.0, [50.0, 60.0], config)
        assert stop == pytest.approx(72.0)

    def test_long_stop_clamped_below_price(self, config) -> None:
        stop = compute_stop_loss(Direction.LONG, 100.0, [90.0], config)
        assert stop == pytest.approx(97.0)

    def test_short_stop_from_lowest_liquidation(self, config) -> None:
        stop = compute_stop_loss(Direction.SHORT, 100.0, [200.0, 150.0], config)
        assert stop == pytest.approx(120.0)

    def test_short_stop_clamped_above_price(self, config) -> None:
        stop = compute_stop_loss(Direction.SHORT, 100.0, [110.0], config)
        assert stop == pytest.approx(103.0)

    def test_default_stop_without_liquidations(self, config) -> None:
        assert compute_stop_loss(Direction.LONG, 100.0, [], config) == pytest.approx(97.0)
        assert compute_stop_loss(Direction.SHORT, 100.0, [None], config) == pytest.approx(103.0)

    @pytest.mark.parametrize(
        "liqs",
        [[], [None], [1.0], [50.0, 95.0], [99.9], [150.0], [100.0], [0.0, -3.0], [1e9]],
    )
    def test_stop_sidedness_on_every_path(self, config, liqs) -> None:
        price = 100.0
        assert compute_stop_loss(Direction.LONG, price, liqs, config) < price
        assert compute_stop_loss(Direction.SHORT, price, liqs, config) > price

    @pytest.mark.parametrize("direction,stop", [(Direction.LONG, 95.0), (Direction.SHORT, 104.0)])
    def test_take_profit_monotonic(self, direction, stop) -> None:
        entry = 100.0
        tp1, tp2, tp3 = take_profit_ladder(direction, entry, stop)
        assert abs(tp3 - entry) > abs(tp2 - entry) > abs(tp1 - entry) > 0
        sign = 1 if direction is Direction.LONG else -1
        assert sign * (tp1 - entry) > 0

    def test_ladder_is_one_two_three_r(self) -> None:
        assert take_profit_ladder(Direction.LONG, 100.0, 96.0) == (104.0, 108.0, 112.0)
        assert take_profit_ladder(Direction.SHORT, 100.0, 105.0) == (95.0, 90.0, 85.0)


class TestLeverage:
    def test_risk_budget_caps_leverage(self, config) -> None:
        # 2% risk / 3% stop = 0.667 -> 0.5
        assert suggested_leverage(5.0, 0.03, config) == 0.5

    def test_member_mean_caps_leverage(self, config) -> None:
        assert suggested_leverage(1.2, 0.005, config) == 1.0

    def test_hard_cap(self, config) -> None:
        assert suggested_leverage(50.0, 0.001, config) == config.MAX_SUGGESTED_LEVERAGE

    def test_rounds_to_half(self, config) -> None:
        assert suggested_leverage(2.8, 0.002, config) == 3.0
        assert suggested_leverage(2.7, 0.002, config) == 2.5


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


class TestScores:
    def test_confidence_bounds(self) -> None:
        maxed = _candidate(elite=5, good=5, combined_pnl_7d=1e6, avg_win_rate=0.9, avg_profit_factor=10.0)
        assert compute_confidence(maxed) == 100
        weak = _candidate(elite=0, good=0, directional_agreement=0.0, combined_pnl_7d=0.0,
                          avg_win_rate=0.0, avg_profit_factor=0.0)
        assert compute_confidence(weak) == 5

    def test_risk_score_bounds(self) -> None:
        safest = _candidate(elite=3, avg_win_rate=0.7, avg_profit_factor=3.0)
        assert compute_risk_score(safest, 0.05) == 5
        riskiest = _candidate(elite=0, directional_agreement=0.65, avg_win_rate=0.5, avg_profit_factor=1.0)
        assert compute_risk_score(riskiest, 0.01) == 60

    def test_strength(self, config) -> None:
        assert determine_strength(2, 0, config) is SignalStrength.STRONG
        assert determine_strength(0, 4, config) is SignalStrength.STRONG
        assert determine_strength(1, 2, config) is SignalStrength.STRONG
        assert determine_strength(1, 1, config) is SignalStrength.MEDIUM
        assert determine_strength(0, 3, config) is SignalStrength.MEDIUM


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------


class TestSynthesize:
    def test_missing_price_yields_none(self, config) -> None:
        assert synthesize(_candidate(), None, config) is None
        assert synthesize(_candidate(), 0.0, config) is None

    def test_three_elite_longs_on_btc(self, config, make_quality, make_position) -> None:
        qualities = {
            E1: make_quality(E1, pnl_7d=30_000, win_rate=0.55, profit_factor=2.0),
            E2: make_quality(E2, pnl_7d=40_000, win_rate=0.60, profit_factor=1.8),
            E3: make_quality(E3, pnl_7d=50_000, win_rate=0.52, profit_factor=2.5),
        }
        positions = [
            make_position(E1, "BTC", 1.0, entry_price=60_000.0),
            make_position(E2, "BTC", 1.0, entry_price=60_100.0),
            make_position(E3, "BTC", 1.0, entry_price=59_900.0),
        ]
        [candidate] = aggregate(positions, qualities)
        signal = synthesize(candidate, 60_200.0, config)

        assert signal is not None
        assert signal.directional_agreement == 1.0
        assert signal.elite_count == 3
        assert signal.signal_strength is SignalStrength.STRONG
        assert signal.confidence >= 75
        assert signal.stop_loss == pytest.approx(60_200 * 0.97)
        assert signal.stop_loss == pytest.approx(58_394.0)
        assert signal.suggested_entry < signal.take_profit_1 < signal.take_profit_2 < signal.take_profit_3
        assert (signal.entry_range_low, signal.entry_range_high) == (59_900.0, 60_100.0)
        assert signal.stop_distance_pct == pytest.approx(0.03)
        assert signal.suggested_leverage == 0.5
        assert sorted(signal.traders) == sorted([E1, E2, E3])

    def test_split_sol_group_yields_no_signal(self, config, make_quality, make_position) -> None:
        qualities = {
            E1: make_quality(E1, QualityTier.ELITE),
            G1: make_quality(G1, QualityTier.GOOD),
            G2: make_quality(G2, QualityTier.GOOD),
            G3: make_quality(G3, QualityTier.GOOD),
        }
        positions = [
            make_position(E1, "SOL", 10.0, entry_price=150.0),
            make_position(G1, "SOL", 5.0, entry_price=150.0),
            make_position(G2, "SOL", -5.0, entry_price=150.0),
            make_position(G3, "SOL", -5.0, entry_price=150.0),
        ]
        [candidate] = aggregate(positions, qualities)
        assert candidate.directional_agreement == pytest.approx(0.5)
        assert synthesize(candidate, 151.0, config) is None

    def test_short_signal_levels(self, config) -> None:
        signal = synthesize(_candidate(Direction.SHORT), 100.0, config)
        assert signal.direction is Direction.SHORT
        assert signal.stop_loss > 100.0
        assert signal.take_profit_3 < signal.take_profit_2 < signal.take_profit_1 < 100.0
