"""Signal synthesis: turn an eligible convergence candidate into trade levels.

Everything here is pure; the current price is supplied by the caller.  A
candidate that fails the eligibility gate, or a coin without a usable price,
yields ``None`` ("no signal this cycle"), never an error.
"""

from __future__ import annotations

from convergence.config import EngineConfig
from convergence.models import Direction, Signal, SignalCandidate, SignalStrength


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


def passes_eligibility(candidate: SignalCandidate, config: EngineConfig) -> tuple[bool, str]:
    """Return ``(passes, reason)`` for the signal gate."""
    if candidate.directional_agreement < config.MIN_AGREEMENT:
        return False, (
            f"agreement {candidate.directional_agreement:.2f} < {config.MIN_AGREEMENT}"
        )
    enough_traders = (
        candidate.elite_count >= config.MIN_ELITE_FOR_SIGNAL
        or candidate.good_count >= config.MIN_GOOD_FOR_SIGNAL
        or (candidate.elite_count >= 1 and candidate.good_count >= 1)
    )
    if not enough_traders:
        return False, (
            f"traders elite={candidate.elite_count} good={candidate.good_count} insufficient"
        )
    if candidate.combined_pnl_7d < config.MIN_COMBINED_PNL_7D:
        return False, (
            f"combined pnl7d {candidate.combined_pnl_7d:.0f} < {config.MIN_COMBINED_PNL_7D:.0f}"
        )
    if candidate.avg_win_rate < config.MIN_AVG_WIN_RATE:
        return False, f"avg win rate {candidate.avg_win_rate:.2f} < {config.MIN_AVG_WIN_RATE}"
    return True, "passed"


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------


def compute_entry_range(
    candidate: SignalCandidate, current_price: float, config: EngineConfig
) -> tuple[float, float]:
    entries = [m.entry_price for m in candidate.members if m.entry_price and m.entry_price > 0]
    if not entries:
        pad = current_price * config.ENTRY_RANGE_FALLBACK_PCT
        return current_price - pad, current_price + pad
    return min(entries), max(entries)


def compute_stop_loss(
    direction: Direction,
    current_price: float,
    liquidation_prices: list[float],
    config: EngineConfig,
) -> float:
    """Liquidation-anchored stop, clamped to stay on the losing side of price.

    Long: 20% above the highest member liquidation, never above
    ``price * 0.97``.  Short: 20% below the lowest, never below
    ``price * 1.03``.  Without liquidation prices: entry -/+ 3%.
    """
    liqs = [p for p in liquidation_prices if p is not None and p > 0]
    if direction is Direction.LONG:
        if not liqs:
            return current_price * (1 - config.DEFAULT_STOP_PCT)
        stop = max(liqs) * (1 + config.LIQ_STOP_BUFFER)
        return min(stop, current_price * (1 - config.MIN_STOP_DISTANCE))

    if not liqs:
        return current_price * (1 + config.DEFAULT_STOP_PCT)
    stop = min(liqs) * (1 - config.LIQ_STOP_BUFFER)
    return max(stop, current_price * (1 + config.MIN_STOP_DISTANCE))


def compute_stop_distance(stop_loss: float, current_price: float) -> float:
    # rounded so that exact 3% stops do not drift across float thresholds
    return round(abs(stop_loss - current_price) / current_price, 6)


def take_profit_ladder(
    direction: Direction, entry: float, stop_loss: float
) -> tuple[float, float, float]:
    """1R, 2R and 3R targets on the profitable side of entry."""
    risk = abs(entry - stop_loss)
    sign = 1 if direction is Direction.LONG else -1
    return entry + sign * risk, entry + 2 * sign * risk, entry + 3 * sign * risk


def suggested_leverage(
    avg_leverage: float, stop_distance_pct: float, config: EngineConfig
) -> float:
    """min(member mean, risk-budget leverage, cap), rounded to the nearest 0.5.

    Floored at 0.5 so a signal never suggests zero exposure.
    """
    safe = config.MAX_RISK_PER_TRADE / stop_distance_pct if stop_distance_pct > 0 else config.MAX_SUGGESTED_LEVERAGE
    raw = min(avg_leverage if avg_leverage > 0 else 1.0, safe, config.MAX_SUGGESTED_LEVERAGE)
    return max(0.5, round(raw * 2) / 2)


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def compute_risk_score(candidate: SignalCandidate, stop_distance_pct: float) -> int:
    """0-100, lower is safer."""
    risk = 50

    agreement = candidate.directional_agreement
    if agreement >= 0.9:
        risk -= 15
    elif agreement >= 0.8:
        risk -= 10
    elif agreement >= 0.7:
        risk -= 5

    if candidate.avg_profit_factor >= 2.0:
        risk -= 10
    elif candidate.avg_profit_factor >= 1.5:
        risk -= 5

    if candidate.avg_win_rate >= 0.6:
        risk -= 10
    elif candidate.avg_win_rate >= 0.55:
        risk -= 5

    if candidate.elite_count >= 3:
        risk -= 10
    elif candidate.elite_count >= 2:
        risk -= 5

    # Stop tightness
    if stop_distance_pct < 0.02:
        risk += 10
    elif stop_distance_pct < 0.03:
        risk += 5

    return max(0, min(100, risk))


def compute_confidence(candidate: SignalCandidate) -> int:
    """0-100, additive bands capped individually, total clamped to 100."""
    confidence = min(candidate.elite_count * 15, 30)
    confidence += min(candidate.good_count * 5, 15)

    agreement = candidate.directional_agreement
    if agreement >= 0.9:
        confidence += 20
    elif agreement >= 0.8:
        confidence += 15
    elif agreement >= 0.7:
        confidence += 10
    else:
        confidence += 5

    if candidate.avg_win_rate >= 0.6:
        confidence += 15
    elif candidate.avg_win_rate >= 0.55:
        confidence += 10
    elif candidate.avg_win_rate >= 0.5:
        confidence += 5

    if candidate.avg_profit_factor >= 2.0:
        confidence += 15
    elif candidate.avg_profit_factor >= 1.5:
        confidence += 10
    elif candidate.avg_profit_factor >= 1.2:
        confidence += 5

    if candidate.combined_pnl_7d >= 100_000:
        confidence += 10
    elif candidate.combined_pnl_7d >= 50_000:
        confidence += 7
    elif candidate.combined_pnl_7d >= 25_000:
        confidence += 5

    return max(0, min(100, confidence))


def determine_strength(elite_count: int, good_count: int, config: EngineConfig) -> SignalStrength:
    if elite_count >= config.STRONG_MIN_ELITE:
        return SignalStrength.STRONG
    if good_count >= config.STRONG_MIN_GOOD:
        return SignalStrength.STRONG
    mixed = config.STRONG_MIXED
    if elite_count >= mixed["elite"] and good_count >= mixed["good"]:
        return SignalStrength.STRONG
    return SignalStrength.MEDIUM


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def synthesize(
    candidate: SignalCandidate,
    current_price: float | None,
    config: EngineConfig | None = None,
) -> Signal | None:
    """Build a :class:`Signal` for *candidate* at *current_price*, or None."""
    config = config or EngineConfig()
    if current_price is None or current_price <= 0:
        return None
    ok, _ = passes_eligibility(candidate, config)
    if not ok:
        return None

    direction = candidate.direction
    entry = current_price
    range_low, range_high = compute_entry_range(candidate, current_price, config)
    stop = compute_stop_loss(
        direction,
        current_price,
        [m.liquidation_price for m in candidate.members],
        config,
    )
    stop_distance = compute_stop_distance(stop, current_price)
    tp1, tp2, tp3 = take_profit_ladder(direction, entry, stop)

    return Signal(
        coin=candidate.coin,
        direction=direction,
        elite_count=candidate.elite_count,
        good_count=candidate.good_count,
        total_traders=candidate.elite_count + candidate.good_count,
        combined_pnl_7d=candidate.combined_pnl_7d,
        avg_win_rate=candidate.avg_win_rate,
        avg_profit_factor=candidate.avg_profit_factor,
        total_position_value=candidate.total_position_value,
        suggested_entry=entry,
        entry_range_low=range_low,
        entry_range_high=range_high,
        stop_loss=stop,
        stop_distance_pct=stop_distance,
        take_profit_1=tp1,
        take_profit_2=tp2,
        take_profit_3=tp3,
        suggested_leverage=suggested_leverage(candidate.avg_leverage, stop_distance, config),
        risk_score=compute_risk_score(candidate, stop_distance),
        confidence=compute_confidence(candidate),
        signal_strength=determine_strength(candidate.elite_count, candidate.good_count, config),
        opposing_count=candidate.opposing_count,
        directional_agreement=candidate.directional_agreement,
        traders=[m.address for m in candidate.members],
    )
