"""Convergence aggregation: group tracked wallets' positions by coin and side."""

from __future__ import annotations

from collections import defaultdict

import numpy as np

from convergence.models import (
    Direction,
    Position,
    QualityTier,
    SignalCandidate,
    TraderPosition,
    WalletQuality,
)

_QUALIFYING_TIERS = (QualityTier.ELITE, QualityTier.GOOD)


def directional_agreement(long_count: int, short_count: int) -> float:
    """Share of wallets on the majority side, in [0, 1]; 0.0 for no wallets."""
    total = long_count + short_count
    if total == 0:
        return 0.0
    return max(long_count, short_count) / total


def dominant_direction(long_count: int, short_count: int) -> Direction:
    """Majority side; ties resolve to long."""
    return Direction.LONG if long_count >= short_count else Direction.SHORT


def _trader_position(pos: Position, quality: WalletQuality) -> TraderPosition:
    return TraderPosition(
        address=pos.wallet,
        tier=quality.tier,
        entry_price=pos.entry_price,
        leverage=pos.leverage,
        liquidation_price=pos.liquidation_price,
        notional_value=pos.notional_value,
        pnl_7d=quality.pnl_7d,
        pnl_30d=quality.pnl_30d,
        win_rate=quality.win_rate,
        profit_factor=quality.profit_factor,
    )


def build_candidate(
    coin: str,
    long_side: list[TraderPosition],
    short_side: list[TraderPosition],
) -> SignalCandidate | None:
    """Summarise one coin's dominant side.  None when nobody holds it."""
    direction = dominant_direction(len(long_side), len(short_side))
    members, opposing = (
        (long_side, short_side) if direction is Direction.LONG else (short_side, long_side)
    )
    if not members:
        return None

    return SignalCandidate(
        coin=coin,
        direction=direction,
        elite_traders=[m for m in members if m.tier is QualityTier.ELITE],
        good_traders=[m for m in members if m.tier is QualityTier.GOOD],
        opposing_count=len(opposing),
        directional_agreement=directional_agreement(len(long_side), len(short_side)),
        combined_pnl_7d=float(sum(m.pnl_7d for m in members)),
        combined_pnl_30d=float(sum(m.pnl_30d for m in members)),
        avg_win_rate=float(np.mean([m.win_rate for m in members])),
        avg_profit_factor=float(np.mean([m.profit_factor for m in members])),
        avg_leverage=float(np.mean([m.leverage for m in members])),
        total_position_value=float(sum(m.notional_value for m in members)),
    )


def aggregate(
    positions: list[Position],
    qualities: dict[str, WalletQuality],
) -> list[SignalCandidate]:
    """Group positions of tracked elite/good wallets into per-coin candidates.

    Positions of unknown, untracked or unqualified wallets are ignored.
    Output is sorted by coin.
    """
    by_coin: dict[str, dict[Direction, list[TraderPosition]]] = defaultdict(
        lambda: {Direction.LONG: [], Direction.SHORT: []}
    )

    for pos in positions:
        if pos.size == 0:
            continue
        quality = qualities.get(pos.wallet.lower())
        if quality is None or not quality.is_tracked:
            continue
        if quality.tier not in _QUALIFYING_TIERS:
            continue
        by_coin[pos.coin][pos.direction].append(_trader_position(pos, quality))

    candidates: list[SignalCandidate] = []
    for coin in sorted(by_coin):
        sides = by_coin[coin]
        candidate = build_candidate(coin, sides[Direction.LONG], sides[Direction.SHORT])
        if candidate is not None:
            candidates.append(candidate)
    return candidates
