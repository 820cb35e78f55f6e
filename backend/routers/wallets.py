"""Wallets router: tier statistics and per-wallet detail."""
from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Depends, HTTPException

from backend.cache import CacheLayer
from backend.dependencies import get_cache, get_datastore
from backend.schemas import (
    TierChangeOut,
    WalletDetailResponse,
    WalletPositionOut,
    WalletStatsResponse,
)
from convergence.datastore import DataStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["wallets"])

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@router.get("/wallets/stats", response_model=WalletStatsResponse)
def get_wallet_stats(
    datastore: DataStore = Depends(get_datastore),
    cache: CacheLayer = Depends(get_cache),
) -> WalletStatsResponse:
    """Counts of analyzed wallets per tier plus tracked and unanalyzed totals."""
    cached = cache.get("wallets:stats")
    if cached is not None:
        return cached

    result = WalletStatsResponse(**datastore.quality_stats())
    cache.set("wallets:stats", result)
    return result


@router.get("/wallets/{address}", response_model=WalletDetailResponse)
def get_wallet(
    address: str,
    datastore: DataStore = Depends(get_datastore),
    cache: CacheLayer = Depends(get_cache),
) -> WalletDetailResponse:
    if not _ADDRESS_RE.match(address):
        raise HTTPException(status_code=422, detail="Invalid wallet address")
    address = address.lower()

    cache_key = f"wallet:{address}"
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    quality = datastore.get_wallet_quality(address)
    if quality is None:
        raise HTTPException(status_code=404, detail="Wallet not found")

    positions = [
        WalletPositionOut(
            coin=p.coin,
            direction=p.direction.value,
            size=p.size,
            entry_price=p.entry_price,
            leverage=p.leverage,
            liquidation_price=p.liquidation_price,
            notional_value=p.notional_value,
            unrealized_pnl=p.unrealized_pnl,
            updated_at=p.updated_at,
        )
        for p in datastore.get_positions(address)
    ]
    history = [
        TierChangeOut(
            old_tier=h["old_tier"],
            new_tier=h["new_tier"],
            reason=h["reason"],
            recorded_at=h["recorded_at"],
        )
        for h in datastore.get_quality_history(address)
    ]

    result = WalletDetailResponse(
        address=quality.address,
        tier=quality.tier.value,
        is_tracked=quality.is_tracked,
        pnl_7d=quality.pnl_7d,
        pnl_30d=quality.pnl_30d,
        win_rate=quality.win_rate,
        profit_factor=quality.profit_factor,
        trade_count=quality.trade_count,
        account_value=quality.account_value,
        analyzed_at=quality.analyzed_at,
        positions=positions,
        tier_history=history,
    )
    cache.set(cache_key, result)
    return result
