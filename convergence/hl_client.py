"""Async Hyperliquid ``/info`` client.

Wraps the public info endpoints the engine consumes with sliding-window rate
limiting, tuple backoff for 429/5xx/network errors, and normalization of raw
payloads into the typed records in :mod:`convergence.models`.  Nothing above
this module ever sees a raw exchange response.

Usage::

    async with HyperliquidClient() as client:
        snapshot = await client.get_wallet_snapshot("0xabc")
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx
from pydantic import ValidationError

from convergence.models import (
    Candle,
    ClosedTrade,
    HlCandle,
    HlClearinghouseState,
    HlFill,
    Position,
    WalletSnapshot,
    from_millis,
    to_millis,
    utc_now,
)

logger = logging.getLogger(__name__)

_DEFAULT_INFO_URL = "https://api.hyperliquid.xyz/info"
_DEFAULT_LEADERBOARD_URL = "https://stats-data.hyperliquid.xyz/Mainnet/leaderboard"
_DEFAULT_TIMEOUT = 15.0
_MAX_RETRIES = 3
_BACKOFF_SCHEDULE = (1.0, 2.0, 5.0)  # seconds per retry attempt

# Status codes that should never be retried.
_NO_RETRY_CLIENT_ERRORS = frozenset({400, 401, 403, 404, 422})

# Candles per snapshot request are capped server-side.
_MAX_CANDLES_PER_REQUEST = 5000

_INTERVAL_SECONDS = {"1m": 60, "5m": 300, "15m": 900, "1h": 3600, "4h": 14400, "1d": 86400}


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class HyperliquidAPIError(Exception):
    """Raised when the Hyperliquid API returns an unrecoverable error."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Hyperliquid API error {status_code}: {detail}")


# ---------------------------------------------------------------------------
# Leaderboard rows
# ---------------------------------------------------------------------------


@dataclass
class LeaderboardRow:
    address: str
    account_value: float
    pnl_month: float
    roi_month: float
    volume_month: float


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_positions(
    state: HlClearinghouseState,
    address: str,
    now: datetime,
) -> list[Position]:
    """Convert ``assetPositions`` into open :class:`Position` records.

    Zero-size entries are dropped.  Notional falls back to
    ``|size| * entry`` when ``positionValue`` is missing.
    """
    positions: list[Position] = []
    for asset in state.asset_positions:
        p = asset.position
        if p.szi == 0:
            continue
        entry = p.entry_px or 0.0
        notional = abs(p.position_value) or abs(p.szi) * entry
        liq = p.liquidation_px if p.liquidation_px and p.liquidation_px > 0 else None
        positions.append(
            Position(
                wallet=address.lower(),
                coin=p.coin,
                size=p.szi,
                entry_price=entry,
                leverage=p.leverage.value or 1.0,
                liquidation_price=liq,
                notional_value=notional,
                unrealized_pnl=p.unrealized_pnl,
                updated_at=now,
            )
        )
    return positions


def fills_to_closed_trades(fills: list[HlFill]) -> list[ClosedTrade]:
    """Keep fills that realized PnL, oldest first."""
    trades = [
        ClosedTrade(
            coin=f.coin,
            closed_pnl=f.closed_pnl,
            timestamp=from_millis(f.time),
            notional=abs(f.sz) * f.px,
        )
        for f in fills
        if f.closed_pnl != 0
    ]
    trades.sort(key=lambda t: t.timestamp)
    return trades


def normalize_leaderboard(payload: Any) -> list[LeaderboardRow]:
    """Normalize the public leaderboard, which is either a bare list or an
    object with a ``leaderboardRows`` array.

    ``windowPerformances`` is a list of ``[window, {pnl, roi, vlm}]`` pairs.
    Rows without an address are skipped.
    """
    if isinstance(payload, dict):
        rows = payload.get("leaderboardRows") or payload.get("rows") or []
    elif isinstance(payload, list):
        rows = payload
    else:
        logger.warning("Unknown leaderboard payload type: %s", type(payload).__name__)
        return []

    result: list[LeaderboardRow] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        address = row.get("ethAddress") or row.get("address") or row.get("user")
        if not address:
            continue
        windows: dict[str, dict] = {}
        for item in row.get("windowPerformances") or []:
            if isinstance(item, (list, tuple)) and len(item) == 2 and isinstance(item[1], dict):
                windows[item[0]] = item[1]
        month = windows.get("month", {})
        try:
            result.append(
                LeaderboardRow(
                    address=str(address).lower(),
                    account_value=float(row.get("accountValue") or 0.0),
                    pnl_month=float(month.get("pnl") or 0.0),
                    roi_month=float(month.get("roi") or 0.0),
                    volume_month=float(month.get("vlm") or 0.0),
                )
            )
        except (TypeError, ValueError):
            logger.debug("Skipping malformed leaderboard row for %s", address)
    return result


# ---------------------------------------------------------------------------
# Sliding-window rate limiter
# ---------------------------------------------------------------------------


class _RateLimiter:
    """Async sliding-window limiter: ``per_minute`` requests with a minimum gap.

    An ``asyncio.Lock`` serialises concurrent callers so that the timestamp
    bookkeeping stays consistent.
    """

    def __init__(self, per_minute: int, min_interval: float = 0.0) -> None:
        self._per_minute = per_minute
        self._min_interval = min_interval
        self._lock = asyncio.Lock()
        self._timestamps: deque[float] = deque()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()

            if self._timestamps and self._min_interval > 0:
                gap = now - self._timestamps[-1]
                if gap < self._min_interval:
                    await asyncio.sleep(self._min_interval - gap)
                    now = time.monotonic()

            while self._timestamps and self._timestamps[0] <= now - 60.0:
                self._timestamps.popleft()

            if len(self._timestamps) >= self._per_minute:
                delay = self._timestamps[0] + 60.0 - now
                if delay > 0:
                    logger.debug("Rate limiter: per-minute cap reached, sleeping %.2fs", delay)
                    await asyncio.sleep(delay)
                    now = time.monotonic()
                    while self._timestamps and self._timestamps[0] <= now - 60.0:
                        self._timestamps.popleft()

            self._timestamps.append(now)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HyperliquidClient:
    """Async wrapper around the Hyperliquid info endpoints.

    Parameters
    ----------
    info_url:
        ``POST /info`` endpoint.
    leaderboard_url:
        Public stats leaderboard (``GET``).
    timeout:
        Per-request timeout in seconds.
    per_minute:
        Client-side request budget.
    """

    def __init__(
        self,
        info_url: str = _DEFAULT_INFO_URL,
        leaderboard_url: str = _DEFAULT_LEADERBOARD_URL,
        timeout: float = _DEFAULT_TIMEOUT,
        per_minute: int = 600,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.info_url = info_url
        self.leaderboard_url = leaderboard_url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=transport,
        )
        self._limiter = _RateLimiter(per_minute=per_minute, min_interval=0.05)

    # ------------------------------------------------------------------
    # Context-manager protocol
    # ------------------------------------------------------------------

    async def __aenter__(self) -> HyperliquidClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Core request with retry
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, payload: dict[str, Any] | None = None) -> Any:
        """Send a rate-limited, retried request and return the parsed JSON body.

        Raises
        ------
        HyperliquidAPIError
            On non-retryable client errors, or once retries are exhausted for
            429/5xx/network failures.
        """
        last_exc: Exception | None = None
        label = payload.get("type") if payload else url

        for attempt in range(_MAX_RETRIES):
            backoff = _BACKOFF_SCHEDULE[min(attempt, len(_BACKOFF_SCHEDULE) - 1)]

            try:
                await self._limiter.acquire()
                if method == "GET":
                    response = await self._client.get(url)
                else:
                    response = await self._client.post(url, json=payload)
            except httpx.HTTPError as exc:
                last_exc = exc
                logger.warning(
                    "Hyperliquid network error attempt=%d request=%s error=%s",
                    attempt + 1,
                    label,
                    exc,
                )
                if attempt < _MAX_RETRIES - 1:
                    await asyncio.sleep(backoff)
                continue

            status = response.status_code

            if 200 <= status < 300:
                return response.json()

            if status in _NO_RETRY_CLIENT_ERRORS:
                logger.error(
                    "Hyperliquid client error status=%d request=%s body=%s",
                    status,
                    label,
                    response.text,
                )
                raise HyperliquidAPIError(status_code=status, detail=response.text)

            if status == 429 or status >= 500:
                logger.warning(
                    "Hyperliquid retryable status=%d attempt=%d request=%s",
                    status,
                    attempt + 1,
                    label,
                )
                last_exc = HyperliquidAPIError(status_code=status, detail=response.text)
                if attempt < _MAX_RETRIES - 1:
                    await asyncio.sleep(backoff)
                continue

            raise HyperliquidAPIError(status_code=status, detail=response.text)

        if isinstance(last_exc, HyperliquidAPIError):
            raise last_exc
        raise HyperliquidAPIError(
            status_code=0,
            detail=f"All {_MAX_RETRIES} attempts failed for {label}: {last_exc}",
        )

    async def _info(self, payload: dict[str, Any]) -> Any:
        return await self._request("POST", self.info_url, payload)

    # ------------------------------------------------------------------
    # Account state / positions
    # ------------------------------------------------------------------

    async def get_clearinghouse_state(self, address: str) -> HlClearinghouseState:
        data = await self._info({"type": "clearinghouseState", "user": address})
        try:
            return HlClearinghouseState.model_validate(data or {})
        except ValidationError as exc:
            raise HyperliquidAPIError(status_code=0, detail=f"bad clearinghouseState: {exc}") from exc

    async def get_wallet_snapshot(
        self, address: str, now: datetime | None = None
    ) -> WalletSnapshot:
        """Fetch and normalize one wallet's open positions and account value."""
        fetched_at = now or utc_now()
        state = await self.get_clearinghouse_state(address)
        return WalletSnapshot(
            address=address.lower(),
            positions=normalize_positions(state, address, fetched_at),
            account_value=state.margin_summary.account_value,
            fetched_at=fetched_at,
        )

    # ------------------------------------------------------------------
    # Fills
    # ------------------------------------------------------------------

    async def get_fills(
        self,
        address: str,
        start: datetime,
        end: datetime | None = None,
    ) -> list[HlFill]:
        """Fills since *start*.

        The server may return a fixed-size page regardless of the requested
        range, so callers must still filter by timestamp.
        """
        payload: dict[str, Any] = {
            "type": "userFillsByTime",
            "user": address,
            "startTime": to_millis(start),
        }
        if end is not None:
            payload["endTime"] = to_millis(end)
        data = await self._info(payload)
        fills: list[HlFill] = []
        for raw in data or []:
            try:
                fills.append(HlFill.model_validate(raw))
            except ValidationError:
                logger.debug("Skipping malformed fill for %s: %r", address, raw)
        return fills

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def get_candles(
        self,
        coin: str,
        interval: str,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        """Candles in ``[start, end]``, paging when the range exceeds one request."""
        step = timedelta(seconds=_INTERVAL_SECONDS.get(interval, 3600) * _MAX_CANDLES_PER_REQUEST)
        candles: dict[int, Candle] = {}
        cursor = start
        while cursor < end:
            window_end = min(cursor + step, end)
            data = await self._info({
                "type": "candleSnapshot",
                "req": {
                    "coin": coin,
                    "interval": interval,
                    "startTime": to_millis(cursor),
                    "endTime": to_millis(window_end),
                },
            })
            for raw in data or []:
                try:
                    c = HlCandle.model_validate(raw)
                except ValidationError:
                    continue
                candles[c.t] = Candle(
                    timestamp=from_millis(c.t),
                    open=c.o,
                    high=c.h,
                    low=c.l,
                    close=c.c,
                    volume=c.v,
                )
            cursor = window_end
        return [candles[t] for t in sorted(candles)]

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def fetch_leaderboard(self) -> list[LeaderboardRow]:
        return normalize_leaderboard(await self._request("GET", self.leaderboard_url))
