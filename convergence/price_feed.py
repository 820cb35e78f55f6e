"""Hyperliquid mid-price cache refreshed over REST ``allMids``."""

from __future__ import annotations

import asyncio
import logging
import time

import aiohttp

logger = logging.getLogger(__name__)

HL_REST_URL = "https://api.hyperliquid.xyz/info"

# Stale price threshold in seconds
STALE_PRICE_THRESHOLD = 120.0


class HyperliquidPriceFeed:
    """Mid prices keyed by coin, refreshed on demand from ``POST /info``.

    A failed refresh keeps the previous prices; once they are older than
    ``stale_after`` seconds :meth:`get_price` returns ``None`` so callers skip
    the coin instead of synthesizing from a stale quote.
    """

    def __init__(
        self,
        url: str = HL_REST_URL,
        stale_after: float = STALE_PRICE_THRESHOLD,
        timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.stale_after = stale_after
        self.timeout = timeout
        self._prices: dict[str, float] = {}
        self._last_update: float = 0.0
        self._session: aiohttp.ClientSession | None = None

    @property
    def prices(self) -> dict[str, float]:
        """Current mid prices keyed by coin symbol."""
        return dict(self._prices)

    def is_stale(self) -> bool:
        if self._last_update == 0.0:
            return True
        return (time.monotonic() - self._last_update) > self.stale_after

    def get_price(self, coin: str) -> float | None:
        """Current mid price for *coin*, or None if unknown or stale."""
        if self.is_stale():
            return None
        price = self._prices.get(coin)
        if price is None or price <= 0:
            return None
        return price

    def update(self, mids: dict[str, float | str]) -> int:
        """Merge a ``{coin: price}`` mapping into the cache.  Returns count applied."""
        applied = 0
        for coin, raw in mids.items():
            try:
                self._prices[coin] = float(raw)
                applied += 1
            except (TypeError, ValueError):
                logger.debug("Ignoring non-numeric mid for %s: %r", coin, raw)
        if applied:
            self._last_update = time.monotonic()
        return applied

    async def refresh(self) -> bool:
        """Fetch ``allMids``; returns False (and keeps old prices) on failure."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        try:
            async with self._session.post(
                self.url,
                json={"type": "allMids"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    logger.warning("allMids fetch returned %d", resp.status)
                    return False
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError):
            # ValueError covers a 200 with an undecodable body
            logger.warning("allMids fetch failed", exc_info=True)
            return False

        # REST returns {"BTC": "97000.5", ...}; some gateways wrap it in "mids"
        mids = data.get("mids", data) if isinstance(data, dict) else {}
        return self.update(mids) > 0

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
