"""Tests for the allMids price cache."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from convergence.price_feed import HyperliquidPriceFeed


def _session(
    status: int = 200,
    payload=None,
    exc: Exception | None = None,
    body_exc: Exception | None = None,
) -> MagicMock:
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    if exc is not None:
        session.post.side_effect = exc
        return session
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload, side_effect=body_exc)
    session.post.return_value.__aenter__ = AsyncMock(return_value=resp)
    session.post.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


class TestCache:
    def test_empty_feed_is_stale(self) -> None:
        feed = HyperliquidPriceFeed()
        assert feed.is_stale() is True
        assert feed.get_price("BTC") is None

    def test_update_and_lookup(self) -> None:
        feed = HyperliquidPriceFeed()
        applied = feed.update({"BTC": "97000.5", "ETH": 3500, "BAD": "n/a"})
        assert applied == 2
        assert feed.get_price("BTC") == pytest.approx(97_000.5)
        assert feed.get_price("ETH") == pytest.approx(3_500.0)
        assert feed.get_price("BAD") is None
        assert feed.get_price("DOGE") is None

    def test_non_positive_price_is_unusable(self) -> None:
        feed = HyperliquidPriceFeed()
        feed.update({"BTC": 0})
        assert feed.get_price("BTC") is None

    def test_stale_prices_are_withheld(self) -> None:
        feed = HyperliquidPriceFeed(stale_after=60.0)
        with patch("convergence.price_feed.time.monotonic", return_value=1_000.0):
            feed.update({"BTC": 100.0})
        with patch("convergence.price_feed.time.monotonic", return_value=1_030.0):
            assert feed.get_price("BTC") == pytest.approx(100.0)
        with patch("convergence.price_feed.time.monotonic", return_value=1_061.0):
            assert feed.get_price("BTC") is None
            assert feed.prices == {"BTC": 100.0}


class TestRefresh:
    async def test_success(self) -> None:
        feed = HyperliquidPriceFeed()
        feed._session = _session(payload={"BTC": "60000", "SOL": "150.25"})

        assert await feed.refresh() is True
        assert feed.get_price("SOL") == pytest.approx(150.25)
        _, kwargs = feed._session.post.call_args
        assert kwargs["json"] == {"type": "allMids"}

    async def test_wrapped_mids(self) -> None:
        feed = HyperliquidPriceFeed()
        feed._session = _session(payload={"mids": {"BTC": "61000"}})
        assert await feed.refresh() is True
        assert feed.get_price("BTC") == pytest.approx(61_000.0)

    async def test_http_error_keeps_previous_prices(self) -> None:
        feed = HyperliquidPriceFeed()
        feed.update({"BTC": 100.0})
        feed._session = _session(status=503)

        assert await feed.refresh() is False
        assert feed.get_price("BTC") == pytest.approx(100.0)

    async def test_network_error_returns_false(self) -> None:
        feed = HyperliquidPriceFeed()
        feed._session = _session(exc=aiohttp.ClientConnectionError("down"))
        assert await feed.refresh() is False
        assert feed.is_stale() is True

    async def test_close(self) -> None:
        feed = HyperliquidPriceFeed()
        session = _session()
        feed._session = session
        await feed.close()
        session.close.assert_awaited_once()

    async def test_undecodable_body_returns_false(self) -> None:
        feed = HyperliquidPriceFeed()
        feed.update({"BTC": 100.0})
        feed._session = _session(body_exc=json.JSONDecodeError("Expecting property name", "{not json", 1))

        assert await feed.refresh() is False
        assert feed.get_price("BTC") == pytest.approx(100.0)

    async def test_timeout_returns_false(self) -> None:
        feed = HyperliquidPriceFeed()
        feed._session = _session(exc=asyncio.TimeoutError())
        assert await feed.refresh() is False
