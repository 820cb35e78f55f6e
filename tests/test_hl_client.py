"""Tests for the Hyperliquid info client: retries, normalization and paging."""

from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from convergence.hl_client import (
    HyperliquidAPIError,
    HyperliquidClient,
    fills_to_closed_trades,
    normalize_leaderboard,
    normalize_positions,
)
from convergence.models import HlClearinghouseState, HlFill, to_millis

ADDR = "0x" + "ab" * 20


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client(handler) -> HyperliquidClient:
    return HyperliquidClient(transport=httpx.MockTransport(handler))


def _sequence(*responses: httpx.Response):
    """Handler that replays *responses* in order and records request bodies."""
    calls: list[dict] = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content) if request.content else {})
        return queue.pop(0)

    return handler, calls


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("convergence.hl_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


_STATE = {
    "marginSummary": {"accountValue": "125000.5"},
    "assetPositions": [
        {
            "type": "oneWay",
            "position": {
                "coin": "BTC",
                "szi": "0.5",
                "entryPx": "60000",
                "positionValue": "30500",
                "unrealizedPnl": "250",
                "liquidationPx": "45000",
                "leverage": {"type": "cross", "value": 10},
            },
        },
        {
            "type": "oneWay",
            "position": {
                "coin": "ETH",
                "szi": "-2",
                "entryPx": "3000",
                "positionValue": "0",
                "liquidationPx": None,
                "leverage": {"type": "isolated", "value": 3},
            },
        },
        {"type": "oneWay", "position": {"coin": "SOL", "szi": "0", "entryPx": "150"}},
    ],
}


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------


class TestRetries:
    async def test_retries_server_errors_then_succeeds(self, no_sleep) -> None:
        handler, calls = _sequence(
            httpx.Response(500, text="oops"),
            httpx.Response(502, text="bad gateway"),
            httpx.Response(200, json=_STATE),
        )
        async with _client(handler) as client:
            state = await client.get_clearinghouse_state(ADDR)

        assert len(calls) == 3
        assert calls[0] == {"type": "clearinghouseState", "user": ADDR}
        assert state.margin_summary.account_value == pytest.approx(125_000.5)
        backoffs = [c.args[0] for c in no_sleep.await_args_list if c.args[0] >= 1.0]
        assert backoffs == [1.0, 2.0]

    async def test_client_error_is_not_retried(self) -> None:
        handler, calls = _sequence(httpx.Response(404, text="not found"))
        async with _client(handler) as client:
            with pytest.raises(HyperliquidAPIError) as exc_info:
                await client.get_clearinghouse_state(ADDR)

        assert exc_info.value.status_code == 404
        assert len(calls) == 1

    async def test_rate_limit_exhausts_retries(self, now) -> None:
        handler, calls = _sequence(*[httpx.Response(429, text="slow down")] * 3)
        async with _client(handler) as client:
            with pytest.raises(HyperliquidAPIError) as exc_info:
                await client.get_fills(ADDR, start=now)

        assert exc_info.value.status_code == 429
        assert len(calls) == 3

    async def test_network_errors_raise_status_zero(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(HyperliquidAPIError) as exc_info:
                await client.fetch_leaderboard()

        assert exc_info.value.status_code == 0
        assert "3 attempts" in exc_info.value.detail


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizePositions:
    def test_drops_zero_size_and_normalizes(self, now) -> None:
        state = HlClearinghouseState.model_validate(_STATE)
        positions = normalize_positions(state, ADDR.upper(), now)

        assert [p.coin for p in positions] == ["BTC", "ETH"]
        btc, eth = positions
        assert btc.wallet == ADDR
        assert btc.size == pytest.approx(0.5)
        assert btc.leverage == pytest.approx(10.0)
        assert btc.liquidation_price == pytest.approx(45_000.0)
        assert btc.notional_value == pytest.approx(30_500.0)
        assert btc.updated_at == now

    def test_notional_fallback_and_missing_liquidation(self, now) -> None:
        state = HlClearinghouseState.model_validate(_STATE)
        eth = normalize_positions(state, ADDR, now)[1]
        assert eth.size < 0
        assert eth.notional_value == pytest.approx(6_000.0)
        assert eth.liquidation_price is None

    async def test_wallet_snapshot(self, now) -> None:
        handler, _ = _sequence(httpx.Response(200, json=_STATE))
        async with _client(handler) as client:
            snapshot = await client.get_wallet_snapshot(ADDR, now=now)
        assert snapshot.address == ADDR
        assert snapshot.account_value == pytest.approx(125_000.5)
        assert len(snapshot.positions) == 2
        assert snapshot.fetched_at == now


class TestFills:
    def test_only_realized_fills_oldest_first(self, now) -> None:
        fills = [
            HlFill(coin="BTC", px=100.0, sz=2.0, side="A", time=to_millis(now), closed_pnl=50.0),
            HlFill(coin="BTC", px=100.0, sz=1.0, side="B", time=to_millis(now), closed_pnl=0.0),
            HlFill(
                coin="ETH", px=10.0, sz=-3.0, side="A",
                time=to_millis(now - timedelta(days=1)), closed_pnl=-20.0,
            ),
        ]
        trades = fills_to_closed_trades(fills)
        assert [t.coin for t in trades] == ["ETH", "BTC"]
        assert trades[0].notional == pytest.approx(30.0)
        assert trades[1].closed_pnl == pytest.approx(50.0)

    async def test_get_fills_skips_malformed(self, now) -> None:
        payload = [
            {"coin": "BTC", "px": "100", "sz": "1", "side": "A", "time": to_millis(now), "closedPnl": "12.5"},
            {"coin": "BTC", "px": "not-a-number"},
        ]
        handler, calls = _sequence(httpx.Response(200, json=payload))
        async with _client(handler) as client:
            fills = await client.get_fills(ADDR, start=now - timedelta(days=30))

        assert len(fills) == 1
        assert fills[0].closed_pnl == pytest.approx(12.5)
        assert calls[0]["type"] == "userFillsByTime"
        assert calls[0]["startTime"] == to_millis(now - timedelta(days=30))
        assert "endTime" not in calls[0]


class TestLeaderboard:
    def test_wrapped_payload(self) -> None:
        payload = {
            "leaderboardRows": [
                {
                    "ethAddress": ADDR.upper(),
                    "accountValue": "1500000",
                    "windowPerformances": [
                        ["day", {"pnl": "10", "roi": "0.01", "vlm": "100"}],
                        ["month", {"pnl": "250000", "roi": "0.2", "vlm": "9000000"}],
                    ],
                },
                {"accountValue": "5"},
                "garbage",
            ]
        }
        [row] = normalize_leaderboard(payload)
        assert row.address == ADDR
        assert row.account_value == pytest.approx(1_500_000.0)
        assert row.pnl_month == pytest.approx(250_000.0)
        assert row.roi_month == pytest.approx(0.2)

    def test_bare_list_without_month_window(self) -> None:
        [row] = normalize_leaderboard([{"address": ADDR, "accountValue": 10}])
        assert row.pnl_month == 0.0

    def test_unknown_payload(self) -> None:
        assert normalize_leaderboard("nope") == []


# ---------------------------------------------------------------------------
# Candles
# ---------------------------------------------------------------------------


class TestCandles:
    async def test_candles_sorted_and_deduplicated(self, now) -> None:
        t0 = to_millis(now)
        t1 = to_millis(now + timedelta(hours=1))
        payload = [
            {"t": t1, "o": "101", "h": "102", "l": "100", "c": "101.5", "v": "10"},
            {"t": t0, "o": "100", "h": "101", "l": "99", "c": "101", "v": "5"},
            {"t": t1, "o": "101", "h": "102", "l": "100", "c": "101.5", "v": "10"},
            {"t": t0},
        ]
        handler, calls = _sequence(httpx.Response(200, json=payload))
        async with _client(handler) as client:
            candles = await client.get_candles("BTC", "1h", now, now + timedelta(hours=2))

        assert [c.timestamp for c in candles] == [now, now + timedelta(hours=1)]
        assert candles[0].low == pytest.approx(99.0)
        assert calls[0]["req"]["coin"] == "BTC"
        assert calls[0]["req"]["interval"] == "1h"

    async def test_long_ranges_are_paged(self, now) -> None:
        handler, calls = _sequence(httpx.Response(200, json=[]), httpx.Response(200, json=[]))
        async with _client(handler) as client:
            await client.get_candles("BTC", "1h", now, now + timedelta(hours=6000))
        assert len(calls) == 2
        assert calls[1]["req"]["startTime"] == calls[0]["req"]["endTime"]
