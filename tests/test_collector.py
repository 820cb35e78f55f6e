"""Tests for position collection and leaderboard discovery."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from convergence.collector import discover_wallets, refresh_positions, select_candidates
from convergence.hl_client import LeaderboardRow
from convergence.models import QualityTier, WalletSnapshot

A = "0x" + "a1" * 20
B = "0x" + "b2" * 20
C = "0x" + "c3" * 20


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _row(address: str, pnl: float, account: float = 100_000.0) -> LeaderboardRow:
    return LeaderboardRow(
        address=address,
        account_value=account,
        pnl_month=pnl,
        roi_month=0.1,
        volume_month=1e6,
    )


@pytest.fixture()
def fast_config(config):
    return config.model_copy(update={"BATCH_DELAY_SECONDS": 0.0, "BUFFER_MAX_SIZE": 2})


# ---------------------------------------------------------------------------
# Position refresh
# ---------------------------------------------------------------------------


class TestRefreshPositions:
    async def test_writes_snapshots_and_isolates_failures(
        self, store, now, fast_config, make_quality, make_position
    ) -> None:
        for address in (A, B, C):
            store.upsert_wallet_quality(make_quality(address, QualityTier.GOOD))
        # C fails this round; its old row is already stale
        store.replace_wallet_positions(C, [make_position(C, "SOL")], now - timedelta(hours=1))

        async def _snapshot(address, fetched_at):
            if address == C:
                raise RuntimeError("timeout upstream")
            coins = {A: ["BTC", "ETH"], B: ["BTC"]}[address]
            return WalletSnapshot(
                address=address,
                positions=[make_position(address, coin) for coin in coins],
                account_value=100_000.0,
                fetched_at=fetched_at,
            )

        client = AsyncMock()
        client.get_wallet_snapshot.side_effect = _snapshot

        result = await refresh_positions(client, store, fast_config, now=now)

        assert result == {"wallets": 3, "written": 2, "failed": 1, "purged": 1}
        assert [(p.wallet, p.coin) for p in store.get_positions()] == [
            (A, "BTC"),
            (A, "ETH"),
            (B, "BTC"),
        ]

    async def test_closed_coins_are_removed(self, store, now, fast_config, make_quality, make_position) -> None:
        store.upsert_wallet_quality(make_quality(A))
        store.replace_wallet_positions(A, [make_position(A, "BTC"), make_position(A, "ETH")], now)
        client = AsyncMock()
        client.get_wallet_snapshot.return_value = WalletSnapshot(
            address=A, positions=[make_position(A, "ETH")], account_value=1.0, fetched_at=now
        )

        await refresh_positions(client, store, fast_config, now=now)

        assert [p.coin for p in store.get_positions(A)] == ["ETH"]

    async def test_failed_write_spares_rest_of_batch(
        self, store, now, fast_config, make_quality, make_position
    ) -> None:
        for address in (A, B, C):
            store.upsert_wallet_quality(make_quality(address, QualityTier.GOOD))
        client = AsyncMock()
        client.get_wallet_snapshot.side_effect = lambda address, fetched_at: WalletSnapshot(
            address=address,
            positions=[make_position(address, "BTC")],
            account_value=1.0,
            fetched_at=fetched_at,
        )
        real_replace = store.replace_wallet_positions

        def _replace(address, positions, updated_at=None):
            if address == B:
                raise RuntimeError("database is locked")
            return real_replace(address, positions, updated_at)

        with patch.object(store, "replace_wallet_positions", side_effect=_replace):
            result = await refresh_positions(client, store, fast_config, now=now)

        assert result["written"] == 2
        assert result["failed"] == 1
        assert sorted(p.wallet for p in store.get_positions()) == [A, C]

    async def test_no_tracked_wallets(self, store, fast_config) -> None:
        client = AsyncMock()
        result = await refresh_positions(client, store, fast_config)
        assert result == {"wallets": 0, "written": 0, "failed": 0, "purged": 0}
        client.get_wallet_snapshot.assert_not_awaited()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    def test_select_candidates_filters_and_sorts(self, config) -> None:
        rows = [
            _row(A, 20_000),
            _row(B, 500_000),
            _row(C, 5_000),
            _row("0x" + "d4" * 20, 900_000, account=1_000.0),
        ]
        assert select_candidates(rows, config) == [B, A]

    def test_select_candidates_cap(self, config) -> None:
        capped = config.model_copy(update={"DISCOVERY_MAX_WALLETS": 1})
        assert select_candidates([_row(A, 20_000), _row(B, 30_000)], capped) == [B]

    async def test_discover_inserts_only_new_wallets(self, store, config, make_quality) -> None:
        store.upsert_wallet_quality(make_quality(A))
        client = AsyncMock()
        client.fetch_leaderboard.return_value = [_row(A, 50_000), _row(B, 40_000)]

        inserted = await discover_wallets(client, store, config)

        assert inserted == 1
        assert store.get_wallet_quality(A).tier is QualityTier.ELITE
        fresh = store.get_wallet_quality(B)
        assert fresh.tier is QualityTier.UNQUALIFIED
        assert fresh.analyzed_at is None
        assert store.list_wallets_for_analysis() == [B, A]
