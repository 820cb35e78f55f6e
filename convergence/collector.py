"""Position collection and wallet discovery jobs."""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from convergence.batching import FlushBuffer, run_in_batches
from convergence.config import EngineConfig
from convergence.datastore import DataStore
from convergence.hl_client import HyperliquidClient, LeaderboardRow
from convergence.models import WalletSnapshot, utc_now

log = structlog.get_logger()


def _flush(store: DataStore, snapshots: list[WalletSnapshot]) -> tuple[int, list[str]]:
    """Write drained snapshots one wallet at a time.

    Returns the number written and the addresses whose write failed.  A failed
    write is logged against its own wallet and the rest of the batch still lands.
    """
    written = 0
    failed: list[str] = []
    for snapshot in snapshots:
        try:
            store.replace_wallet_positions(snapshot.address, snapshot.positions, snapshot.fetched_at)
        except Exception:
            log.warning("position_write_failed", wallet=snapshot.address, exc_info=True)
            failed.append(snapshot.address)
            continue
        written += 1
    return written, failed


async def refresh_positions(
    client: HyperliquidClient,
    store: DataStore,
    config: EngineConfig,
    now: datetime | None = None,
) -> dict[str, int]:
    """Fetch open positions for every tracked wallet and persist them.

    Snapshots are staged in a size/age bounded buffer and written in groups.
    A wallet whose fetch fails keeps its previous rows until retention purges
    them as stale; rows older than ``POSITION_STALE_MINUTES`` are purged here.
    """
    now = now or utc_now()
    addresses = [q.address for q in store.list_tracked()]
    if not addresses:
        log.info("position_refresh_skipped", reason="no tracked wallets")
        return {"wallets": 0, "written": 0, "failed": 0, "purged": 0}

    buffer: FlushBuffer[WalletSnapshot] = FlushBuffer(
        max_size=config.BUFFER_MAX_SIZE,
        max_age=config.BUFFER_MAX_AGE_SECONDS,
    )
    written = 0
    write_failed: list[str] = []

    def _write(snapshots: list[WalletSnapshot]) -> None:
        nonlocal written
        count, failed = _flush(store, snapshots)
        written += count
        write_failed.extend(failed)

    async def _fetch(address: str) -> int:
        snapshot = await client.get_wallet_snapshot(address, now)
        _write(buffer.add(snapshot))
        return len(snapshot.positions)

    outcome = await run_in_batches(
        addresses,
        _fetch,
        batch_size=config.BATCH_SIZE,
        delay=config.BATCH_DELAY_SECONDS,
        timeout=config.ITEM_TIMEOUT_SECONDS,
        label="wallet",
    )
    _write(buffer.drain())
    failed = len(outcome.failed) + len(write_failed)
    purged = store.purge_stale_positions(now - timedelta(minutes=config.POSITION_STALE_MINUTES))

    log.info(
        "position_refresh_complete",
        wallets=len(addresses),
        written=written,
        positions=sum(outcome.results),
        failed=failed,
        write_failed=write_failed,
        purged=purged,
    )
    return {
        "wallets": len(addresses),
        "written": written,
        "failed": failed,
        "purged": purged,
    }


def select_candidates(rows: list[LeaderboardRow], config: EngineConfig) -> list[str]:
    """Leaderboard addresses worth analyzing, best monthly PnL first."""
    eligible = [
        r for r in rows
        if r.pnl_month >= config.DISCOVERY_MIN_MONTH_PNL
        and r.account_value >= config.DISCOVERY_MIN_ACCOUNT_VALUE
    ]
    eligible.sort(key=lambda r: r.pnl_month, reverse=True)
    return [r.address for r in eligible[: config.DISCOVERY_MAX_WALLETS]]


async def discover_wallets(
    client: HyperliquidClient,
    store: DataStore,
    config: EngineConfig,
) -> int:
    """Register new leaderboard wallets for quality analysis.  Returns count added."""
    rows = await client.fetch_leaderboard()
    candidates = select_candidates(rows, config)
    inserted = store.ensure_wallets(candidates)
    log.info(
        "wallet_discovery_complete",
        leaderboard_rows=len(rows),
        candidates=len(candidates),
        inserted=inserted,
    )
    return inserted
