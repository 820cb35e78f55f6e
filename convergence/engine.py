"""ConvergenceEngine: the single entry point that wires the pipeline together.

    positions + qualities -> aggregate -> synthesize -> reconcile

plus the jobs that feed it (position refresh, quality re-evaluation, wallet
discovery) and the ones that maintain it (live tracking, expiry sweep,
retention, backtest).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from convergence import backtest, collector, lifecycle, quality, tracker
from convergence.aggregator import aggregate
from convergence.config import EngineConfig
from convergence.datastore import DataStore
from convergence.hl_client import HyperliquidClient
from convergence.models import Direction, Signal, utc_now
from convergence.price_feed import HyperliquidPriceFeed
from convergence.synthesizer import passes_eligibility, synthesize

log = structlog.get_logger()


@dataclass
class CycleResult:
    signals_created: int = 0
    signals_invalidated: int = 0
    signals_updated: int = 0
    coins_skipped: list[str] = field(default_factory=list)
    candidates: int = 0


class ConvergenceEngine:
    """Owns the store, the exchange client and the price feed for one process."""

    def __init__(
        self,
        store: DataStore,
        client: HyperliquidClient,
        price_feed: HyperliquidPriceFeed,
        config: EngineConfig | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.price_feed = price_feed
        self.config = config or EngineConfig()

    # -- Synthesis ---------------------------------------------------------

    async def run_synthesis_cycle(self, now: datetime | None = None) -> CycleResult:
        """Aggregate tracked positions, synthesize signals and reconcile them.

        A coin with no usable price is skipped for this cycle; any active
        signal it has is left untouched rather than invalidated.
        """
        now = now or utc_now()
        if not await self.price_feed.refresh():
            log.warning("price_refresh_failed", stale=self.price_feed.is_stale())

        positions = self.store.get_tracked_wallet_positions()
        qualities = self.store.get_qualities(p.wallet for p in positions)
        candidates = aggregate(positions, qualities)

        result = CycleResult(candidates=len(candidates))
        new_signals: list[Signal] = []
        keep_keys: set[tuple[str, str]] = set()

        for candidate in candidates:
            price = self.price_feed.get_price(candidate.coin)
            if price is None:
                result.coins_skipped.append(candidate.coin)
                keep_keys.update((candidate.coin, d.value) for d in Direction)
                continue
            signal = synthesize(candidate, price, self.config)
            if signal is None:
                _, reason = passes_eligibility(candidate, self.config)
                log.debug("candidate_rejected", coin=candidate.coin, reason=reason)
                continue
            new_signals.append(signal)

        outcome = lifecycle.reconcile(
            self.store,
            new_signals,
            self.store.get_active_signal_keys(),
            now=now,
            expiry_hours=self.config.EXPIRY_HOURS,
            keep_keys=keep_keys,
        )
        result.signals_created = len(outcome.created)
        result.signals_updated = len(outcome.updated)
        result.signals_invalidated = len(outcome.invalidated)

        log.info(
            "synthesis_cycle_complete",
            positions=len(positions),
            candidates=result.candidates,
            created=result.signals_created,
            updated=result.signals_updated,
            invalidated=result.signals_invalidated,
            skipped=result.coins_skipped,
            failed=len(outcome.failed),
        )
        return result

    def sweep_expired(self, now: datetime | None = None) -> int:
        return lifecycle.expire_signals(self.store, now)

    # -- Live tracking -----------------------------------------------------

    async def track_signals(self, now: datetime | None = None) -> tracker.TrackerResult:
        """Mark active signals to the latest mids; closes on stop or tp3."""
        if not await self.price_feed.refresh():
            log.warning("price_refresh_failed", stale=self.price_feed.is_stale())
        return tracker.update_signal_prices(self.store, self.price_feed.get_price, now)

    def get_performance(
        self,
        days: int | None = None,
        now: datetime | None = None,
    ) -> tuple[tracker.PerformanceSummary, list[tracker.AssetPerformance]]:
        """Overall and per-coin results for signals created in the last *days*."""
        since = (now or utc_now()) - timedelta(days=days or self.config.PERFORMANCE_LOOKBACK_DAYS)
        signals = self.store.get_recent_signals(since)
        return tracker.performance_summary(signals), tracker.asset_performance(signals)

    # -- Reads -------------------------------------------------------------

    def get_active_signals(self, min_confidence: int = 0, now: datetime | None = None) -> list[Signal]:
        return self.store.get_active_signals(now or utc_now(), min_confidence)

    def get_recent_signals(self, hours: int = 24, now: datetime | None = None) -> list[Signal]:
        return self.store.get_recent_signals((now or utc_now()) - timedelta(hours=hours))

    # -- Feeding jobs ------------------------------------------------------

    async def refresh_positions(self) -> dict[str, int]:
        return await collector.refresh_positions(self.client, self.store, self.config)

    async def reanalyze_wallets(self, limit: int | None = None) -> dict[str, int]:
        """Re-score known wallets, never-analyzed ones first."""
        addresses = self.store.list_wallets_for_analysis(limit)
        return await quality.reanalyze_wallets(self.client, self.store, addresses, self.config)

    async def discover_wallets(self) -> int:
        return await collector.discover_wallets(self.client, self.store, self.config)

    def enforce_retention(self) -> dict[str, int]:
        return lifecycle.enforce_retention(
            self.store,
            self.config.SIGNAL_RETENTION_DAYS,
            self.config.POSITION_STALE_MINUTES,
        )

    # -- Backtest ----------------------------------------------------------

    async def run_backtest(
        self,
        lookback_days: int | None = None,
        max_signals: int | None = None,
    ) -> backtest.BacktestSummary:
        return await backtest.run_backtest(
            self.store,
            self.client,
            lookback_days=lookback_days or self.config.BACKTEST_LOOKBACK_DAYS,
            max_signals=max_signals or self.config.BACKTEST_MAX_SIGNALS,
            max_hours=self.config.BACKTEST_MAX_HOURS,
            batch_size=self.config.BATCH_SIZE,
        )

    async def close(self) -> None:
        await self.price_feed.close()
        await self.client.close()
