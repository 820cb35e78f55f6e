"""SQLite data store for the convergence signal engine.

Provides a single-file SQLite database with six tables covering wallet
quality, tier-change history, position snapshots, signals, scheduler state
and a historical candle cache.  All methods are synchronous, use
parameterized queries and write through idempotent upserts keyed on each
table's natural key.

Usage::

    with DataStore("data/convergence.db") as ds:
        ds.ensure_wallets(["0xabc"])
        tracked = ds.list_tracked()
"""

from __future__ import annotations

import json
import os
import sqlite3
from datetime import datetime
from typing import Iterable, Optional

from convergence.models import (
    Candle,
    Direction,
    Outcome,
    Position,
    QualityTier,
    Signal,
    SignalStrength,
    SignalTracking,
    WalletQuality,
    parse_iso,
    to_iso,
    utc_now,
)


class DataStore:
    """Synchronous SQLite-backed store shared by every engine job."""

    def __init__(self, db_path: str = "data/convergence.db") -> None:
        parent = os.path.dirname(db_path)
        if parent and db_path != ":memory:":
            os.makedirs(parent, exist_ok=True)

        self.db_path = db_path
        # Shared with the API threadpool; sqlite serializes access internally
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    def __enter__(self) -> "DataStore":
        return self

    def __exit__(self, *args) -> None:  # noqa: ANN002
        self.close()

    def ping(self) -> bool:
        self._conn.execute("SELECT 1").fetchone()
        return True

    # ------------------------------------------------------------------
    # Schema creation
    # ------------------------------------------------------------------

    def _create_tables(self) -> None:
        cur = self._conn.cursor()

        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS wallet_quality (
                address         TEXT PRIMARY KEY,
                tier            TEXT NOT NULL DEFAULT 'unqualified',
                pnl_7d          REAL DEFAULT 0,
                pnl_30d         REAL DEFAULT 0,
                win_rate        REAL DEFAULT 0,
                profit_factor   REAL DEFAULT 0,
                trade_count     INTEGER DEFAULT 0,
                account_value   REAL DEFAULT 0,
                is_tracked      INTEGER DEFAULT 0,
                analyzed_at     TEXT,
                first_seen      TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS quality_history (
                id              INTEGER PRIMARY KEY AUTOINCREMENT,
                address         TEXT NOT NULL,
                old_tier        TEXT NOT NULL,
                new_tier        TEXT NOT NULL,
                pnl_7d          REAL,
                pnl_30d         REAL,
                win_rate        REAL,
                profit_factor   REAL,
                trade_count     INTEGER,
                reason          TEXT,
                recorded_at     TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS positions (
                wallet              TEXT NOT NULL,
                coin                TEXT NOT NULL,
                size                REAL NOT NULL,
                entry_price         REAL,
                leverage            REAL,
                liquidation_price   REAL,
                notional_value      REAL,
                unrealized_pnl      REAL,
                updated_at          TEXT NOT NULL,
                PRIMARY KEY (wallet, coin)
            );

            CREATE TABLE IF NOT EXISTS signals (
                id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                coin                    TEXT NOT NULL,
                direction               TEXT NOT NULL,
                elite_count             INTEGER,
                good_count              INTEGER,
                total_traders           INTEGER,
                opposing_count          INTEGER,
                directional_agreement   REAL,
                combined_pnl_7d         REAL,
                avg_win_rate            REAL,
                avg_profit_factor       REAL,
                total_position_value    REAL,
                suggested_entry         REAL,
                entry_range_low         REAL,
                entry_range_high        REAL,
                stop_loss               REAL,
                stop_distance_pct       REAL,
                take_profit_1           REAL,
                take_profit_2           REAL,
                take_profit_3           REAL,
                suggested_leverage      REAL,
                risk_score              INTEGER,
                confidence              INTEGER,
                signal_strength         TEXT,
                traders                 TEXT,
                is_active               INTEGER DEFAULT 1,
                created_at              TEXT NOT NULL,
                updated_at              TEXT NOT NULL,
                expires_at              TEXT NOT NULL,
                invalidated_at          TEXT,
                invalidation_reason     TEXT,
                entry_price             REAL,
                current_price           REAL,
                current_pnl_pct         REAL,
                max_pnl_pct             REAL DEFAULT 0,
                min_pnl_pct             REAL DEFAULT 0,
                peak_price              REAL,
                trough_price            REAL,
                hit_stop                INTEGER DEFAULT 0,
                hit_tp1                 INTEGER DEFAULT 0,
                hit_tp2                 INTEGER DEFAULT 0,
                hit_tp3                 INTEGER DEFAULT 0,
                outcome                 TEXT,
                final_pnl_pct           REAL,
                closed_at               TEXT
            );

            CREATE TABLE IF NOT EXISTS system_state (
                key             TEXT PRIMARY KEY,
                value           TEXT,
                updated_at      TEXT
            );

            CREATE TABLE IF NOT EXISTS historical_candles (
                coin            TEXT NOT NULL,
                interval        TEXT NOT NULL,
                timestamp       TEXT NOT NULL,
                open            REAL,
                high            REAL,
                low             REAL,
                close           REAL,
                volume          REAL,
                PRIMARY KEY (coin, interval, timestamp)
            );

            -- One active signal per (coin, direction)
            CREATE UNIQUE INDEX IF NOT EXISTS idx_signals_active_key
                ON signals(coin, direction) WHERE is_active = 1;
            CREATE INDEX IF NOT EXISTS idx_signals_created
                ON signals(created_at);
            CREATE INDEX IF NOT EXISTS idx_signals_expires
                ON signals(expires_at);
            CREATE INDEX IF NOT EXISTS idx_quality_tracked
                ON wallet_quality(is_tracked);
            CREATE INDEX IF NOT EXISTS idx_quality_history_address
                ON quality_history(address);
            CREATE INDEX IF NOT EXISTS idx_positions_updated
                ON positions(updated_at);
            """
        )

        _migrate_signals(self._conn)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Wallet quality
    # ------------------------------------------------------------------

    def ensure_wallets(self, addresses: Iterable[str], now: datetime | None = None) -> int:
        """Insert unseen wallets as unqualified, untracked and unanalyzed.

        Existing rows are left untouched.  Returns the number inserted.
        """
        seen_at = to_iso(now or utc_now())
        inserted = 0
        with self._conn:
            for address in addresses:
                cur = self._conn.execute(
                    """INSERT OR IGNORE INTO wallet_quality (address, first_seen)
                       VALUES (?, ?)""",
                    (address.lower(), seen_at),
                )
                inserted += cur.rowcount
        return inserted

    def upsert_wallet_quality(self, quality: WalletQuality) -> None:
        """Insert or replace the analyzed metrics for a wallet.

        ``first_seen`` is preserved for existing rows.
        """
        analyzed_at = to_iso(quality.analyzed_at) if quality.analyzed_at else None
        with self._conn:
            self._conn.execute(
                """INSERT INTO wallet_quality
                   (address, tier, pnl_7d, pnl_30d, win_rate, profit_factor,
                    trade_count, account_value, is_tracked, analyzed_at, first_seen)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(address) DO UPDATE SET
                       tier = excluded.tier,
                       pnl_7d = excluded.pnl_7d,
                       pnl_30d = excluded.pnl_30d,
                       win_rate = excluded.win_rate,
                       profit_factor = excluded.profit_factor,
                       trade_count = excluded.trade_count,
                       account_value = excluded.account_value,
                       is_tracked = excluded.is_tracked,
                       analyzed_at = excluded.analyzed_at""",
                (
                    quality.address.lower(),
                    quality.tier.value,
                    quality.pnl_7d,
                    quality.pnl_30d,
                    quality.win_rate,
                    quality.profit_factor,
                    quality.trade_count,
                    quality.account_value,
                    int(quality.is_tracked),
                    analyzed_at,
                    to_iso(utc_now()),
                ),
            )

    def get_wallet_quality(self, address: str) -> Optional[WalletQuality]:
        row = self._conn.execute(
            "SELECT * FROM wallet_quality WHERE address = ?", (address.lower(),)
        ).fetchone()
        return _row_to_quality(row) if row else None

    def list_tracked(self) -> list[WalletQuality]:
        """Tracked wallets, elite first then by 7d PnL descending."""
        rows = self._conn.execute(
            """SELECT * FROM wallet_quality
               WHERE is_tracked = 1
               ORDER BY CASE tier WHEN 'elite' THEN 0 WHEN 'good' THEN 1 ELSE 2 END,
                        pnl_7d DESC"""
        ).fetchall()
        return [_row_to_quality(r) for r in rows]

    def list_wallets_for_analysis(self, limit: int | None = None) -> list[str]:
        """Wallet addresses ordered so never-analyzed wallets come first."""
        query = (
            "SELECT address FROM wallet_quality "
            "ORDER BY analyzed_at IS NOT NULL, analyzed_at ASC"
        )
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        return [r["address"] for r in self._conn.execute(query, params).fetchall()]

    def get_qualities(self, addresses: Iterable[str]) -> dict[str, WalletQuality]:
        result: dict[str, WalletQuality] = {}
        for address in set(a.lower() for a in addresses):
            quality = self.get_wallet_quality(address)
            if quality is not None:
                result[address] = quality
        return result

    def quality_stats(self) -> dict[str, int]:
        """Counts per tier plus the number of tracked and unanalyzed wallets."""
        stats = {"elite": 0, "good": 0, "unqualified": 0, "tracked": 0, "unanalyzed": 0}
        for row in self._conn.execute(
            "SELECT tier, COUNT(*) AS n FROM wallet_quality "
            "WHERE analyzed_at IS NOT NULL GROUP BY tier"
        ).fetchall():
            stats[row["tier"]] = row["n"]
        stats["tracked"] = self._conn.execute(
            "SELECT COUNT(*) FROM wallet_quality WHERE is_tracked = 1"
        ).fetchone()[0]
        stats["unanalyzed"] = self._conn.execute(
            "SELECT COUNT(*) FROM wallet_quality WHERE analyzed_at IS NULL"
        ).fetchone()[0]
        return stats

    def record_tier_change(
        self,
        old_tier: QualityTier,
        quality: WalletQuality,
        reason: str,
    ) -> None:
        with self._conn:
            self._conn.execute(
                """INSERT INTO quality_history
                   (address, old_tier, new_tier, pnl_7d, pnl_30d, win_rate,
                    profit_factor, trade_count, reason, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    quality.address.lower(),
                    old_tier.value,
                    quality.tier.value,
                    quality.pnl_7d,
                    quality.pnl_30d,
                    quality.win_rate,
                    quality.profit_factor,
                    quality.trade_count,
                    reason,
                    to_iso(quality.analyzed_at or utc_now()),
                ),
            )

    def get_quality_history(self, address: str) -> list[dict]:
        rows = self._conn.execute(
            "SELECT * FROM quality_history WHERE address = ? ORDER BY id",
            (address.lower(),),
        ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def replace_wallet_positions(
        self,
        address: str,
        positions: list[Position],
        now: datetime | None = None,
    ) -> None:
        """Upsert a wallet's open positions and drop rows for closed coins.

        Zero-size positions are treated as closed.
        """
        wallet = address.lower()
        updated_at = to_iso(now or utc_now())
        open_positions = [p for p in positions if p.size != 0]
        with self._conn:
            for p in open_positions:
                self._conn.execute(
                    """INSERT INTO positions
                       (wallet, coin, size, entry_price, leverage, liquidation_price,
                        notional_value, unrealized_pnl, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(wallet, coin) DO UPDATE SET
                           size = excluded.size,
                           entry_price = excluded.entry_price,
                           leverage = excluded.leverage,
                           liquidation_price = excluded.liquidation_price,
                           notional_value = excluded.notional_value,
                           unrealized_pnl = excluded.unrealized_pnl,
                           updated_at = excluded.updated_at""",
                    (
                        wallet,
                        p.coin,
                        p.size,
                        p.entry_price,
                        p.leverage,
                        p.liquidation_price,
                        p.notional_value,
                        p.unrealized_pnl,
                        updated_at,
                    ),
                )
            open_coins = [p.coin for p in open_positions]
            if open_coins:
                placeholders = ",".join("?" for _ in open_coins)
                self._conn.execute(
                    f"DELETE FROM positions WHERE wallet = ? AND coin NOT IN ({placeholders})",
                    (wallet, *open_coins),
                )
            else:
                self._conn.execute("DELETE FROM positions WHERE wallet = ?", (wallet,))

    def get_positions(self, wallet: str | None = None) -> list[Position]:
        if wallet is None:
            rows = self._conn.execute("SELECT * FROM positions ORDER BY wallet, coin").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM positions WHERE wallet = ? ORDER BY coin", (wallet.lower(),)
            ).fetchall()
        return [_row_to_position(r) for r in rows]

    def get_tracked_wallet_positions(self) -> list[Position]:
        """Open positions of tracked wallets only."""
        rows = self._conn.execute(
            """SELECT p.* FROM positions p
               JOIN wallet_quality q ON q.address = p.wallet
               WHERE q.is_tracked = 1
               ORDER BY p.coin, p.wallet"""
        ).fetchall()
        return [_row_to_position(r) for r in rows]

    def purge_stale_positions(self, cutoff: datetime) -> int:
        """Delete position rows not refreshed since *cutoff*."""
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM positions WHERE updated_at < ?", (to_iso(cutoff),)
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def get_active_signal_keys(self) -> set[tuple[str, str]]:
        rows = self._conn.execute(
            "SELECT coin, direction FROM signals WHERE is_active = 1"
        ).fetchall()
        return {(r["coin"], r["direction"]) for r in rows}

    def get_active_signal(self, coin: str, direction: Direction) -> Optional[Signal]:
        row = self._conn.execute(
            "SELECT * FROM signals WHERE coin = ? AND direction = ? AND is_active = 1",
            (coin, direction.value),
        ).fetchone()
        return _row_to_signal(row) if row else None

    def upsert_signal(self, signal: Signal, now: datetime, expires_at: datetime) -> bool:
        """Write *signal* keyed by (coin, direction) among active rows.

        An existing active row is overwritten in place (``created_at`` kept,
        ``expires_at`` refreshed).  Otherwise a new active row is inserted.
        Returns True when a row was inserted.
        """
        values = (
            signal.elite_count,
            signal.good_count,
            signal.total_traders,
            signal.opposing_count,
            signal.directional_agreement,
            signal.combined_pnl_7d,
            signal.avg_win_rate,
            signal.avg_profit_factor,
            signal.total_position_value,
            signal.suggested_entry,
            signal.entry_range_low,
            signal.entry_range_high,
            signal.stop_loss,
            signal.stop_distance_pct,
            signal.take_profit_1,
            signal.take_profit_2,
            signal.take_profit_3,
            signal.suggested_leverage,
            signal.risk_score,
            signal.confidence,
            signal.signal_strength.value,
            json.dumps(signal.traders),
        )
        now_iso = to_iso(now)
        with self._conn:
            existing = self._conn.execute(
                "SELECT id FROM signals WHERE coin = ? AND direction = ? AND is_active = 1",
                (signal.coin, signal.direction.value),
            ).fetchone()
            if existing is not None:
                self._conn.execute(
                    """UPDATE signals SET
                           elite_count = ?, good_count = ?, total_traders = ?,
                           opposing_count = ?, directional_agreement = ?,
                           combined_pnl_7d = ?, avg_win_rate = ?, avg_profit_factor = ?,
                           total_position_value = ?, suggested_entry = ?,
                           entry_range_low = ?, entry_range_high = ?, stop_loss = ?,
                           stop_distance_pct = ?, take_profit_1 = ?, take_profit_2 = ?,
                           take_profit_3 = ?, suggested_leverage = ?, risk_score = ?,
                           confidence = ?, signal_strength = ?, traders = ?,
                           updated_at = ?, expires_at = ?
                       WHERE id = ?""",
                    (*values, now_iso, to_iso(expires_at), existing["id"]),
                )
                return False

            self._conn.execute(
                """INSERT INTO signals
                   (elite_count, good_count, total_traders, opposing_count,
                    directional_agreement, combined_pnl_7d, avg_win_rate,
                    avg_profit_factor, total_position_value, suggested_entry,
                    entry_range_low, entry_range_high, stop_loss, stop_distance_pct,
                    take_profit_1, take_profit_2, take_profit_3, suggested_leverage,
                    risk_score, confidence, signal_strength, traders,
                    coin, direction, entry_price, is_active, created_at, updated_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                           ?, ?, ?, ?, ?, 1, ?, ?, ?)""",
                (
                    *values,
                    signal.coin,
                    signal.direction.value,
                    signal.suggested_entry,
                    now_iso,
                    now_iso,
                    to_iso(expires_at),
                ),
            )
            return True

    def deactivate_signal(
        self, coin: str, direction: str, reason: str, now: datetime
    ) -> bool:
        """Close the active row for (coin, direction) at its last tracked PnL."""
        now_iso = to_iso(now)
        with self._conn:
            cur = self._conn.execute(
                """UPDATE signals
                   SET is_active = 0, invalidated_at = ?, invalidation_reason = ?,
                       closed_at = ?, outcome = COALESCE(outcome, 'closed'),
                       final_pnl_pct = current_pnl_pct
                   WHERE coin = ? AND direction = ? AND is_active = 1""",
                (now_iso, reason, now_iso, coin, direction),
            )
        return cur.rowcount > 0

    def expire_signals(self, now: datetime) -> int:
        """Deactivate every active signal whose ``expires_at`` has passed."""
        now_iso = to_iso(now)
        with self._conn:
            cur = self._conn.execute(
                """UPDATE signals
                   SET is_active = 0, invalidated_at = ?, invalidation_reason = 'expired',
                       closed_at = ?, outcome = COALESCE(outcome, 'expired'),
                       final_pnl_pct = current_pnl_pct
                   WHERE is_active = 1 AND expires_at < ?""",
                (now_iso, now_iso, now_iso),
            )
        return cur.rowcount

    def record_signal_tracking(self, tracking: SignalTracking, now: datetime) -> bool:
        """Write one tracking observation to an active signal.

        When the observation carries an outcome the row is closed in the same
        transaction with ``final_pnl_pct`` set to the observed PnL.
        """
        now_iso = to_iso(now)
        with self._conn:
            cur = self._conn.execute(
                """UPDATE signals SET
                       current_price = ?, current_pnl_pct = ?, max_pnl_pct = ?,
                       min_pnl_pct = ?, peak_price = ?, trough_price = ?,
                       hit_stop = ?, hit_tp1 = ?, hit_tp2 = ?, hit_tp3 = ?
                   WHERE id = ? AND is_active = 1""",
                (
                    tracking.current_price,
                    tracking.current_pnl_pct,
                    tracking.max_pnl_pct,
                    tracking.min_pnl_pct,
                    tracking.peak_price,
                    tracking.trough_price,
                    int(tracking.hit_stop),
                    int(tracking.hit_tp1),
                    int(tracking.hit_tp2),
                    int(tracking.hit_tp3),
                    tracking.signal_id,
                ),
            )
            if cur.rowcount and tracking.outcome is not None:
                self._conn.execute(
                    """UPDATE signals SET
                           is_active = 0, invalidated_at = ?, invalidation_reason = ?,
                           outcome = ?, final_pnl_pct = ?, closed_at = ?
                       WHERE id = ?""",
                    (
                        now_iso,
                        tracking.close_reason,
                        tracking.outcome.value,
                        tracking.current_pnl_pct,
                        now_iso,
                        tracking.signal_id,
                    ),
                )
        return cur.rowcount > 0

    def get_active_signals(self, now: datetime, min_confidence: int = 0) -> list[Signal]:
        rows = self._conn.execute(
            """SELECT * FROM signals
               WHERE is_active = 1 AND expires_at > ? AND confidence >= ?
               ORDER BY confidence DESC, created_at DESC""",
            (to_iso(now), min_confidence),
        ).fetchall()
        return [_row_to_signal(r) for r in rows]

    def get_recent_signals(self, since: datetime) -> list[Signal]:
        rows = self._conn.execute(
            "SELECT * FROM signals WHERE created_at >= ? ORDER BY created_at DESC",
            (to_iso(since),),
        ).fetchall()
        return [_row_to_signal(r) for r in rows]

    def get_signals_since(self, since: datetime, limit: int) -> list[Signal]:
        """Signals created since *since* with a usable entry, oldest first."""
        rows = self._conn.execute(
            """SELECT * FROM signals
               WHERE created_at >= ? AND suggested_entry > 0
               ORDER BY created_at ASC, id ASC
               LIMIT ?""",
            (to_iso(since), limit),
        ).fetchall()
        return [_row_to_signal(r) for r in rows]

    def delete_inactive_signals(self, before: datetime) -> int:
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM signals WHERE is_active = 0 AND created_at < ?",
                (to_iso(before),),
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # System state
    # ------------------------------------------------------------------

    def get_system_state(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM system_state WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_system_state(self, key: str, value: str) -> None:
        now = to_iso(utc_now())
        with self._conn:
            self._conn.execute(
                """INSERT INTO system_state (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = ?, updated_at = ?""",
                (key, value, now, value, now),
            )

    # ------------------------------------------------------------------
    # Candle cache
    # ------------------------------------------------------------------

    def get_cached_candles(
        self, coin: str, interval: str, start: datetime, end: datetime
    ) -> list[Candle]:
        rows = self._conn.execute(
            """SELECT * FROM historical_candles
               WHERE coin = ? AND interval = ? AND timestamp >= ? AND timestamp <= ?
               ORDER BY timestamp ASC""",
            (coin, interval, to_iso(start), to_iso(end)),
        ).fetchall()
        return [
            Candle(
                timestamp=parse_iso(r["timestamp"]),
                open=r["open"],
                high=r["high"],
                low=r["low"],
                close=r["close"],
                volume=r["volume"] or 0.0,
            )
            for r in rows
        ]

    def cache_candles(self, coin: str, interval: str, candles: list[Candle]) -> None:
        with self._conn:
            self._conn.executemany(
                """INSERT INTO historical_candles
                   (coin, interval, timestamp, open, high, low, close, volume)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(coin, interval, timestamp) DO UPDATE SET
                       open = excluded.open, high = excluded.high,
                       low = excluded.low, close = excluded.close,
                       volume = excluded.volume""",
                [
                    (coin, interval, to_iso(c.timestamp), c.open, c.high, c.low, c.close, c.volume)
                    for c in candles
                ],
            )


# ---------------------------------------------------------------------------
# Row converters
# ---------------------------------------------------------------------------


def _opt_dt(value: str | None) -> datetime | None:
    return parse_iso(value) if value else None


def _row_to_quality(row: sqlite3.Row) -> WalletQuality:
    return WalletQuality(
        address=row["address"],
        tier=QualityTier(row["tier"]),
        pnl_7d=row["pnl_7d"] or 0.0,
        pnl_30d=row["pnl_30d"] or 0.0,
        win_rate=row["win_rate"] or 0.0,
        profit_factor=row["profit_factor"] or 0.0,
        trade_count=row["trade_count"] or 0,
        account_value=row["account_value"] or 0.0,
        is_tracked=bool(row["is_tracked"]),
        analyzed_at=_opt_dt(row["analyzed_at"]),
    )


def _row_to_position(row: sqlite3.Row) -> Position:
    return Position(
        wallet=row["wallet"],
        coin=row["coin"],
        size=row["size"],
        entry_price=row["entry_price"] or 0.0,
        leverage=row["leverage"] or 1.0,
        liquidation_price=row["liquidation_price"],
        notional_value=row["notional_value"] or 0.0,
        unrealized_pnl=row["unrealized_pnl"] or 0.0,
        updated_at=_opt_dt(row["updated_at"]),
    )


def _row_to_signal(row: sqlite3.Row) -> Signal:
    return Signal(
        id=row["id"],
        coin=row["coin"],
        direction=Direction(row["direction"]),
        elite_count=row["elite_count"],
        good_count=row["good_count"],
        total_traders=row["total_traders"],
        opposing_count=row["opposing_count"] or 0,
        directional_agreement=row["directional_agreement"] or 0.0,
        combined_pnl_7d=row["combined_pnl_7d"],
        avg_win_rate=row["avg_win_rate"],
        avg_profit_factor=row["avg_profit_factor"],
        total_position_value=row["total_position_value"],
        suggested_entry=row["suggested_entry"],
        entry_range_low=row["entry_range_low"],
        entry_range_high=row["entry_range_high"],
        stop_loss=row["stop_loss"],
        stop_distance_pct=row["stop_distance_pct"],
        take_profit_1=row["take_profit_1"],
        take_profit_2=row["take_profit_2"],
        take_profit_3=row["take_profit_3"],
        suggested_leverage=row["suggested_leverage"],
        risk_score=row["risk_score"],
        confidence=row["confidence"],
        signal_strength=SignalStrength(row["signal_strength"]),
        traders=json.loads(row["traders"]) if row["traders"] else [],
        is_active=bool(row["is_active"]),
        created_at=_opt_dt(row["created_at"]),
        updated_at=_opt_dt(row["updated_at"]),
        expires_at=_opt_dt(row["expires_at"]),
        invalidated_at=_opt_dt(row["invalidated_at"]),
        invalidation_reason=row["invalidation_reason"],
        entry_price=row["entry_price"],
        current_price=row["current_price"],
        current_pnl_pct=row["current_pnl_pct"],
        max_pnl_pct=row["max_pnl_pct"] or 0.0,
        min_pnl_pct=row["min_pnl_pct"] or 0.0,
        peak_price=row["peak_price"],
        trough_price=row["trough_price"],
        hit_stop=bool(row["hit_stop"]),
        hit_tp1=bool(row["hit_tp1"]),
        hit_tp2=bool(row["hit_tp2"]),
        hit_tp3=bool(row["hit_tp3"]),
        outcome=Outcome(row["outcome"]) if row["outcome"] else None,
        final_pnl_pct=row["final_pnl_pct"],
        closed_at=_opt_dt(row["closed_at"]),
    )


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------

_SIGNAL_TRACKING_COLUMNS = (
    ("entry_price", "REAL"),
    ("current_price", "REAL"),
    ("current_pnl_pct", "REAL"),
    ("max_pnl_pct", "REAL DEFAULT 0"),
    ("min_pnl_pct", "REAL DEFAULT 0"),
    ("peak_price", "REAL"),
    ("trough_price", "REAL"),
    ("hit_stop", "INTEGER DEFAULT 0"),
    ("hit_tp1", "INTEGER DEFAULT 0"),
    ("hit_tp2", "INTEGER DEFAULT 0"),
    ("hit_tp3", "INTEGER DEFAULT 0"),
    ("outcome", "TEXT"),
    ("final_pnl_pct", "REAL"),
    ("closed_at", "TEXT"),
)


def _migrate_signals(conn: sqlite3.Connection) -> None:
    """Add live-tracking columns to signals if missing (pre-tracker DBs)."""
    cols = {r[1] for r in conn.execute("PRAGMA table_info(signals)").fetchall()}
    for name, decl in _SIGNAL_TRACKING_COLUMNS:
        if name not in cols:
            conn.execute(f"ALTER TABLE signals ADD COLUMN {name} {decl}")
