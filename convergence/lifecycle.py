"""Signal lifecycle: content-based reconcile and time-based expiry.

The two paths are independent.  ``reconcile`` retires signals whose group no
longer qualifies; ``expire_signals`` retires signals whose ``expires_at`` has
passed regardless of whether reconcile ran.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from convergence.datastore import DataStore
from convergence.models import Signal, utc_now

logger = logging.getLogger(__name__)

REASON_NO_LONGER_QUALIFIES = "no_longer_qualifies"
REASON_EXPIRED = "expired"


@dataclass
class ReconcileResult:
    created: list[tuple[str, str]] = field(default_factory=list)
    updated: list[tuple[str, str]] = field(default_factory=list)
    invalidated: list[tuple[str, str]] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


def reconcile(
    store: DataStore,
    new_signals: list[Signal],
    current_active_keys: set[tuple[str, str]],
    now: datetime | None = None,
    expiry_hours: float = 4.0,
    keep_keys: set[tuple[str, str]] | None = None,
) -> ReconcileResult:
    """Apply one synthesis cycle's output to the signal table.

    Active keys missing from *new_signals* are invalidated, except those in
    *keep_keys* (coins that could not be evaluated this cycle).  Every new
    signal is upserted in place by ``(coin, direction)`` with a refreshed
    ``expires_at``.  Running it twice with the same input is a no-op the
    second time apart from timestamps.
    """
    now = now or utc_now()
    expires_at = now + timedelta(hours=expiry_hours)
    keep_keys = keep_keys or set()
    result = ReconcileResult()

    new_keys = {s.key for s in new_signals}
    for key in sorted(current_active_keys - new_keys - keep_keys):
        coin, direction = key
        try:
            if store.deactivate_signal(coin, direction, REASON_NO_LONGER_QUALIFIES, now):
                result.invalidated.append(key)
                logger.info("Signal invalidated: %s %s (%s)", coin, direction, REASON_NO_LONGER_QUALIFIES)
        except Exception:
            logger.exception("Failed to invalidate signal %s %s", coin, direction)
            result.failed.append(key)

    for signal in new_signals:
        try:
            created = store.upsert_signal(signal, now, expires_at)
        except Exception:
            logger.exception("Failed to write signal %s %s", signal.coin, signal.direction.value)
            result.failed.append(signal.key)
            continue
        if created:
            result.created.append(signal.key)
            logger.info(
                "Signal created: %s %s confidence=%d strength=%s",
                signal.coin,
                signal.direction.value,
                signal.confidence,
                signal.signal_strength.value,
            )
        else:
            result.updated.append(signal.key)

    return result


def expire_signals(store: DataStore, now: datetime | None = None) -> int:
    """Deactivate every signal past its ``expires_at``."""
    expired = store.expire_signals(now or utc_now())
    if expired:
        logger.info("Expired %d signals", expired)
    return expired


def enforce_retention(
    store: DataStore,
    retention_days: int,
    position_stale_minutes: int,
    now: datetime | None = None,
) -> dict[str, int]:
    """Delete old inactive signals and positions that stopped refreshing."""
    now = now or utc_now()
    deleted_signals = store.delete_inactive_signals(now - timedelta(days=retention_days))
    purged_positions = store.purge_stale_positions(now - timedelta(minutes=position_stale_minutes))
    logger.info(
        "Retention: deleted %d signals, purged %d stale positions",
        deleted_signals,
        purged_positions,
    )
    return {"signals_deleted": deleted_signals, "positions_purged": purged_positions}
