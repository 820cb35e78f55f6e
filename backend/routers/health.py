"""Health check router."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from backend.dependencies import get_datastore
from backend.schemas import HealthResponse
from convergence.datastore import DataStore
from convergence.models import utc_now
from convergence.scheduler import STATE_KEY_PREFIX

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(
    datastore: DataStore = Depends(get_datastore),
) -> HealthResponse:
    """Return store connectivity, the active signal count and the last synthesis run."""
    try:
        db_ok = datastore.ping()
    except Exception:
        logger.warning("Health check: database connection failed", exc_info=True)
        db_ok = False

    if not db_ok:
        return HealthResponse(status="degraded", db_connected=False)

    return HealthResponse(
        status="ok",
        db_connected=True,
        active_signals=len(datastore.get_active_signals(utc_now())),
        last_synthesis=datastore.get_system_state(STATE_KEY_PREFIX + "synthesis"),
    )
