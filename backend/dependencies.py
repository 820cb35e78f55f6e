"""FastAPI dependency injection helpers."""
from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException, Request

from backend.cache import CacheLayer
from convergence.config import EngineConfig
from convergence.datastore import DataStore


def get_datastore(request: Request) -> DataStore:
    """Return the shared DataStore from app state."""
    return request.app.state.datastore


def get_cache(request: Request) -> CacheLayer:
    """Return the shared CacheLayer from app state."""
    return request.app.state.cache


def get_config(request: Request) -> EngineConfig:
    """Return the EngineConfig loaded at startup."""
    return request.app.state.config


def require_api_key(
    x_api_key: str | None = Header(default=None),
    config: EngineConfig = Depends(get_config),
) -> None:
    """Reject requests without a matching ``X-API-Key`` when a key is required."""
    if not config.REQUIRE_API_KEY:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, config.API_KEY):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
