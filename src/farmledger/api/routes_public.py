# src/farmledger/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from farmledger.api.routes_public_parts.events import router as events_router
from farmledger.api.routes_public_parts.health import router as health_router
from farmledger.api.routes_public_parts.metrics import router as metrics_router
from farmledger.api.routes_public_parts.pools import router as pools_router

public_router = APIRouter()

public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(pools_router, prefix="/v1", tags=["pools"])
public_router.include_router(events_router, prefix="/v1", tags=["events"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
