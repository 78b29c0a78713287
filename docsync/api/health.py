"""Liveness endpoint covering the relational store and the object store."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from docsync.api.deps import get_session, get_settings
from docsync.config import Settings
from docsync.version import VERSION

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    object_store: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """Report ``degraded`` when either store is unreachable."""
    checks = {"database": "ok", "object_store": "ok"}
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        checks["database"] = "error"

    if not settings.object_store_dir.is_dir():
        logger.warning("Object store directory %s is missing", settings.object_store_dir)
        checks["object_store"] = "error"

    healthy = all(value == "ok" for value in checks.values())
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=VERSION,
        **checks,
    )
