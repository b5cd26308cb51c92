"""Health check endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status

from receiptsync.core.dependencies import RepositoryDep, SettingsDep

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, str]:
    """Check if the service is healthy."""
    return {"status": "healthy", "service": "receiptsync"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(
    repository: RepositoryDep, settings: SettingsDep
) -> dict[str, Any]:
    """Check if the local store is reachable."""
    return {
        "status": "ready",
        "service": "receiptsync",
        "dependencies": {
            "database": "connected",
            "remote_api": settings.api_base_url,
        },
        "receipts": repository.count(),
    }
