from __future__ import annotations

from fastapi import APIRouter

from models.schemas import HealthStatus

API_VERSION = "0.1.0"

router = APIRouter(tags=["health"])


@router.get("/health", summary="Health check", response_model=HealthStatus)
def health() -> HealthStatus:
    return HealthStatus(status="ok", version=API_VERSION)


__all__ = ["API_VERSION", "router"]
