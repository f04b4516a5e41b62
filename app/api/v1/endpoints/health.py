"""Liveness and dependency checks."""

from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel

from app.config import settings
from app.core.redis_client import check_redis_connection
from app.database import check_database_connection

router = APIRouter(tags=["Health"])

ComponentState = Literal["healthy", "unhealthy", "disabled"]


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    database: ComponentState
    redis: ComponentState


def _state(ok: bool) -> ComponentState:
    return "healthy" if ok else "unhealthy"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check() -> DetailedHealthResponse:
    """Database and Redis status; Redis reads ``disabled`` when the slot cache is off."""
    database = _state(await check_database_connection())
    redis: ComponentState = (
        _state(await check_redis_connection()) if settings.cache_enabled else "disabled"
    )
    degraded = "unhealthy" in (database, redis)

    return DetailedHealthResponse(
        status="degraded" if degraded else "healthy",
        version=settings.app_version,
        environment=settings.environment,
        database=database,
        redis=redis,
    )


@router.get("/ping")
async def ping() -> dict[str, str]:
    return {"message": "pong"}
