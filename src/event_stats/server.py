"""FastAPI facade that exposes the statistics service over HTTP."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import StatisticsConfig, load_config
from .context import RequestContext
from .errors import (
    DeadlineExceeded,
    InvalidParameter,
    OperationCancelled,
    StatisticsError,
)
from .logging_setup import setup_logging
from .repository import build_repository_from_env
from .service import StatisticsService

logger = logging.getLogger(__name__)

R = TypeVar("R")

_STATUS_BY_ERROR = (
    (InvalidParameter, 400),
    (DeadlineExceeded, 504),
    (OperationCancelled, 499),
)


class StatisticsResponse(BaseModel):
    data: Dict[str, Any]


def _status_for(exc: StatisticsError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def create_app(
    service: Optional[StatisticsService] = None,
    config: Optional[StatisticsConfig] = None,
) -> FastAPI:
    cfg = config or (service.config if service is not None else load_config())
    setup_logging(cfg.log_level)
    if service is None:
        repository = build_repository_from_env(cfg)
        if repository is not None:
            service = StatisticsService(repository, config=cfg)

    app = FastAPI(title="Event Statistics API", version="0.1.0")

    @app.exception_handler(StatisticsError)
    async def _statistics_error_handler(_: Request, exc: StatisticsError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.warning("Statistics request failed: %s", exc)
        return JSONResponse(status_code=status, content=exc.to_dict())

    async def run(operation: Callable[[RequestContext], R]) -> StatisticsResponse:
        if service is None:
            raise HTTPException(
                status_code=503,
                detail="EVENT_STATS_DATABASE_URL is not configured; statistics are unavailable.",
            )
        ctx = RequestContext.with_timeout(cfg.request_timeout_seconds)
        try:
            result = await asyncio.wait_for(asyncio.to_thread(operation, ctx), timeout=ctx.remaining())
        except asyncio.TimeoutError as exc:
            ctx.cancel()
            raise DeadlineExceeded("statistics request deadline exceeded") from exc
        except asyncio.CancelledError:
            ctx.cancel()
            raise
        return StatisticsResponse(data=result.as_dict())

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok" if service is not None else "degraded"}

    @app.get("/statistics/dashboard", response_model=StatisticsResponse)
    async def dashboard() -> StatisticsResponse:
        return await run(lambda ctx: service.dashboard_summary(ctx=ctx))

    @app.get("/statistics/events/{event_id}", response_model=StatisticsResponse)
    async def event_summary(event_id: int) -> StatisticsResponse:
        return await run(lambda ctx: service.event_summary(event_id, ctx=ctx))

    @app.get("/statistics/tags", response_model=StatisticsResponse)
    async def tag_distribution(
        year: Optional[int] = Query(None),
        month: Optional[int] = Query(None),
    ) -> StatisticsResponse:
        return await run(lambda ctx: service.tag_distribution(year, month, ctx=ctx))

    @app.get("/statistics/activity", response_model=StatisticsResponse)
    async def activity(year: Optional[int] = Query(None)) -> StatisticsResponse:
        return await run(lambda ctx: service.activity_by_year(year, ctx=ctx))

    @app.get("/statistics/overall", response_model=StatisticsResponse)
    async def overall() -> StatisticsResponse:
        return await run(lambda ctx: service.overall_summary(ctx=ctx))

    @app.get("/statistics/trends", response_model=StatisticsResponse)
    async def trends(days: Optional[int] = Query(None)) -> StatisticsResponse:
        return await run(lambda ctx: service.event_trends(days, ctx=ctx))

    @app.get("/statistics/top-clubs", response_model=StatisticsResponse)
    async def top_clubs(
        limit: Optional[int] = Query(None),
        days: Optional[int] = Query(None),
    ) -> StatisticsResponse:
        return await run(lambda ctx: service.top_clubs(limit, days, ctx=ctx))

    @app.get("/statistics/engagement", response_model=StatisticsResponse)
    async def engagement() -> StatisticsResponse:
        return await run(lambda ctx: service.user_engagement_levels(ctx=ctx))

    @app.get("/statistics/top-events", response_model=StatisticsResponse)
    async def top_events(
        limit: Optional[int] = Query(None),
        days: Optional[int] = Query(None),
    ) -> StatisticsResponse:
        return await run(lambda ctx: service.top_events(limit, days, ctx=ctx))

    @app.get("/statistics/low-registration", response_model=StatisticsResponse)
    async def low_registration(
        days_ahead: Optional[int] = Query(None),
        threshold: Optional[int] = Query(None),
        capacity: Optional[int] = Query(None),
        limit: Optional[int] = Query(None),
    ) -> StatisticsResponse:
        return await run(lambda ctx: service.low_registration_events(days_ahead, threshold, capacity, limit, ctx=ctx))

    @app.get("/statistics/organization-activity", response_model=StatisticsResponse)
    async def organization_activity(limit: Optional[int] = Query(None)) -> StatisticsResponse:
        return await run(lambda ctx: service.organization_activity(limit, ctx=ctx))

    return app


app = create_app()
