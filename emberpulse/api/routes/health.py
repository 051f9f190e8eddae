from __future__ import annotations

from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from emberpulse.api.deps import get_timeseries_repository
from emberpulse.core.errors import TsdbError
from emberpulse.core.metrics import metrics_registry
from emberpulse.repositories.base import TimeSeriesRepository

router = APIRouter(tags=["meta"])


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    repo: Annotated[TimeSeriesRepository, Depends(get_timeseries_repository)],
) -> JSONResponse:
    conn = repo.status()
    body: dict[str, Any] = {"status": "ok", "connection": asdict(conn)}
    if not conn.ready:
        body["status"] = "unavailable"
        return JSONResponse(body, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    try:
        await repo.ping()
    except TsdbError as e:
        body["status"] = "unavailable"
        body["error"] = str(e)
        return JSONResponse(body, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return JSONResponse(body)


@router.get("/metrics", include_in_schema=False)
def prometheus_metrics() -> Response:
    return Response(generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)
