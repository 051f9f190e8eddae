from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status

from emberpulse.api.deps import get_metric_service
from emberpulse.core.errors import TsdbConnectionError, TsdbError, TsdbQueryError
from emberpulse.models.metric import Aggregation, RangeFilter
from emberpulse.schemas.metrics import (
    METRIC_PATTERN,
    TAG_PART_PATTERN,
    MetricPointRead,
    MetricWrite,
    MetricWriteResponse,
    TagRename,
)
from emberpulse.services.metrics import MetricService, parse_tags

router = APIRouter(prefix="/metrics")

MetricPath = Annotated[str, Path(pattern=METRIC_PATTERN)]
TagQuery = Annotated[list[str], Query(alias="tag", description="key=value, repeatable")]


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _storage_error(e: TsdbError) -> HTTPException:
    if isinstance(e, TsdbConnectionError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="OpenTSDB unavailable",
        )
    if isinstance(e, TsdbQueryError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


def _tags_or_422(pairs: list[str]) -> dict[str, str]:
    try:
        return parse_tags(pairs)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


def get_range_filter(
    service: Annotated[MetricService, Depends(get_metric_service)],
    start: Annotated[datetime | None, Query()] = None,
    end: Annotated[datetime | None, Query()] = None,
    aggregation: Annotated[Aggregation, Query()] = Aggregation.AVG,
    qualifiers: Annotated[list[str], Query(alias="qualifier")] = [],
    tags: TagQuery = [],
) -> RangeFilter:
    start_dt = _to_utc(start) if start else datetime.now(tz=timezone.utc) - timedelta(hours=1)
    end_dt = _to_utc(end) if end else datetime.now(tz=timezone.utc)
    if start_dt > end_dt:
        raise HTTPException(status_code=400, detail="'start' must be <= 'end'")
    return service.build_filter(
        start=start_dt,
        end=end_dt,
        aggregation=aggregation,
        qualifiers=qualifiers,
        tags=_tags_or_422(tags),
    )


@router.post(
    "",
    response_model=MetricWriteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def write_metric(
    payload: MetricWrite,
    service: Annotated[MetricService, Depends(get_metric_service)],
) -> MetricWriteResponse:
    try:
        timestamp = await service.record(payload)
    except TsdbError as e:
        raise _storage_error(e) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return MetricWriteResponse(timestamp=timestamp)


@router.get("/{metric}/range", response_model=list[MetricPointRead])
async def metric_range(
    metric: MetricPath,
    flt: Annotated[RangeFilter, Depends(get_range_filter)],
    service: Annotated[MetricService, Depends(get_metric_service)],
) -> list[MetricPointRead]:
    try:
        points = await service.range(metric, flt)
    except TsdbError as e:
        raise _storage_error(e) from e
    return [MetricPointRead.model_validate(p.__dict__) for p in points]


@router.get("/{metric}/latest", response_model=MetricPointRead | None)
async def metric_latest(
    metric: MetricPath,
    service: Annotated[MetricService, Depends(get_metric_service)],
    tags: TagQuery = [],
) -> MetricPointRead | None:
    try:
        point = await service.latest(metric, _tags_or_422(tags))
    except TsdbError as e:
        raise _storage_error(e) from e
    if point is None:
        return None
    return MetricPointRead.model_validate(point.__dict__)


@router.get("/{metric}/grouped", response_model=dict[str, list[MetricPointRead]])
async def metric_grouped(
    metric: MetricPath,
    group: Annotated[str, Query(pattern=TAG_PART_PATTERN)],
    flt: Annotated[RangeFilter, Depends(get_range_filter)],
    service: Annotated[MetricService, Depends(get_metric_service)],
) -> dict[str, list[MetricPointRead]]:
    try:
        grouped = await service.grouped(metric, flt, group)
    except TsdbError as e:
        raise _storage_error(e) from e
    return {
        key: [MetricPointRead.model_validate(p.__dict__) for p in points]
        for key, points in grouped.items()
    }


@router.post("/tags/rename", status_code=status.HTTP_204_NO_CONTENT)
async def rename_tag_value(
    payload: TagRename,
    service: Annotated[MetricService, Depends(get_metric_service)],
) -> Response:
    try:
        await service.rename_tag_value(payload.old, payload.new)
    except TsdbError as e:
        raise _storage_error(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
