from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from emberpulse.repositories.base import TimeSeriesRepository
from emberpulse.services.metrics import MetricService


def get_timeseries_repository(request: Request) -> TimeSeriesRepository:
    return request.app.state.tsdb_repository


def get_metric_service(
    repo: Annotated[TimeSeriesRepository, Depends(get_timeseries_repository)],
) -> MetricService:
    return MetricService(repo)
