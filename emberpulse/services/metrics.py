from __future__ import annotations

from datetime import datetime, timezone

from emberpulse.models.metric import Aggregation, MetricPoint, RangeFilter
from emberpulse.repositories.base import TimeSeriesRepository
from emberpulse.repositories.opentsdb_query import to_epoch_seconds
from emberpulse.schemas.metrics import MetricWrite


def parse_tags(pairs: list[str]) -> dict[str, str]:
    """Turn ``["device=hpc-1", "phase=a"]`` into a tag mapping."""
    tags: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key or not value:
            raise ValueError(f"Invalid tag filter {pair!r} (expected key=value)")
        tags[key] = value
    return tags


class MetricService:
    def __init__(self, repo: TimeSeriesRepository) -> None:
        self._repo = repo

    async def record(self, payload: MetricWrite) -> int:
        timestamp = payload.timestamp or datetime.now(tz=timezone.utc)
        seconds = to_epoch_seconds(timestamp)
        await self._repo.write(payload.metric, dict(payload.tags), seconds, payload.value)
        return seconds

    def build_filter(
        self,
        *,
        start: datetime,
        end: datetime,
        aggregation: Aggregation,
        qualifiers: list[str],
        tags: dict[str, str],
    ) -> RangeFilter:
        return RangeFilter(
            start=to_epoch_seconds(start),
            end=to_epoch_seconds(end, round_up=True),
            aggregation=aggregation,
            qualifiers=tuple(qualifiers),
            tags=tags,
        )

    async def range(self, metric: str, flt: RangeFilter) -> list[MetricPoint]:
        return await self._repo.query_range(metric, flt)

    async def latest(self, metric: str, tags: dict[str, str]) -> MetricPoint | None:
        return await self._repo.query_latest(metric, tags)

    async def grouped(
        self, metric: str, flt: RangeFilter, group_tag: str
    ) -> dict[str, list[MetricPoint]]:
        return await self._repo.query_range_grouped(metric, flt, group_tag)

    async def rename_tag_value(self, old: str, new: str) -> None:
        await self._repo.rename_tag_value(old, new)
