from __future__ import annotations

from typing import Protocol

from emberpulse.models.metric import MetricPoint, RangeFilter
from emberpulse.models.status import ConnectionStatus


class TimeSeriesRepository(Protocol):
    async def ping(self) -> None: ...

    def status(self) -> ConnectionStatus: ...

    async def write(
        self, metric: str, tags: dict[str, str], timestamp: int, value: float
    ) -> None: ...

    async def query_range(self, metric: str, flt: RangeFilter) -> list[MetricPoint]: ...

    async def query_latest(self, metric: str, tags: dict[str, str]) -> MetricPoint | None: ...

    async def query_range_grouped(
        self, metric: str, flt: RangeFilter, group_tag: str
    ) -> dict[str, list[MetricPoint]]: ...

    async def rename_tag_value(self, old: str, new: str) -> None: ...
