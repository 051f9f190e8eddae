from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from emberpulse.core.errors import TsdbQueryError
from emberpulse.core.metrics import tsdb_failures, tsdb_request_duration, tsdb_write_delayed
from emberpulse.db.connection import TsdbConnection
from emberpulse.models.metric import WILDCARD, MetricPoint, MetricSample, RangeFilter
from emberpulse.models.status import ConnectionStatus
from emberpulse.repositories.opentsdb_query import (
    LATEST_NOT_FOUND_RULES,
    RANGE_NOT_FOUND_RULES,
    NotFoundRule,
    error_message,
    is_not_found,
    parse_latest,
    range_params,
    response_to_points,
    series_expression,
)

logger = logging.getLogger(__name__)


class OpenTsdbRepository:
    """Writes over the telnet-style socket, reads over the HTTP API.

    Queries for series that do not exist yet come back empty instead of
    raising; every other failure surfaces as ``TsdbQueryError``.
    """

    def __init__(
        self,
        *,
        connection: TsdbConnection,
        http: httpx.AsyncClient,
        back_scan_hours: int = 96,
    ) -> None:
        self._connection = connection
        self._http = http
        self._back_scan_hours = back_scan_hours

    @property
    def connection(self) -> TsdbConnection:
        return self._connection

    async def connect(self) -> TsdbConnection:
        await self._connection.open()
        return self._connection

    async def close(self) -> None:
        await self._connection.close()
        await self._http.aclose()

    def status(self) -> ConnectionStatus:
        breaker = self._connection.supervisor.breaker
        return ConnectionStatus(
            connected=self._connection.writable,
            circuit_state=breaker.state.value,
            reconnects=max(self._connection.connects - 1, 0),
            failures=breaker.consecutive_failures,
            last_error=breaker.last_error,
        )

    async def ping(self) -> None:
        await self._get("/api/version", {}, operation="ping")

    async def write(
        self, metric: str, tags: dict[str, str], timestamp: int, value: float
    ) -> None:
        sample = MetricSample(metric=metric, tags=dict(tags), timestamp=timestamp, value=value)
        started = time.perf_counter()
        try:
            sent = await self._connection.write_line(sample.to_put_line())
        except Exception:
            tsdb_failures.labels(operation="write").inc()
            raise
        if not sent:
            tsdb_write_delayed.inc()
            logger.warning("OpenTSDB data queued for writing (%s)", metric)
        else:
            tsdb_request_duration.labels(operation="write").observe(time.perf_counter() - started)

    async def query_range(self, metric: str, flt: RangeFilter) -> list[MetricPoint]:
        body = await self._get(
            "/api/query",
            range_params(metric, flt),
            operation="query_range",
            not_found=RANGE_NOT_FOUND_RULES,
        )
        if not isinstance(body, list) or not body:
            return []
        if len(body) > 1:
            logger.warning(
                "OpenTSDB returned %d series for %s, expected one; use a grouped query",
                len(body),
                metric,
            )
            return []
        return response_to_points(body[0].get("dps") or {})

    async def query_latest(self, metric: str, tags: dict[str, str]) -> MetricPoint | None:
        body = await self._get(
            "/api/query/last",
            {
                "back_scan": str(self._back_scan_hours),
                "timeseries": series_expression(metric, tags),
            },
            operation="query_latest",
            not_found=LATEST_NOT_FOUND_RULES,
        )
        return parse_latest(body)

    async def query_range_grouped(
        self, metric: str, flt: RangeFilter, group_tag: str
    ) -> dict[str, list[MetricPoint]]:
        if not flt.tags.get(group_tag):
            flt = flt.with_tag(group_tag, WILDCARD)

        body = await self._get(
            "/api/query",
            range_params(metric, flt),
            operation="query_range_grouped",
            not_found=RANGE_NOT_FOUND_RULES,
        )
        grouped: dict[str, list[MetricPoint]] = {}
        if not isinstance(body, list):
            return grouped
        for series in body:
            key = (series.get("tags") or {}).get(group_tag)
            if not isinstance(key, str):
                continue
            grouped[key] = response_to_points(series.get("dps") or {})
        return grouped

    async def rename_tag_value(self, old: str, new: str) -> None:
        await self._get(
            "/api/uid/rename",
            {"tagv": old, "name": new},
            operation="rename_tag_value",
        )

    async def _get(
        self,
        path: str,
        params: dict[str, str],
        *,
        operation: str,
        not_found: tuple[NotFoundRule, ...] = (),
    ) -> Any:
        uri = str(self._http.build_request("GET", path, params=params).url)
        logger.info("Outgoing TSDB request: %s", uri)
        started = time.perf_counter()

        try:
            resp = await self._http.get(path, params=params)
        except httpx.HTTPError as e:
            self._record_failure(operation, uri, str(e) or e.__class__.__name__)
            raise TsdbQueryError(str(e) or e.__class__.__name__, uri=uri) from e

        body = _json_or(resp, default=None)
        if resp.is_success:
            tsdb_request_duration.labels(operation=operation).observe(time.perf_counter() - started)
            return body

        if is_not_found(resp.status_code, body, not_found):
            tsdb_request_duration.labels(operation=operation).observe(time.perf_counter() - started)
            return None

        message = error_message(body) or resp.reason_phrase or f"HTTP {resp.status_code}"
        self._record_failure(operation, uri, message)
        raise TsdbQueryError(message, status_code=resp.status_code, uri=uri)

    @staticmethod
    def _record_failure(operation: str, uri: str, message: str) -> None:
        tsdb_failures.labels(operation=operation).inc()
        logger.error("Error reading from OpenTSDB %s: %s", uri, message)


def _json_or(resp: httpx.Response, *, default: Any) -> Any:
    if not resp.content:
        return default
    try:
        return resp.json()
    except ValueError:
        return default
