from __future__ import annotations

import logging

import httpx
import pytest

from emberpulse.core.errors import TsdbQueryError
from emberpulse.db.connection import TsdbConnection
from emberpulse.models.metric import Aggregation, MetricPoint, RangeFilter
from emberpulse.repositories.opentsdb import OpenTsdbRepository
from tests.fakes import eventually


@pytest.mark.asyncio
async def test_write_then_query_range_round_trip(opentsdb) -> None:
    fake, repo = opentsdb
    await repo.write("power", {"device": "hpc-1"}, 1700000000, 21.5)
    await eventually(lambda: fake.series)

    points = await repo.query_range(
        "power", RangeFilter(start=1699999990, end=1700000010, tags={"device": "hpc-1"})
    )
    assert points == [MetricPoint(timestamp=1700000000, value=21.5)]


@pytest.mark.asyncio
async def test_query_range_orders_points_numerically(opentsdb) -> None:
    fake, repo = opentsdb
    fake.forced["/api/query"] = httpx.Response(
        200, json=[{"metric": "power", "tags": {}, "dps": {"100": 5, "20": 3}}]
    )
    points = await repo.query_range("power", RangeFilter(start=0, end=200))
    assert [p.timestamp for p in points] == [20, 100]


@pytest.mark.asyncio
async def test_query_range_unknown_metric_is_empty(opentsdb) -> None:
    _, repo = opentsdb
    assert await repo.query_range("never-written", RangeFilter(start=0, end=10)) == []


@pytest.mark.asyncio
async def test_query_range_bad_request_is_empty(opentsdb) -> None:
    fake, repo = opentsdb
    fake.forced["/api/query"] = httpx.Response(
        400, json={"error": {"code": 400, "message": "Unknown tag value"}}
    )
    assert await repo.query_range("power", RangeFilter(start=0, end=10)) == []


@pytest.mark.asyncio
async def test_query_range_server_error_is_raised(opentsdb) -> None:
    fake, repo = opentsdb
    fake.forced["/api/query"] = httpx.Response(
        500, json={"error": {"code": 500, "message": "HBase region unavailable"}}
    )
    with pytest.raises(TsdbQueryError) as exc_info:
        await repo.query_range("power", RangeFilter(start=0, end=10))
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "HBase region unavailable"
    assert "/api/query" in (exc_info.value.uri or "")


@pytest.mark.asyncio
async def test_query_range_multiple_series_is_empty(opentsdb) -> None:
    fake, repo = opentsdb
    fake.forced["/api/query"] = httpx.Response(
        200,
        json=[
            {"metric": "power", "tags": {"device": "a"}, "dps": {"1": 1}},
            {"metric": "power", "tags": {"device": "b"}, "dps": {"1": 2}},
        ],
    )
    assert await repo.query_range("power", RangeFilter(start=0, end=10)) == []


@pytest.mark.asyncio
async def test_query_range_sends_aggregation_and_qualifiers(opentsdb) -> None:
    fake, repo = opentsdb
    await repo.write("energy", {"device": "hpc-1"}, 100, 1.0)
    await eventually(lambda: fake.series)

    flt = RangeFilter(
        start=50,
        end=150,
        aggregation=Aggregation.MAX,
        qualifiers=("rate",),
        tags={"device": "hpc-1"},
    )
    await repo.query_range("energy", flt)
    params = fake.requests[-1].url.params
    assert params["start"] == "50"
    assert params["end"] == "150"
    assert params["m"] == "max:rate:energy{device=hpc-1}"


@pytest.mark.asyncio
async def test_transport_failure_is_raised() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    repo = OpenTsdbRepository(
        connection=TsdbConnection(host="127.0.0.1", port=1),
        http=httpx.AsyncClient(base_url="http://tsdb", transport=httpx.MockTransport(refuse)),
    )
    try:
        with pytest.raises(TsdbQueryError) as exc_info:
            await repo.query_range("power", RangeFilter(start=0, end=1))
        assert exc_info.value.status_code is None
        assert "connection refused" in exc_info.value.message
    finally:
        await repo.close()


@pytest.mark.asyncio
async def test_query_latest_converts_milliseconds(opentsdb) -> None:
    fake, repo = opentsdb
    fake.forced["/api/query/last"] = httpx.Response(
        200,
        json=[{"metric": "power", "timestamp": 1700000000000, "value": "7.25", "tags": {}}],
    )
    point = await repo.query_latest("power", {"device": "hpc-1"})
    assert point == MetricPoint(timestamp=1700000000, value=7.25)

    params = fake.requests[-1].url.params
    assert params["timeseries"] == "power{device=hpc-1}"
    assert params["back_scan"] == "96"


@pytest.mark.asyncio
async def test_query_latest_after_writes(opentsdb) -> None:
    fake, repo = opentsdb
    await repo.write("power", {"device": "hpc-1"}, 100, 1.0)
    await repo.write("power", {"device": "hpc-1"}, 200, 2.0)
    await eventually(lambda: len(next(iter(fake.series.values()), {})) == 2)

    assert await repo.query_latest("power", {"device": "hpc-1"}) == MetricPoint(200, 2.0)


@pytest.mark.asyncio
async def test_query_latest_unknown_series_is_none(opentsdb) -> None:
    _, repo = opentsdb
    assert await repo.query_latest("never-written", {}) is None


@pytest.mark.asyncio
async def test_query_latest_other_errors_are_raised(opentsdb) -> None:
    fake, repo = opentsdb
    fake.forced["/api/query/last"] = httpx.Response(
        400, json={"error": {"code": 400, "message": "Invalid back_scan"}}
    )
    with pytest.raises(TsdbQueryError, match="Invalid back_scan"):
        await repo.query_latest("power", {})


@pytest.mark.asyncio
async def test_grouped_query_injects_wildcard(opentsdb) -> None:
    fake, repo = opentsdb
    await repo.write("power", {"device": "a"}, 100, 1.0)
    await repo.write("power", {"device": "b"}, 100, 2.0)
    await repo.write("power", {"device": "b"}, 90, 4.0)
    await eventually(lambda: sum(len(d) for d in fake.series.values()) == 3)

    flt = RangeFilter(start=0, end=200)
    grouped = await repo.query_range_grouped("power", flt, "device")

    assert fake.requests[-1].url.params["m"] == "avg:power{device=*}"
    assert flt.tags == {}
    assert grouped == {
        "a": [MetricPoint(100, 1.0)],
        "b": [MetricPoint(90, 4.0), MetricPoint(100, 2.0)],
    }


@pytest.mark.asyncio
async def test_grouped_query_keeps_explicit_group_value(opentsdb) -> None:
    fake, repo = opentsdb
    await repo.write("power", {"device": "a"}, 100, 1.0)
    await eventually(lambda: fake.series)

    grouped = await repo.query_range_grouped(
        "power", RangeFilter(start=0, end=200, tags={"device": "a"}), "device"
    )
    assert fake.requests[-1].url.params["m"] == "avg:power{device=a}"
    assert grouped == {"a": [MetricPoint(100, 1.0)]}


@pytest.mark.asyncio
async def test_grouped_query_unknown_metric_is_empty(opentsdb) -> None:
    _, repo = opentsdb
    assert await repo.query_range_grouped("nope", RangeFilter(start=0, end=1), "device") == {}


@pytest.mark.asyncio
async def test_rename_tag_value(opentsdb) -> None:
    fake, repo = opentsdb
    await repo.rename_tag_value("hpc-1", "hpc-01")
    params = fake.requests[-1].url.params
    assert fake.requests[-1].url.path == "/api/uid/rename"
    assert params["tagv"] == "hpc-1"
    assert params["name"] == "hpc-01"


@pytest.mark.asyncio
async def test_rename_tag_value_errors_are_not_normalized(opentsdb) -> None:
    fake, repo = opentsdb
    fake.forced["/api/uid/rename"] = httpx.Response(
        400, json={"error": {"code": 400, "message": "No such name for 'tagv': 'hpc-1'"}}
    )
    with pytest.raises(TsdbQueryError) as exc_info:
        await repo.rename_tag_value("hpc-1", "hpc-01")
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_outgoing_requests_are_logged(opentsdb, caplog: pytest.LogCaptureFixture) -> None:
    _, repo = opentsdb
    with caplog.at_level(logging.INFO, logger="emberpulse.repositories.opentsdb"):
        await repo.ping()
    assert any("Outgoing TSDB request" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_invalid_write_is_rejected_before_io(opentsdb) -> None:
    fake, repo = opentsdb
    with pytest.raises(ValueError):
        await repo.write("power", {}, 1700000000, float("nan"))
    assert fake.connections == 0
