from __future__ import annotations

import asyncio

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from emberpulse.api import deps
from emberpulse.core.config import Settings
from emberpulse.db.connection import TsdbConnection
from emberpulse.db.reconnect import ReconnectPolicy, ReconnectSupervisor
from emberpulse.factory import create_app
from emberpulse.repositories.opentsdb import OpenTsdbRepository
from tests.fakes import FakeOpenTsdb, FakeTimeSeriesRepository


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env="test",
        debug=True,
        docs_enabled=False,
        cors_origins=["http://localhost"],
        trusted_hosts=["testserver", "localhost"],
        opentsdb_host="opentsdb.invalid",
        opentsdb_port=4242,
        opentsdb_timeout_seconds=1.0,
        opentsdb_connect_on_startup=False,
        reconnect_max_attempts=1,
    )


@pytest.fixture()
def fake_repo() -> FakeTimeSeriesRepository:
    return FakeTimeSeriesRepository()


@pytest.fixture()
def client(settings: Settings, fake_repo: FakeTimeSeriesRepository) -> TestClient:
    app = create_app(settings)
    app.dependency_overrides[deps.get_timeseries_repository] = lambda: fake_repo
    with TestClient(app) as client:
        yield client


@pytest_asyncio.fixture()
async def opentsdb():
    """A FakeOpenTsdb listening on a local port, and a repository wired to it."""
    fake = FakeOpenTsdb()
    server = await asyncio.start_server(fake.handle_socket, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    repo = OpenTsdbRepository(
        connection=TsdbConnection(
            host="127.0.0.1",
            port=port,
            supervisor=ReconnectSupervisor(policy=ReconnectPolicy(max_attempts=1)),
            connect_timeout_seconds=1.0,
        ),
        http=httpx.AsyncClient(
            base_url=f"http://127.0.0.1:{port}",
            transport=httpx.MockTransport(fake.handler),
        ),
    )
    yield fake, repo
    await repo.close()
    fake.drop_connections()
    server.close()
    await server.wait_closed()
