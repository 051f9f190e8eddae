from __future__ import annotations

import httpx

from emberpulse.core.config import Settings
from emberpulse.db.connection import TsdbConnection
from emberpulse.db.reconnect import CircuitBreaker, ReconnectPolicy, ReconnectSupervisor
from emberpulse.repositories.opentsdb import OpenTsdbRepository


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.opentsdb_base_url,
        timeout=settings.opentsdb_timeout_seconds,
        headers={"Accept": "application/json"},
    )


def create_connection(settings: Settings) -> TsdbConnection:
    supervisor = ReconnectSupervisor(
        policy=ReconnectPolicy(
            max_attempts=settings.reconnect_max_attempts,
            base_delay_seconds=settings.reconnect_base_delay_seconds,
            max_delay_seconds=settings.reconnect_max_delay_seconds,
        ),
        breaker=CircuitBreaker(
            failure_threshold=settings.breaker_failure_threshold,
            cooldown_seconds=settings.breaker_cooldown_seconds,
        ),
    )
    return TsdbConnection(
        host=settings.opentsdb_host,
        port=settings.opentsdb_port,
        supervisor=supervisor,
        connect_timeout_seconds=settings.opentsdb_connect_timeout_seconds,
        high_water_bytes=settings.opentsdb_write_high_water_bytes,
    )


def create_opentsdb_repository(settings: Settings) -> OpenTsdbRepository:
    return OpenTsdbRepository(
        connection=create_connection(settings),
        http=create_http_client(settings),
        back_scan_hours=settings.opentsdb_back_scan_hours,
    )


async def connect_opentsdb(settings: Settings) -> OpenTsdbRepository:
    repo = create_opentsdb_repository(settings)
    await repo.connect()
    return repo
