from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from emberpulse.core.errors import TsdbConnectionError
from emberpulse.core.metrics import tsdb_reconnects
from emberpulse.db.reconnect import ReconnectSupervisor

logger = logging.getLogger(__name__)

Opener = Callable[[str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class TsdbConnection:
    """Persistent socket used for ``put`` lines.

    Opening is shared: any number of writers that find the socket dead while a
    dial is in flight wait on that dial and get its outcome, success or
    ``TsdbConnectionError``, instead of starting their own.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        supervisor: ReconnectSupervisor | None = None,
        connect_timeout_seconds: float = 5.0,
        high_water_bytes: int = 64 * 1024,
        opener: Opener | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.supervisor = supervisor or ReconnectSupervisor()
        self.high_water_bytes = high_water_bytes
        self._connect_timeout_seconds = connect_timeout_seconds
        self._opener: Opener = opener or asyncio.open_connection
        self._dialing: asyncio.Task[None] | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self.connects = 0

    @property
    def writable(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self) -> None:
        if self.writable:
            return
        if self._dialing is None:
            self._dialing = asyncio.create_task(self._reconnect(), name="opentsdb-dial")
            self._dialing.add_done_callback(self._dial_settled)
        # A cancelled waiter must not cancel the dial the others are waiting on.
        await asyncio.shield(self._dialing)

    async def write_line(self, line: str) -> bool:
        """Send one line; False when the transport is holding more than the high-water mark."""
        await self.open()
        writer = self._writer
        if writer is None:
            raise TsdbConnectionError("OpenTSDB connection lost before write")
        try:
            writer.write(line.encode("ascii"))
        except (OSError, RuntimeError) as e:
            logger.error("OpenTSDB network error: %s", e)
            self._discard()
            raise TsdbConnectionError(f"OpenTSDB network error: {e}") from e
        return writer.transport.get_write_buffer_size() <= self.high_water_bytes

    async def close(self) -> None:
        dialing = self._dialing
        if dialing is not None and not dialing.done():
            dialing.cancel()
            with contextlib.suppress(asyncio.CancelledError, TsdbConnectionError):
                await dialing
        task = self._reader_task
        writer = self._writer
        self._reader_task = None
        self._writer = None
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _reconnect(self) -> None:
        self._discard()
        reader, writer = await self.supervisor.run(self._dial)
        self._writer = writer
        self.connects += 1
        tsdb_reconnects.inc()
        logger.info("Connected to OpenTSDB at %s:%d", self.host, self.port)
        self._reader_task = asyncio.create_task(
            self._drain(reader, writer), name="opentsdb-reader"
        )

    def _dial_settled(self, task: asyncio.Task[None]) -> None:
        if self._dialing is task:
            self._dialing = None
        if not task.cancelled():
            # Waiters already hold the outcome; mark it retrieved.
            task.exception()

    async def _dial(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.wait_for(
            self._opener(self.host, self.port), timeout=self._connect_timeout_seconds
        )

    async def _drain(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        # The telnet interface only talks back to report rejected puts.
        try:
            while True:
                line = await reader.readline()
                if not line:
                    logger.warning("OpenTSDB closed the write connection")
                    break
                logger.warning("OpenTSDB rejected data: %s", line.decode("ascii", "replace").strip())
        except OSError as e:
            logger.error("OpenTSDB network error: %s", e)
        except ValueError as e:
            # readline() past the stream limit; the reply cannot be framed any more.
            logger.error("OpenTSDB sent an oversized reply: %s", e)
        finally:
            if self._writer is writer:
                self._writer = None
                writer.close()

    def _discard(self) -> None:
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
        self._reader_task = None
        if self._writer is not None:
            self._writer.close()
            self._writer = None
