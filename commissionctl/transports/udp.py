"""Asyncio UDP listener feeding datagrams to a frame sink."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from commissionctl.core.errors import ListenerBindError
from commissionctl.transports.base import FrameSink

LOGGER = logging.getLogger(__name__)


class DatagramListener(asyncio.DatagramProtocol):
    def __init__(self, sink: FrameSink) -> None:
        self.sink = sink

    def datagram_received(self, data: bytes, addr: tuple[Any, ...]) -> None:
        self.sink.datagram_received(data, addr)

    def error_received(self, exc: Exception) -> None:
        LOGGER.warning("UDP listener error: %s", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self.sink.connection_lost(exc)


async def open_listener(sink: FrameSink, host: str, port: int) -> asyncio.DatagramTransport:
    loop = asyncio.get_running_loop()
    try:
        transport, _ = await loop.create_datagram_endpoint(
            lambda: DatagramListener(sink),
            local_addr=(host, port),
        )
    except OSError as exc:
        raise ListenerBindError(f"Could not bind UDP {host}:{port}: {exc}") from exc
    return transport
