"""Transport and advertisement interfaces."""

from __future__ import annotations

from typing import Any, Protocol

from commissionctl.core.model import DiscoveryRecord


class FrameSink(Protocol):
    def datagram_received(self, data: bytes, addr: tuple[Any, ...]) -> None:
        """Accept one inbound datagram."""

    def connection_lost(self, exc: Exception | None) -> None:
        """Called when the listening socket goes away."""


class Advertiser(Protocol):
    async def announce(self, record: DiscoveryRecord) -> None:
        """Publish the node as commissionable."""

    async def withdraw(self) -> None:
        """Remove any published record. Calling it again is a no-op."""
