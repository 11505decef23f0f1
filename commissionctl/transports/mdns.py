"""Commissionable-node advertisement over mDNS/DNS-SD."""

from __future__ import annotations

import ipaddress
import logging

import ifaddr
from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

from commissionctl.core.model import DiscoveryRecord

LOGGER = logging.getLogger(__name__)

SERVICE_TYPE = "_matterc._udp.local."


def host_addresses() -> list[str]:
    """Non-loopback IPv4 and routable IPv6 addresses of this host."""
    results: list[str] = []
    for adapter in ifaddr.get_adapters():
        for ip in adapter.ips:
            if isinstance(ip.ip, tuple):
                try:
                    address = ipaddress.IPv6Address(ip.ip[0])
                except ValueError:
                    continue
                # link-local addresses would need a scope id
                if address.is_link_local:
                    continue
            else:
                try:
                    address = ipaddress.IPv4Address(ip.ip)
                except ValueError:
                    continue
            if address.is_loopback:
                continue
            results.append(str(address))
    return results


class ZeroconfAdvertiser:
    def __init__(self, *, addresses: list[str] | None = None) -> None:
        self.addresses = addresses
        self._zeroconf: AsyncZeroconf | None = None
        self._info: ServiceInfo | None = None

    async def announce(self, record: DiscoveryRecord) -> None:
        if self._info is not None:
            await self.withdraw()
        addresses = self.addresses if self.addresses is not None else host_addresses()
        info = ServiceInfo(
            SERVICE_TYPE,
            f"{record.instance_name}.{SERVICE_TYPE}",
            port=record.port,
            properties=record.txt_records(),
            server=f"{record.instance_name}.local.",
            parsed_addresses=addresses,
        )
        self._zeroconf = AsyncZeroconf()
        await self._zeroconf.async_register_service(info)
        self._info = info
        LOGGER.info(
            "Advertising %s on port %s (discriminator %s)",
            info.name,
            record.port,
            record.discriminator,
        )

    async def withdraw(self) -> None:
        zeroconf, info = self._zeroconf, self._info
        self._zeroconf = None
        self._info = None
        if zeroconf is None:
            return
        try:
            if info is not None:
                await zeroconf.async_unregister_service(info)
        finally:
            await zeroconf.async_close()
        LOGGER.debug("Withdrew commissionable advertisement")
