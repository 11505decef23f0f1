"""Stable public API for embedding commissionctl nodes.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from pathlib import Path

from commissionctl.core.errors import (
    AuthError,
    CommissioningError,
    ConfigError,
    HandlerError,
    InvalidPairingCodeError,
    InvalidRangeError,
    IssuanceError,
    ListenerBindError,
    ProfileLoadError,
    ProfileNotFoundError,
    ProfileValidationError,
    ProtocolError,
    StorageError,
    TransportError,
)
from commissionctl.core.model import (
    CommissioningFlow,
    CommissioningSecret,
    DeviceIdentity,
    DeviceProfile,
    DeviceType,
    DiscoveryCapabilities,
    ManualCodeData,
    PairingCode,
    PairingInfo,
    QrCodeData,
)
from commissionctl.core.pairing_code import decode as decode_pairing_code
from commissionctl.core.pairing_code import encode as encode_pairing_code
from commissionctl.core.server import CommissioningServer, ServerConfig
from commissionctl.core.service import DEFAULT_PROFILE, CommissioningService
from commissionctl.core.storage import DiskStorageBackend, MemoryStorageBackend, StorageBackend
from commissionctl.transports.base import Advertiser

__all__ = [
    "AuthError",
    "CommissioningError",
    "ConfigError",
    "HandlerError",
    "InvalidPairingCodeError",
    "InvalidRangeError",
    "IssuanceError",
    "ListenerBindError",
    "ProfileLoadError",
    "ProfileNotFoundError",
    "ProfileValidationError",
    "ProtocolError",
    "StorageError",
    "TransportError",
    "CommissioningFlow",
    "CommissioningSecret",
    "DeviceIdentity",
    "DeviceProfile",
    "DeviceType",
    "DiscoveryCapabilities",
    "ManualCodeData",
    "PairingCode",
    "PairingInfo",
    "QrCodeData",
    "CommissioningServer",
    "ServerConfig",
    "DiskStorageBackend",
    "MemoryStorageBackend",
    "StorageBackend",
    "decode_pairing_code",
    "encode_pairing_code",
    "Node",
]


class Node:
    """Public handle for running a commissionable node from a profile.

    A `Node` wraps profile loading, credential persistence and the
    commissioning server behind a small async API intended for scripts and
    test harnesses.
    """

    def __init__(
        self,
        profile_id: str = DEFAULT_PROFILE,
        *,
        storage: StorageBackend | None = None,
        storage_dir: str | Path | None = None,
        clear_storage: bool = False,
        advertiser: Advertiser | None = None,
        advertise: bool = True,
    ) -> None:
        self.profile_id = profile_id
        self._service = CommissioningService(
            storage=storage,
            storage_dir=storage_dir,
            clear_storage=clear_storage,
            advertiser=advertiser,
            advertise=advertise,
        )

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def server(self) -> CommissioningServer | None:
        return self._service.server

    def list_profiles(self) -> list[DeviceProfile]:
        return self._service.list_profiles()

    def pairing_info(self) -> PairingInfo:
        return self._service.pairing_info(self.profile_id)

    async def start(self, *, port: int | None = None) -> CommissioningServer:
        return await self._service.start(self.profile_id, port=port)

    async def stop(self) -> None:
        await self._service.stop()

    async def __aenter__(self) -> Node:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
