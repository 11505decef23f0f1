"""Service layer used by CLI and API frontends."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any

from commissionctl.core import pairing_code
from commissionctl.core.credentials import CredentialStore
from commissionctl.core.device import ATTR_IDENTIFY_TIME, OnOffDevice, device_for_type
from commissionctl.core.errors import CommissioningError, ProfileNotFoundError
from commissionctl.core.issuer import CredentialIssuer
from commissionctl.core.model import (
    CommissioningSecret,
    DeviceIdentity,
    DeviceProfile,
    DiscoveryCapabilities,
    PairingInfo,
)
from commissionctl.core.pase import CryptoProvider
from commissionctl.core.profile_loader import default_storage_dir, load_profiles
from commissionctl.core.server import KEY_FABRICS, CommissioningServer, ServerConfig
from commissionctl.core.session import SessionConfig
from commissionctl.core.storage import DiskStorageBackend, StorageBackend, StorageContext
from commissionctl.transports.base import Advertiser
from commissionctl.transports.mdns import ZeroconfAdvertiser

LOGGER = logging.getLogger(__name__)

DEFAULT_PROFILE = "on_off_light"
DEVICE_CONTEXT = "Device"
SERVER_CONTEXT = "Server"


class CommissioningService:
    """Runs one commissionable node described by a device profile.

    At most one node runs per service instance. ``stop`` closes the server
    before the storage backend so the last fabric write is flushed.
    """

    def __init__(
        self,
        *,
        storage: StorageBackend | None = None,
        storage_dir: str | Path | None = None,
        clear_storage: bool = False,
        crypto: CryptoProvider | None = None,
        issuer: CredentialIssuer | None = None,
        advertiser: Advertiser | None = None,
        advertise: bool = True,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self.storage = storage
        self.storage_dir = Path(storage_dir) if storage_dir is not None else None
        self.clear_storage = clear_storage
        self.crypto = crypto
        self.issuer = issuer
        self.advertiser = advertiser
        self.advertise = advertise
        self.server: CommissioningServer | None = None
        self.device: OnOffDevice | None = None
        self._backend: StorageBackend | None = None

    def list_profiles(self) -> list[DeviceProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def profile(self, profile_id: str) -> DeviceProfile:
        profile = self.profiles.get(profile_id)
        if profile is None:
            available = ", ".join(sorted(self.profiles))
            raise ProfileNotFoundError(f"Unknown profile '{profile_id}'. Available: {available}")
        return profile

    def pairing_info(self, profile_id: str = DEFAULT_PROFILE) -> PairingInfo:
        """Resolve (and persist on first use) the pairing details of a profile."""
        profile = self.profile(profile_id)
        backend = self._open_backend(profile)
        try:
            secret, identity = CredentialStore(StorageContext(backend, DEVICE_CONTEXT)).ensure_defaults(
                profile.defaults
            )
            commissioned = bool(StorageContext(backend, SERVER_CONTEXT).get(KEY_FABRICS))
        finally:
            if backend is not self.storage:
                backend.close()
        return PairingInfo(
            profile_id=profile.id,
            identity=identity,
            secret=secret,
            code=pairing_code.encode(secret, identity, profile.discovery, profile.commissioning.flow),
            commissioned=commissioned,
        )

    async def start(self, profile_id: str = DEFAULT_PROFILE, *, port: int | None = None) -> CommissioningServer:
        if self.server is not None:
            raise CommissioningError("A node is already running; stop it first")
        profile = self.profile(profile_id)
        backend = self._open_backend(profile)
        self._backend = backend
        try:
            secret, identity = CredentialStore(StorageContext(backend, DEVICE_CONTEXT)).ensure_defaults(
                profile.defaults
            )
            server = self._build_server(profile, secret, identity, backend, port)
            self.server = server
            await server.start()
        except BaseException:
            await self.stop()
            raise

        if server.is_commissioned():
            LOGGER.info("Device is already commissioned. Waiting for controllers to connect ...")
        else:
            code = server.get_pairing_code()
            LOGGER.info("QR code URL: %s", pairing_code.qr_code_url(code.qr_payload))
            LOGGER.info("Manual pairing code: %s", pairing_code.format_manual_code(code.manual_code))
        return server

    async def stop(self) -> None:
        server, backend = self.server, self._backend
        self.server = None
        self.device = None
        self._backend = None
        try:
            if server is not None:
                await server.close()
        finally:
            if backend is not None and backend is not self.storage:
                backend.close()
            elif backend is not None:
                backend.flush()

    async def serve_forever(self, profile_id: str = DEFAULT_PROFILE, *, port: int | None = None) -> None:
        await self.start(profile_id, port=port)
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                LOGGER.debug("Signal handler for %s not supported on this loop", sig.name)
                continue
            installed.append(sig)
        try:
            await stop_event.wait()
            LOGGER.info("Shutting down")
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.stop()

    def _open_backend(self, profile: DeviceProfile) -> StorageBackend:
        if self.storage is not None:
            backend = self.storage
        else:
            location = self.storage_dir or default_storage_dir(profile.id)
            backend = DiskStorageBackend(location, clear=self.clear_storage)
        backend.initialize()
        return backend

    def _build_server(
        self,
        profile: DeviceProfile,
        secret: CommissioningSecret,
        identity: DeviceIdentity,
        backend: StorageBackend,
        port: int | None,
    ) -> CommissioningServer:
        config = ServerConfig(
            device_name=profile.name,
            port=profile.port if port is None else port,
            discovery=profile.discovery,
            flow=profile.commissioning.flow,
            session=SessionConfig(
                stage_timeout_s=profile.commissioning.stage_timeout_s,
                max_auth_attempts=profile.commissioning.max_auth_attempts,
                pbkdf_iterations=profile.commissioning.pbkdf_iterations,
            ),
        )
        advertiser = self.advertiser
        if advertiser is None and self.advertise and profile.discovery & DiscoveryCapabilities.ON_NETWORK:
            advertiser = ZeroconfAdvertiser()
        server = CommissioningServer(
            identity,
            secret,
            config=config,
            storage=StorageContext(backend, SERVER_CONTEXT),
            crypto=self.crypto,
            issuer=self.issuer,
            advertiser=advertiser,
        )

        device = device_for_type(identity.device_type, name=profile.product_name)
        device.add_on_off_listener(lambda on: LOGGER.info("%s is now %s", profile.name, "on" if on else "off"))
        device.add_state_listener(_log_identify)
        server.add_device(device)
        server.add_command_handler("testEventTrigger", _log_test_event_trigger)
        self.device = device
        return server


def _log_identify(attribute: str, value: Any) -> None:
    if attribute == ATTR_IDENTIFY_TIME:
        LOGGER.info("Identify called for %s seconds", value)


def _log_test_event_trigger(args: dict[str, Any]) -> None:
    LOGGER.info("testEventTrigger called: %s", args)
