"""Commissioning server: endpoints, sessions and the UDP listener."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any

from commissionctl.core import pairing_code
from commissionctl.core.device import DeviceModel, RootEndpoint
from commissionctl.core.errors import CommissioningError, MalformedFrameError
from commissionctl.core.frames import Frame, Opcode, decode_frame
from commissionctl.core.issuer import CredentialIssuer, LocalCredentialIssuer
from commissionctl.core.model import (
    CommissioningFlow,
    CommissioningSecret,
    DeviceIdentity,
    DiscoveryCapabilities,
    DiscoveryRecord,
    PairingCode,
)
from commissionctl.core.pase import CryptographyProvider, CryptoProvider
from commissionctl.core.session import Address, CommissioningSession, SessionConfig, SessionState
from commissionctl.core.storage import StorageContext
from commissionctl.transports.base import Advertiser
from commissionctl.transports.udp import open_listener

LOGGER = logging.getLogger(__name__)

DEFAULT_PORT = 5540
ROOT_ENDPOINT = 0
KEY_FABRICS = "fabrics"


@dataclass(frozen=True)
class ServerConfig:
    device_name: str = "commissionctl device"
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    discovery: DiscoveryCapabilities = DiscoveryCapabilities.ON_NETWORK
    flow: CommissioningFlow = CommissioningFlow.STANDARD
    session: SessionConfig = field(default_factory=SessionConfig)


@dataclass
class _SessionSlot:
    session: CommissioningSession
    inbox: asyncio.Queue[Frame]
    task: asyncio.Task[None] | None = None


class CommissioningServer:
    """Owns device endpoints and the sessions of one commissionable node.

    Each session is served by its own task draining that session's inbox,
    so frames for one session are processed strictly in order while other
    sessions proceed independently.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        secret: CommissioningSecret,
        *,
        config: ServerConfig | None = None,
        storage: StorageContext | None = None,
        crypto: CryptoProvider | None = None,
        issuer: CredentialIssuer | None = None,
        advertiser: Advertiser | None = None,
    ) -> None:
        self.identity = identity
        self.secret = secret
        self.config = config or ServerConfig()
        self.storage = storage
        self.crypto = crypto or CryptographyProvider()
        self.issuer = issuer or LocalCredentialIssuer()
        self.advertiser = advertiser
        self.root = RootEndpoint(name="root")
        self._endpoints: dict[int, DeviceModel] = {ROOT_ENDPOINT: self.root}
        self._slots: dict[tuple[Address, int], _SessionSlot] = {}
        self._fabrics: list[dict[str, Any]] = list(storage.get(KEY_FABRICS, [])) if storage else []
        self._transport: asyncio.DatagramTransport | None = None
        self._advertised = False
        self._closed = False

    # --------------------------
    # Configuration
    # --------------------------

    def add_device(self, device: DeviceModel) -> int:
        endpoint_id = max(self._endpoints) + 1
        self._endpoints[endpoint_id] = device

        async def _publish(attribute: str, value: Any) -> None:
            self._publish(endpoint_id, attribute, value)

        device.add_state_listener(_publish)
        LOGGER.debug("Added %s as endpoint %s", device.name, endpoint_id)
        return endpoint_id

    def add_command_handler(self, name: str, handler: Any) -> None:
        self.root.add_command_handler(name, handler)

    @property
    def endpoints(self) -> dict[int, DeviceModel]:
        return dict(self._endpoints)

    @property
    def sessions(self) -> list[CommissioningSession]:
        return [slot.session for slot in self._slots.values()]

    @property
    def port(self) -> int | None:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")[1]

    def is_commissioned(self) -> bool:
        return bool(self._fabrics)

    def get_pairing_code(self, capabilities: DiscoveryCapabilities | None = None) -> PairingCode:
        return pairing_code.encode(
            self.secret,
            self.identity,
            self.config.discovery if capabilities is None else capabilities,
            self.config.flow,
        )

    # --------------------------
    # Lifecycle
    # --------------------------

    async def start(self) -> None:
        if self._closed:
            raise CommissioningError("Server was closed and cannot be restarted")
        if self._transport is not None:
            return
        self.attach(await open_listener(self, self.config.host, self.config.port))
        LOGGER.info("Listening for commissioning on %s:%s", self.config.host, self.port)
        if self.advertiser is not None and not self.is_commissioned():
            await self.advertiser.announce(self._discovery_record())
            self._advertised = True

    def attach(self, transport: asyncio.DatagramTransport) -> None:
        self._transport = transport

    async def close(self) -> None:
        """Close every session, withdraw advertisement and release the port."""
        if self._closed:
            return
        self._closed = True
        slots = list(self._slots.values())
        for slot in slots:
            if slot.task is not None:
                slot.task.cancel()
        await asyncio.gather(*(slot.task for slot in slots if slot.task is not None), return_exceptions=True)
        for slot in slots:
            slot.session.close()
        self._slots.clear()
        try:
            await self._withdraw()
        finally:
            if self._transport is not None:
                self._transport.close()
                self._transport = None
        LOGGER.info("Commissioning server closed")

    def _discovery_record(self) -> DiscoveryRecord:
        return DiscoveryRecord(
            instance_name=secrets.token_hex(8).upper(),
            port=self.port or self.config.port,
            discriminator=self.secret.discriminator,
            vendor_id=self.identity.vendor_id,
            product_id=self.identity.product_id,
            device_type=self.identity.device_type,
            device_name=self.config.device_name,
        )

    async def _withdraw(self) -> None:
        if self.advertiser is not None and self._advertised:
            self._advertised = False
            await self.advertiser.withdraw()

    # --------------------------
    # Routing
    # --------------------------

    def datagram_received(self, data: bytes, addr: Address) -> None:
        if self._closed:
            return
        try:
            frame = decode_frame(data)
        except MalformedFrameError as exc:
            LOGGER.warning("Dropping datagram from %s: %s", addr, exc)
            return

        key = (addr, frame.session_id)
        slot = self._slots.get(key)
        if slot is None:
            if frame.opcode is not Opcode.PBKDF_PARAM_REQUEST:
                LOGGER.debug("No session %s for %s; dropping %s", frame.session_id, addr, frame.opcode.name)
                return
            if self.is_commissioned():
                LOGGER.info("Device is already commissioned; ignoring discovery from %s", addr)
                return
            slot = self._open_session(key)
        slot.inbox.put_nowait(frame)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            LOGGER.error("UDP listener lost: %s", exc)
        self._transport = None

    def _open_session(self, key: tuple[Address, int]) -> _SessionSlot:
        addr, session_id = key
        session = CommissioningSession(
            session_id,
            addr,
            secret=self.secret,
            crypto=self.crypto,
            issuer=self.issuer,
            endpoints=self._endpoints,
            config=self.config.session,
            on_commissioned=self._on_commissioned,
        )
        slot = _SessionSlot(session=session, inbox=asyncio.Queue())
        self._slots[key] = slot
        slot.task = asyncio.get_running_loop().create_task(
            self._run_session(key, slot),
            name=f"commissioning-session-{session_id}",
        )
        return slot

    async def _run_session(self, key: tuple[Address, int], slot: _SessionSlot) -> None:
        session = slot.session
        try:
            while not session.is_terminal:
                timeout = None if session.state is SessionState.OPERATIONAL else self.config.session.stage_timeout_s
                try:
                    frame = await asyncio.wait_for(slot.inbox.get(), timeout)
                except asyncio.TimeoutError:
                    LOGGER.info("Session %s idle in state %s; closing", session.session_id, session.state.value)
                    session.close()
                    break
                try:
                    replies = await session.handle(frame)
                except CommissioningError as exc:
                    LOGGER.error("Session %s aborted: %s", session.session_id, exc)
                    session.close()
                    break
                except Exception as exc:
                    LOGGER.exception("Session %s failed handling %s", session.session_id, frame.opcode.name)
                    session.fail(exc)
                    break
                for reply in replies:
                    self._send(reply, session.peer)
                if session.state is SessionState.DISCOVERABLE:
                    session.close()
        finally:
            session.close()
            if self._slots.get(key) is slot:
                del self._slots[key]

    def _send(self, data: bytes, addr: Address) -> None:
        if self._transport is None:
            LOGGER.debug("No transport; dropping reply to %s", addr)
            return
        self._transport.sendto(data, addr)

    def _publish(self, endpoint_id: int, attribute: str, value: Any) -> None:
        for slot in list(self._slots.values()):
            data = slot.session.report(endpoint_id, attribute, value)
            if data is not None:
                self._send(data, slot.session.peer)

    async def _on_commissioned(self, session: CommissioningSession) -> None:
        credentials = session.credentials
        self._fabrics.append(
            {
                "fabricId": credentials.fabric_id,
                "nodeId": credentials.node_id,
                "fingerprint": credentials.fingerprint,
            }
        )
        if self.storage is not None:
            self.storage.set(KEY_FABRICS, list(self._fabrics))
            self.storage.flush()
        await self._withdraw()
