"""
Commissioning session state machine.

One session drives a single controller through

    Discoverable -> PaseEstablishing -> PaseEstablished
        -> ConfiguringOperationalCredentials -> Operational

with Closed and Failed as terminal states. The session is sans-IO: the
server feeds it decoded frames one at a time and sends whatever encoded
frames ``handle`` returns. Failure handling:

- integrity failures on sealed payloads are dropped with a warning,
- frames not allowed in the current state, undecodable payloads and
  version mismatches move the session to Failed,
- device-level errors are answered with a status frame and the session
  carries on.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from commissionctl.core.device import DeviceModel
from commissionctl.core.errors import (
    AuthError,
    FrameIntegrityError,
    HandlerError,
    IssuanceError,
    ProtocolError,
    UnsupportedEndpointError,
)
from commissionctl.core.frames import (
    MAX_COUNTER,
    PROTOCOL_VERSION,
    Direction,
    Frame,
    Opcode,
    build_frame,
    open_frame,
)
from commissionctl.core.issuer import CredentialIssuer
from commissionctl.core.model import (
    CommissioningSecret,
    NetworkCredentials,
    OperationalCredentials,
    OperationalRequest,
    StatusCode,
)
from commissionctl.core.pase import (
    DEFAULT_ITERATIONS,
    RANDOM_LEN,
    SALT_LEN,
    CryptoProvider,
    ExchangeResult,
    PaseKeys,
    Verifier,
    compute_verifier,
    exchange_context,
    verifier_share,
    verify_confirmation,
)

LOGGER = logging.getLogger(__name__)

Address = tuple[Any, ...]


@dataclass(frozen=True)
class SessionConfig:
    stage_timeout_s: float = 60.0
    max_auth_attempts: int = 2
    pbkdf_iterations: int = DEFAULT_ITERATIONS


class SessionState(str, Enum):
    DISCOVERABLE = "discoverable"
    PASE_ESTABLISHING = "pase_establishing"
    PASE_ESTABLISHED = "pase_established"
    CONFIGURING = "configuring_operational_credentials"
    OPERATIONAL = "operational"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.CLOSED, SessionState.FAILED})
SECURED_STATES = frozenset(
    {SessionState.PASE_ESTABLISHED, SessionState.CONFIGURING, SessionState.OPERATIONAL}
)


@dataclass
class _PbkdfParams:
    initiator_random: bytes
    responder_random: bytes
    salt: bytes
    iterations: int
    verifier: Verifier


@dataclass
class _PendingExchange:
    result: ExchangeResult
    pb: bytes


class CommissioningSession:
    """Responder side of one commissioning exchange.

    The commissioning secret is snapshotted at construction and never
    re-read. Established keys belong to this session only and are zeroed
    when it closes or fails; a Failed session must be discarded.
    """

    def __init__(
        self,
        session_id: int,
        peer: Address,
        *,
        secret: CommissioningSecret,
        crypto: CryptoProvider,
        issuer: CredentialIssuer,
        endpoints: Mapping[int, DeviceModel],
        config: SessionConfig | None = None,
        on_commissioned: Callable[[CommissioningSession], Awaitable[None]] | None = None,
    ) -> None:
        self.session_id = session_id
        self.peer = peer
        self.secret = secret
        self.config = config or SessionConfig()
        self.state = SessionState.DISCOVERABLE
        self.subscriptions: set[tuple[int, str]] = set()
        self.keys: PaseKeys | None = None
        self.credentials: OperationalCredentials | None = None
        self.last_error: Exception | None = None

        self._crypto = crypto
        self._issuer = issuer
        self._endpoints = endpoints
        self._on_commissioned = on_commissioned
        self._auth_failures = 0
        self._tx_counter = 0
        self._rx_counter = 0
        self._pbkdf: _PbkdfParams | None = None
        self._pending: _PendingExchange | None = None

        self._handlers: dict[SessionState, dict[Opcode, Callable[[dict[str, Any]], Awaitable[list[bytes]]]]] = {
            SessionState.DISCOVERABLE: {Opcode.PBKDF_PARAM_REQUEST: self._on_pbkdf_param_request},
            SessionState.PASE_ESTABLISHING: {Opcode.PAKE1: self._on_pake1, Opcode.PAKE3: self._on_pake3},
            SessionState.PASE_ESTABLISHED: {Opcode.CONFIGURE: self._on_configure},
            SessionState.CONFIGURING: {
                Opcode.CONFIGURE: self._on_configure,
                Opcode.COMMISSIONING_COMPLETE: self._on_commissioning_complete,
            },
            SessionState.OPERATIONAL: {
                Opcode.INVOKE: self._on_invoke,
                Opcode.READ: self._on_read,
                Opcode.WRITE: self._on_write,
                Opcode.SUBSCRIBE: self._on_subscribe,
            },
        }

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    # --------------------------
    # Frame handling
    # --------------------------

    async def handle(self, frame: Frame) -> list[bytes]:
        """Process one inbound frame to completion and return encoded replies."""
        if self.is_terminal:
            LOGGER.debug("Session %s is %s; ignoring %s", self.session_id, self.state.value, frame.opcode.name)
            return []
        if frame.version != PROTOCOL_VERSION:
            self.fail(ProtocolError(f"Protocol version {frame.version} != {PROTOCOL_VERSION}"))
            return []
        if frame.counter <= self._rx_counter:
            LOGGER.debug("Session %s dropping duplicate counter %s", self.session_id, frame.counter)
            return []

        if frame.opcode is Opcode.PBKDF_PARAM_REQUEST and self.state is SessionState.OPERATIONAL:
            self._rx_counter = frame.counter
            LOGGER.info("Device is already commissioned; ignoring discovery from %s", self.peer)
            return []

        try:
            body = self._open(frame)
        except FrameIntegrityError as exc:
            LOGGER.warning("Session %s dropping frame from %s: %s", self.session_id, self.peer, exc)
            return []
        except ProtocolError as exc:
            self.fail(exc)
            return []
        self._rx_counter = frame.counter

        if frame.opcode is Opcode.CLOSE:
            replies = self._reply(Opcode.STATUS, {"status": int(StatusCode.SUCCESS)})
            self.close()
            return replies

        handler = self._handlers.get(self.state, {}).get(frame.opcode)
        if handler is None:
            self.fail(ProtocolError(f"{frame.opcode.name} not allowed in state {self.state.value}"))
            return []
        try:
            return await handler(body)
        except HandlerError as exc:
            LOGGER.info("Session %s: %s", self.session_id, exc)
            return self._status(exc.status, str(exc))
        except (ProtocolError, AuthError) as exc:
            self.fail(exc)
            return []

    def report(self, endpoint: int, attribute: str, value: Any) -> bytes | None:
        """Encode a REPORT for a subscribed (endpoint, attribute), or None."""
        if self.state is not SessionState.OPERATIONAL or (endpoint, attribute) not in self.subscriptions:
            return None
        return self._reply(Opcode.REPORT, {"endpoint": endpoint, "attribute": attribute, "value": value})[0]

    def close(self) -> None:
        if self.is_terminal:
            return
        LOGGER.debug("Session %s closed in state %s", self.session_id, self.state.value)
        self.state = SessionState.CLOSED
        self._release()

    def fail(self, exc: Exception) -> None:
        LOGGER.warning("Session %s with %s failed: %s", self.session_id, self.peer, exc)
        self.last_error = exc
        self.state = SessionState.FAILED
        self._release()

    def _release(self) -> None:
        if self.keys is not None:
            self.keys.zero()
        if self._pending is not None:
            self._pending.result.keys.zero()
            self._pending = None
        self._pbkdf = None
        self.subscriptions.clear()

    def _transition(self, state: SessionState) -> None:
        LOGGER.debug("Session %s: %s -> %s", self.session_id, self.state.value, state.value)
        self.state = state

    def _open(self, frame: Frame) -> dict[str, Any]:
        if self.state in SECURED_STATES:
            return open_frame(
                frame,
                crypto=self._crypto,
                key=self.keys.i2r,
                direction=Direction.INITIATOR_TO_RESPONDER,
            )
        return open_frame(frame)

    def _reply(self, opcode: Opcode, body: dict[str, Any], *, secure: bool | None = None) -> list[bytes]:
        if self._tx_counter >= MAX_COUNTER:
            raise ProtocolError("Message counter exhausted")
        self._tx_counter += 1
        if secure is None:
            secure = self.state in SECURED_STATES
        key = self.keys.r2i if secure and self.keys is not None else None
        return [
            build_frame(
                opcode,
                body,
                session_id=self.session_id,
                counter=self._tx_counter,
                crypto=self._crypto,
                key=key,
                direction=Direction.RESPONDER_TO_INITIATOR,
            )
        ]

    def _status(self, status: StatusCode, reason: str | None = None, *, secure: bool | None = None) -> list[bytes]:
        body: dict[str, Any] = {"status": int(status)}
        if reason:
            body["reason"] = reason
        return self._reply(Opcode.STATUS, body, secure=secure)

    # --------------------------
    # PASE
    # --------------------------

    async def _on_pbkdf_param_request(self, body: dict[str, Any]) -> list[bytes]:
        if body["discriminator"] != self.secret.discriminator:
            # no reply and no transition
            LOGGER.debug("Session %s: discriminator mismatch, ignoring", self.session_id)
            return []
        salt = self._crypto.random_bytes(SALT_LEN)
        self._pbkdf = _PbkdfParams(
            initiator_random=bytes.fromhex(body["initiatorRandom"]),
            responder_random=self._crypto.random_bytes(RANDOM_LEN),
            salt=salt,
            iterations=self.config.pbkdf_iterations,
            verifier=compute_verifier(self._crypto, self.secret.passcode, salt, self.config.pbkdf_iterations),
        )
        self._transition(SessionState.PASE_ESTABLISHING)
        return self._reply(
            Opcode.PBKDF_PARAM_RESPONSE,
            {
                "initiatorRandom": self._pbkdf.initiator_random.hex(),
                "responderRandom": self._pbkdf.responder_random.hex(),
                "salt": self._pbkdf.salt.hex(),
                "iterations": self._pbkdf.iterations,
            },
        )

    async def _on_pake1(self, body: dict[str, Any]) -> list[bytes]:
        params = self._pbkdf
        if self._pending is not None:
            self._pending.result.keys.zero()
            self._pending = None
        pa = bytes.fromhex(body["pA"])
        context = exchange_context(self._crypto, params.initiator_random, params.responder_random)
        pb, result = verifier_share(self._crypto, params.verifier, pa=pa, context=context)
        self._pending = _PendingExchange(result=result, pb=pb)
        return self._reply(
            Opcode.PAKE2,
            {"pB": pb.hex(), "cB": self._crypto.hmac(result.confirmation.kc_b, pa).hex()},
        )

    async def _on_pake3(self, body: dict[str, Any]) -> list[bytes]:
        pending = self._pending
        if pending is None:
            raise ProtocolError("PAKE3 received before PAKE1")
        self._pending = None
        try:
            verify_confirmation(
                self._crypto, pending.result.confirmation.kc_a, pending.pb, bytes.fromhex(body["cA"])
            )
        except AuthError as exc:
            pending.result.keys.zero()
            self._auth_failures += 1
            if self._auth_failures >= self.config.max_auth_attempts:
                replies = self._status(StatusCode.FAILURE, "authentication failed")
                self.fail(AuthError(f"{exc} after {self._auth_failures} attempt(s)"))
                return replies
            LOGGER.warning(
                "Session %s authentication attempt %s of %s failed",
                self.session_id,
                self._auth_failures,
                self.config.max_auth_attempts,
            )
            return self._status(StatusCode.FAILURE, "authentication failed")

        self.keys = pending.result.keys
        replies = self._status(StatusCode.SUCCESS, secure=False)
        self._transition(SessionState.PASE_ESTABLISHED)
        return replies

    # --------------------------
    # Configuration
    # --------------------------

    async def _on_configure(self, body: dict[str, Any]) -> list[bytes]:
        if self.state is SessionState.PASE_ESTABLISHED:
            self._transition(SessionState.CONFIGURING)
        network = body.get("network")
        request = OperationalRequest(
            session_id=self.session_id,
            fabric_id=body["fabricId"],
            node_id=body["nodeId"],
            network=NetworkCredentials(**network) if network is not None else None,
        )
        try:
            credentials = await self._issuer.issue(request)
        except IssuanceError as exc:
            LOGGER.warning("Session %s: %s", self.session_id, exc)
            return self._status(StatusCode.FAILURE, str(exc))
        self.credentials = credentials
        return self._reply(
            Opcode.CONFIGURE_RESPONSE,
            {
                "fabricId": credentials.fabric_id,
                "nodeId": credentials.node_id,
                "fingerprint": credentials.fingerprint,
            },
        )

    async def _on_commissioning_complete(self, body: dict[str, Any]) -> list[bytes]:
        if self.credentials is None:
            raise ProtocolError("Commissioning completed without operational credentials")
        self._transition(SessionState.OPERATIONAL)
        if self._on_commissioned is not None:
            await self._on_commissioned(self)
        LOGGER.info(
            "Session %s commissioned node %016X on fabric %016X",
            self.session_id,
            self.credentials.node_id,
            self.credentials.fabric_id,
        )
        return self._status(StatusCode.SUCCESS)

    # --------------------------
    # Operational
    # --------------------------

    def _endpoint(self, endpoint_id: int) -> DeviceModel:
        device = self._endpoints.get(endpoint_id)
        if device is None:
            raise UnsupportedEndpointError(f"No endpoint {endpoint_id}")
        return device

    async def _on_invoke(self, body: dict[str, Any]) -> list[bytes]:
        device = self._endpoint(body["endpoint"])
        result = await device.dispatch(body["command"], body.get("args"))
        if not isinstance(result, (str, int, float, bool, list, dict, type(None))):
            result = str(result)
        return self._reply(
            Opcode.INVOKE_RESPONSE,
            {
                "endpoint": body["endpoint"],
                "command": body["command"],
                "status": int(StatusCode.SUCCESS),
                "result": result,
            },
        )

    async def _on_read(self, body: dict[str, Any]) -> list[bytes]:
        value = self._endpoint(body["endpoint"]).read_attribute(body["attribute"])
        return self._reply(
            Opcode.REPORT,
            {"endpoint": body["endpoint"], "attribute": body["attribute"], "value": value},
        )

    async def _on_write(self, body: dict[str, Any]) -> list[bytes]:
        await self._endpoint(body["endpoint"]).write_attribute(body["attribute"], body["value"])
        return self._status(StatusCode.SUCCESS)

    async def _on_subscribe(self, body: dict[str, Any]) -> list[bytes]:
        endpoint, attribute = body["endpoint"], body["attribute"]
        value = self._endpoint(endpoint).read_attribute(attribute)
        self.subscriptions.add((endpoint, attribute))
        return self._reply(Opcode.REPORT, {"endpoint": endpoint, "attribute": attribute, "value": value})
