"""Controller-side commissioner used by tests and debug tooling.

The commissioner is sans-IO: each method returns the encoded frame to send
and ``receive`` decodes whatever the device sent back.
"""

from __future__ import annotations

from typing import Any

from commissionctl.core.errors import AuthError, ProtocolError
from commissionctl.core.frames import Direction, Opcode, build_frame, decode_frame, open_frame
from commissionctl.core.model import StatusCode
from commissionctl.core.pase import (
    RANDOM_LEN,
    CryptoProvider,
    CryptographyProvider,
    PaseKeys,
    compute_w0w1,
    exchange_context,
    prover_finish,
    prover_share,
    verify_confirmation,
)


class Commissioner:
    def __init__(
        self,
        passcode: int,
        discriminator: int,
        *,
        session_id: int,
        crypto: CryptoProvider | None = None,
    ) -> None:
        self.passcode = passcode
        self.discriminator = discriminator
        self.session_id = session_id
        self.crypto = crypto or CryptographyProvider()
        self.keys: PaseKeys | None = None
        self._pending_keys: PaseKeys | None = None
        self.peer_verified = False
        self._counter = 0
        self._initiator_random = b""
        self._context = b""
        self._w0 = 0
        self._w1 = 0
        self._x = 0
        self._pa = b""

    def _next_counter(self) -> int:
        self._counter += 1
        return self._counter

    def frame(self, opcode: Opcode, body: dict[str, Any] | None = None, *, secure: bool | None = None) -> bytes:
        """Build an arbitrary frame; sealed once keys exist unless secure is False."""
        if secure is None:
            secure = self.keys is not None
        return build_frame(
            opcode,
            body or {},
            session_id=self.session_id,
            counter=self._next_counter(),
            crypto=self.crypto,
            key=self.keys.i2r if secure and self.keys is not None else None,
            direction=Direction.INITIATOR_TO_RESPONDER,
        )

    def receive(self, data: bytes) -> tuple[Opcode, dict[str, Any]]:
        frame = decode_frame(data)
        if frame.session_id != self.session_id:
            raise ProtocolError(f"Frame for session {frame.session_id}, expected {self.session_id}")
        key = self.keys.r2i if frame.encrypted and self.keys is not None else None
        body = open_frame(frame, crypto=self.crypto, key=key, direction=Direction.RESPONDER_TO_INITIATOR)
        return frame.opcode, body

    # --------------------------
    # PASE
    # --------------------------

    def pbkdf_param_request(self) -> bytes:
        self._initiator_random = self.crypto.random_bytes(RANDOM_LEN)
        return self.frame(
            Opcode.PBKDF_PARAM_REQUEST,
            {"initiatorRandom": self._initiator_random.hex(), "discriminator": self.discriminator},
        )

    def pake1(self, pbkdf_response: bytes) -> bytes:
        opcode, body = self.receive(pbkdf_response)
        if opcode is not Opcode.PBKDF_PARAM_RESPONSE:
            raise ProtocolError(f"Expected PBKDF_PARAM_RESPONSE, got {opcode.name}")
        self._context = exchange_context(
            self.crypto,
            self._initiator_random,
            bytes.fromhex(body["responderRandom"]),
        )
        self._w0, self._w1 = compute_w0w1(
            self.crypto, self.passcode, bytes.fromhex(body["salt"]), body["iterations"]
        )
        return self.retry_pake1()

    def retry_pake1(self) -> bytes:
        self._x, self._pa = prover_share(self.crypto, self._w0)
        return self.frame(Opcode.PAKE1, {"pA": self._pa.hex()})

    def pake3(self, pake2: bytes) -> bytes:
        opcode, body = self.receive(pake2)
        if opcode is not Opcode.PAKE2:
            raise ProtocolError(f"Expected PAKE2, got {opcode.name}")
        pb = bytes.fromhex(body["pB"])
        result = prover_finish(
            self.crypto, w0=self._w0, w1=self._w1, x=self._x, pa=self._pa, pb=pb, context=self._context
        )
        try:
            verify_confirmation(self.crypto, result.confirmation.kc_b, self._pa, bytes.fromhex(body["cB"]))
            self.peer_verified = True
        except AuthError:
            self.peer_verified = False
        self._pending_keys = result.keys
        return self.frame(Opcode.PAKE3, {"cA": self.crypto.hmac(result.confirmation.kc_a, pb).hex()})

    def establish(self, status: bytes) -> StatusCode:
        """Consume the PAKE3 status; keys become active on success."""
        opcode, body = self.receive(status)
        if opcode is not Opcode.STATUS:
            raise ProtocolError(f"Expected STATUS, got {opcode.name}")
        code = StatusCode(body["status"])
        if code is StatusCode.SUCCESS:
            self.keys = self._pending_keys
        return code

    # --------------------------
    # Secured requests
    # --------------------------

    def configure(self, fabric_id: int, node_id: int, *, network: dict[str, str] | None = None) -> bytes:
        body: dict[str, Any] = {"fabricId": fabric_id, "nodeId": node_id}
        if network is not None:
            body["network"] = network
        return self.frame(Opcode.CONFIGURE, body)

    def commissioning_complete(self) -> bytes:
        return self.frame(Opcode.COMMISSIONING_COMPLETE)

    def invoke(self, endpoint: int, command: str, args: dict[str, Any] | None = None) -> bytes:
        body: dict[str, Any] = {"endpoint": endpoint, "command": command}
        if args is not None:
            body["args"] = args
        return self.frame(Opcode.INVOKE, body)

    def read(self, endpoint: int, attribute: str) -> bytes:
        return self.frame(Opcode.READ, {"endpoint": endpoint, "attribute": attribute})

    def write(self, endpoint: int, attribute: str, value: Any) -> bytes:
        return self.frame(Opcode.WRITE, {"endpoint": endpoint, "attribute": attribute, "value": value})

    def subscribe(self, endpoint: int, attribute: str) -> bytes:
        return self.frame(Opcode.SUBSCRIBE, {"endpoint": endpoint, "attribute": attribute})

    def close(self) -> bytes:
        return self.frame(Opcode.CLOSE)
