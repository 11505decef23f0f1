"""Wire frame codec for commissioning datagrams."""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from enum import IntEnum
from functools import lru_cache
from importlib import resources
from typing import Any

from jsonschema import ValidationError, validators

from commissionctl.core.errors import MalformedFrameError, ProtocolError
from commissionctl.core.pase import CryptoProvider

PROTOCOL_VERSION = 1
FLAG_ENCRYPTED = 0x01
HEADER = struct.Struct("<BBBHI")
NONCE_LEN = 13
MAX_COUNTER = 0xFFFFFFFF


class Opcode(IntEnum):
    PBKDF_PARAM_REQUEST = 0x20
    PBKDF_PARAM_RESPONSE = 0x21
    PAKE1 = 0x22
    PAKE2 = 0x23
    PAKE3 = 0x24
    CONFIGURE = 0x30
    CONFIGURE_RESPONSE = 0x31
    COMMISSIONING_COMPLETE = 0x32
    INVOKE = 0x40
    INVOKE_RESPONSE = 0x41
    READ = 0x42
    REPORT = 0x43
    WRITE = 0x44
    SUBSCRIBE = 0x46
    CLOSE = 0x50
    STATUS = 0x7F


class Direction(IntEnum):
    INITIATOR_TO_RESPONDER = 0
    RESPONDER_TO_INITIATOR = 1


@dataclass(frozen=True)
class Frame:
    opcode: Opcode
    session_id: int
    counter: int
    payload: bytes
    flags: int = 0
    version: int = PROTOCOL_VERSION

    @property
    def encrypted(self) -> bool:
        return bool(self.flags & FLAG_ENCRYPTED)

    @property
    def header(self) -> bytes:
        return HEADER.pack(self.version, self.flags, int(self.opcode), self.session_id, self.counter)

    def encode(self) -> bytes:
        return self.header + self.payload


def decode_frame(data: bytes) -> Frame:
    if len(data) < HEADER.size:
        raise MalformedFrameError(f"Datagram of {len(data)} bytes is shorter than the frame header")
    version, flags, opcode, session_id, counter = HEADER.unpack_from(data)
    try:
        opcode = Opcode(opcode)
    except ValueError as exc:
        raise MalformedFrameError(f"Unknown opcode 0x{opcode:02x}") from exc
    return Frame(
        opcode=opcode,
        session_id=session_id,
        counter=counter,
        payload=bytes(data[HEADER.size:]),
        flags=flags,
        version=version,
    )


def nonce(direction: Direction, session_id: int, counter: int) -> bytes:
    return struct.pack("<BHI", int(direction), session_id, counter).ljust(NONCE_LEN, b"\x00")


@lru_cache(maxsize=1)
def _payload_validators() -> dict[str, Any]:
    schema_text = resources.files("commissionctl.schemas").joinpath("frames.schema.json").read_text(
        encoding="utf-8"
    )
    built: dict[str, Any] = {}
    for name, schema in json.loads(schema_text).items():
        validator_cls = validators.validator_for(schema)
        validator_cls.check_schema(schema)
        built[name] = validator_cls(schema)
    return built


def validate_body(opcode: Opcode, body: Any) -> dict[str, Any]:
    validator = _payload_validators()[opcode.name.lower()]
    try:
        validator.validate(body)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProtocolError(f"Invalid {opcode.name} payload{where}: {exc.message}") from exc
    return body


def encode_body(opcode: Opcode, body: dict[str, Any]) -> bytes:
    validate_body(opcode, body)
    return json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")


def decode_body(opcode: Opcode, payload: bytes) -> dict[str, Any]:
    try:
        body = json.loads(payload.decode("utf-8")) if payload else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"Undecodable {opcode.name} payload: {exc}") from exc
    return validate_body(opcode, body)


def build_frame(
    opcode: Opcode,
    body: dict[str, Any],
    *,
    session_id: int,
    counter: int,
    crypto: CryptoProvider | None = None,
    key: bytes | None = None,
    direction: Direction = Direction.RESPONDER_TO_INITIATOR,
) -> bytes:
    """Encode a frame, sealing the payload when a key is given."""
    plaintext = encode_body(opcode, body)
    if key is None:
        return Frame(opcode=opcode, session_id=session_id, counter=counter, payload=plaintext).encode()
    if crypto is None:
        raise ValueError("crypto provider required to seal a frame")
    frame = Frame(opcode=opcode, session_id=session_id, counter=counter, payload=b"", flags=FLAG_ENCRYPTED)
    sealed = crypto.aead_encrypt(bytes(key), nonce(direction, session_id, counter), plaintext, frame.header)
    return frame.header + sealed


def open_frame(
    frame: Frame,
    *,
    crypto: CryptoProvider | None = None,
    key: bytes | None = None,
    direction: Direction = Direction.INITIATOR_TO_RESPONDER,
) -> dict[str, Any]:
    """Return the validated body of a frame, unsealing it when a key is given.

    Raises FrameIntegrityError when authentication fails and ProtocolError
    when the payload is undecodable or the encryption flag is unexpected.
    """
    if key is None:
        if frame.encrypted:
            raise ProtocolError(f"Unexpected encrypted {frame.opcode.name} frame")
        return decode_body(frame.opcode, frame.payload)
    if not frame.encrypted:
        raise ProtocolError(f"Unencrypted {frame.opcode.name} frame on a secured session")
    if crypto is None:
        raise ValueError("crypto provider required to open a frame")
    plaintext = crypto.aead_decrypt(
        bytes(key),
        nonce(direction, frame.session_id, frame.counter),
        frame.payload,
        frame.header,
    )
    return decode_body(frame.opcode, plaintext)
