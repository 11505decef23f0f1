from __future__ import annotations

import pytest

from commissionctl.core.errors import FrameIntegrityError, MalformedFrameError, ProtocolError
from commissionctl.core.frames import (
    HEADER,
    Direction,
    Opcode,
    build_frame,
    decode_frame,
    nonce,
    open_frame,
)
from commissionctl.core.pase import CryptographyProvider

KEY = bytes(range(16))


def test_plaintext_frame_header_layout() -> None:
    data = build_frame(Opcode.STATUS, {"status": 0}, session_id=0x1234, counter=5)
    assert data[: HEADER.size] == bytes([1, 0, 0x7F, 0x34, 0x12, 5, 0, 0, 0])

    frame = decode_frame(data)
    assert frame.opcode is Opcode.STATUS
    assert not frame.encrypted
    assert open_frame(frame) == {"status": 0}


def test_sealed_frame_opens_with_matching_key_and_direction() -> None:
    crypto = CryptographyProvider()
    data = build_frame(
        Opcode.READ,
        {"endpoint": 1, "attribute": "onOff"},
        session_id=3,
        counter=9,
        crypto=crypto,
        key=KEY,
        direction=Direction.INITIATOR_TO_RESPONDER,
    )
    frame = decode_frame(data)
    assert frame.encrypted
    assert b"onOff" not in frame.payload
    assert open_frame(frame, crypto=crypto, key=KEY) == {"endpoint": 1, "attribute": "onOff"}

    with pytest.raises(FrameIntegrityError):
        open_frame(frame, crypto=crypto, key=KEY, direction=Direction.RESPONDER_TO_INITIATOR)


def test_sealed_header_is_authenticated() -> None:
    crypto = CryptographyProvider()
    data = bytearray(build_frame(Opcode.CLOSE, {}, session_id=3, counter=9, crypto=crypto, key=KEY))
    data[5] = 10
    with pytest.raises(FrameIntegrityError):
        open_frame(decode_frame(bytes(data)), crypto=crypto, key=KEY, direction=Direction.RESPONDER_TO_INITIATOR)


def test_encryption_state_must_match() -> None:
    crypto = CryptographyProvider()
    plaintext = decode_frame(build_frame(Opcode.CLOSE, {}, session_id=1, counter=1))
    sealed = decode_frame(build_frame(Opcode.CLOSE, {}, session_id=1, counter=1, crypto=crypto, key=KEY))
    with pytest.raises(ProtocolError):
        open_frame(plaintext, crypto=crypto, key=KEY)
    with pytest.raises(ProtocolError):
        open_frame(sealed)


@pytest.mark.parametrize("data", [b"", b"\x01\x00\x20", bytes([1, 0, 0x99, 0, 0, 1, 0, 0, 0])])
def test_undecodable_headers_rejected(data: bytes) -> None:
    with pytest.raises(MalformedFrameError):
        decode_frame(data)


@pytest.mark.parametrize(
    "payload",
    [b"not json", b'{"initiatorRandom": "00", "discriminator": 3840}', b'{"discriminator": 5000}'],
)
def test_invalid_payloads_rejected(payload: bytes) -> None:
    frame = decode_frame(HEADER.pack(1, 0, Opcode.PBKDF_PARAM_REQUEST, 1, 1) + payload)
    with pytest.raises(ProtocolError):
        open_frame(frame)


def test_builder_validates_outgoing_bodies() -> None:
    with pytest.raises(ProtocolError):
        build_frame(Opcode.STATUS, {"status": 300}, session_id=1, counter=1)


def test_nonce_layout() -> None:
    assert nonce(Direction.RESPONDER_TO_INITIATOR, 0x0102, 7) == bytes([1, 2, 1, 7, 0, 0, 0]) + bytes(6)
