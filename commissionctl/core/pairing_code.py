"""Manual pairing code and QR payload codec.

Both encodings are pure functions of the commissioning secret, the device
identity and the advertised discovery capabilities. The manual code carries
a Verhoeff check digit; the QR payload is a fixed 88-bit little-endian bit
layout rendered in base-38.
"""

from __future__ import annotations

from commissionctl.core.errors import InvalidPairingCodeError
from commissionctl.core.model import (
    CommissioningFlow,
    CommissioningSecret,
    DeviceIdentity,
    DiscoveryCapabilities,
    ManualCodeData,
    PairingCode,
    QrCodeData,
)

QR_PREFIX = "MT:"
QR_VERSION = 0
QR_CODE_URL = "https://project-chip.github.io/connectedhomeip/qrcode.html?data="
BASE38_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ-."

# (field, bit width) in packing order, least significant first
_QR_FIELDS = (
    ("version", 3),
    ("vendor_id", 16),
    ("product_id", 16),
    ("flow", 2),
    ("capabilities", 8),
    ("discriminator", 12),
    ("passcode", 27),
    ("padding", 4),
)
_QR_BYTES = sum(width for _, width in _QR_FIELDS) // 8

_SHORT_CODE_DIGITS = 11
_LONG_CODE_DIGITS = 21

_VERHOEFF_D = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 2, 3, 4, 0, 6, 7, 8, 9, 5),
    (2, 3, 4, 0, 1, 7, 8, 9, 5, 6),
    (3, 4, 0, 1, 2, 8, 9, 5, 6, 7),
    (4, 0, 1, 2, 3, 9, 5, 6, 7, 8),
    (5, 9, 8, 7, 6, 0, 4, 3, 2, 1),
    (6, 5, 9, 8, 7, 1, 0, 4, 3, 2),
    (7, 6, 5, 9, 8, 2, 1, 0, 4, 3),
    (8, 7, 6, 5, 9, 3, 2, 1, 0, 4),
    (9, 8, 7, 6, 5, 4, 3, 2, 1, 0),
)
_VERHOEFF_P = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 5, 7, 6, 2, 8, 3, 0, 9, 4),
    (5, 8, 0, 3, 7, 9, 6, 1, 4, 2),
    (8, 9, 1, 6, 0, 4, 3, 5, 2, 7),
    (9, 4, 5, 3, 1, 2, 6, 8, 7, 0),
    (4, 2, 8, 6, 5, 7, 3, 9, 0, 1),
    (2, 7, 9, 3, 8, 0, 6, 4, 1, 5),
    (7, 0, 4, 6, 9, 1, 3, 2, 5, 8),
)
_VERHOEFF_INV = (0, 4, 3, 2, 1, 5, 6, 7, 8, 9)


def verhoeff_check_digit(digits: str) -> str:
    check = 0
    for position, char in enumerate(reversed(digits)):
        check = _VERHOEFF_D[check][_VERHOEFF_P[(position + 1) % 8][int(char)]]
    return str(_VERHOEFF_INV[check])


def verhoeff_validate(code: str) -> bool:
    if not code.isdigit():
        return False
    check = 0
    for position, char in enumerate(reversed(code)):
        check = _VERHOEFF_D[check][_VERHOEFF_P[position % 8][int(char)]]
    return check == 0


def base38_encode(data: bytes) -> str:
    chars: list[str] = []
    for offset in range(0, len(data), 3):
        chunk = data[offset:offset + 3]
        value = int.from_bytes(chunk, "little")
        for _ in range({3: 5, 2: 4, 1: 2}[len(chunk)]):
            value, index = divmod(value, len(BASE38_ALPHABET))
            chars.append(BASE38_ALPHABET[index])
    return "".join(chars)


def base38_decode(text: str) -> bytes:
    out = bytearray()
    for offset in range(0, len(text), 5):
        chunk = text[offset:offset + 5]
        size = {5: 3, 4: 2, 2: 1}.get(len(chunk))
        if size is None:
            raise InvalidPairingCodeError(f"Invalid base-38 length {len(text)}")
        value = 0
        for char in reversed(chunk):
            index = BASE38_ALPHABET.find(char)
            if index < 0:
                raise InvalidPairingCodeError(f"Invalid base-38 character {char!r}")
            value = value * len(BASE38_ALPHABET) + index
        if value >= 1 << (8 * size):
            raise InvalidPairingCodeError(f"Base-38 chunk {chunk!r} overflows {size} bytes")
        out += value.to_bytes(size, "little")
    return bytes(out)


def encode_manual_code(
    secret: CommissioningSecret,
    identity: DeviceIdentity | None = None,
    *,
    long_form: bool = False,
) -> str:
    if long_form and identity is None:
        raise ValueError("long form manual code requires a device identity")
    short_discriminator = secret.short_discriminator
    chunk1 = (int(long_form) << 2) | (short_discriminator >> 2)
    chunk2 = ((short_discriminator & 0x3) << 14) | (secret.passcode & 0x3FFF)
    chunk3 = secret.passcode >> 14
    digits = f"{chunk1:01d}{chunk2:05d}{chunk3:04d}"
    if long_form:
        digits += f"{identity.vendor_id:05d}{identity.product_id:05d}"
    return digits + verhoeff_check_digit(digits)


def decode_manual_code(code: str) -> ManualCodeData:
    digits = code.replace("-", "").replace(" ", "")
    if not digits.isdigit() or len(digits) not in (_SHORT_CODE_DIGITS, _LONG_CODE_DIGITS):
        raise InvalidPairingCodeError(
            f"Manual pairing code must be {_SHORT_CODE_DIGITS} or {_LONG_CODE_DIGITS} digits"
        )
    if not verhoeff_validate(digits):
        raise InvalidPairingCodeError("Manual pairing code check digit mismatch")

    chunk1 = int(digits[0])
    if chunk1 > 7:
        raise InvalidPairingCodeError(f"Manual pairing code leading digit {chunk1} is reserved")
    long_form = bool(chunk1 & 0x4)
    if long_form != (len(digits) == _LONG_CODE_DIGITS):
        raise InvalidPairingCodeError("Manual pairing code length does not match its form flag")

    chunk2 = int(digits[1:6])
    chunk3 = int(digits[6:10])
    if chunk2 > 0xFFFF or chunk3 > 0x1FFF:
        raise InvalidPairingCodeError("Manual pairing code chunk out of range")
    passcode = (chunk2 & 0x3FFF) | (chunk3 << 14)
    short_discriminator = ((chunk1 & 0x3) << 2) | (chunk2 >> 14)

    vendor_id = product_id = None
    if long_form:
        vendor_id = int(digits[10:15])
        product_id = int(digits[15:20])
        if vendor_id > 0xFFFF or product_id > 0xFFFF:
            raise InvalidPairingCodeError("Manual pairing code vendor/product id out of range")
    return ManualCodeData(
        passcode=passcode,
        short_discriminator=short_discriminator,
        vendor_id=vendor_id,
        product_id=product_id,
    )


def encode_qr_payload(
    secret: CommissioningSecret,
    identity: DeviceIdentity,
    capabilities: DiscoveryCapabilities = DiscoveryCapabilities.ON_NETWORK,
    flow: CommissioningFlow = CommissioningFlow.STANDARD,
) -> str:
    values = {
        "version": QR_VERSION,
        "vendor_id": identity.vendor_id,
        "product_id": identity.product_id,
        "flow": int(flow),
        "capabilities": int(capabilities),
        "discriminator": secret.discriminator,
        "passcode": secret.passcode,
        "padding": 0,
    }
    packed = 0
    shift = 0
    for name, width in _QR_FIELDS:
        value = values[name]
        if value < 0 or value >= 1 << width:
            raise ValueError(f"QR field {name}={value} does not fit in {width} bits")
        packed |= value << shift
        shift += width
    return QR_PREFIX + base38_encode(packed.to_bytes(_QR_BYTES, "little"))


def decode_qr_payload(payload: str) -> QrCodeData:
    if not payload.startswith(QR_PREFIX):
        raise InvalidPairingCodeError(f"QR payload must start with {QR_PREFIX!r}")
    data = base38_decode(payload[len(QR_PREFIX):])
    if len(data) < _QR_BYTES:
        raise InvalidPairingCodeError(f"QR payload too short: {len(data)} bytes")

    # bytes past the fixed layout carry optional TLV data, which is not interpreted
    packed = int.from_bytes(data[:_QR_BYTES], "little")
    fields: dict[str, int] = {}
    for name, width in _QR_FIELDS:
        fields[name] = packed & ((1 << width) - 1)
        packed >>= width

    if fields["version"] != QR_VERSION:
        raise InvalidPairingCodeError(f"Unsupported QR payload version {fields['version']}")
    try:
        flow = CommissioningFlow(fields["flow"])
    except ValueError as exc:
        raise InvalidPairingCodeError(f"Invalid commissioning flow {fields['flow']}") from exc
    return QrCodeData(
        version=fields["version"],
        vendor_id=fields["vendor_id"],
        product_id=fields["product_id"],
        flow=flow,
        capabilities=DiscoveryCapabilities(fields["capabilities"]),
        discriminator=fields["discriminator"],
        passcode=fields["passcode"],
    )


def encode(
    secret: CommissioningSecret,
    identity: DeviceIdentity,
    capabilities: DiscoveryCapabilities = DiscoveryCapabilities.ON_NETWORK,
    flow: CommissioningFlow = CommissioningFlow.STANDARD,
) -> PairingCode:
    return PairingCode(
        manual_code=encode_manual_code(
            secret,
            identity,
            long_form=flow != CommissioningFlow.STANDARD,
        ),
        qr_payload=encode_qr_payload(secret, identity, capabilities, flow),
    )


def decode(code: str) -> ManualCodeData | QrCodeData:
    """Decode either representation; used by debug tooling."""
    text = code.strip()
    if text.startswith(QR_PREFIX):
        return decode_qr_payload(text)
    return decode_manual_code(text)


def format_manual_code(code: str) -> str:
    groups = (4, 3, 4) if len(code) == _SHORT_CODE_DIGITS else (4, 3, 4, 5, 5)
    parts: list[str] = []
    offset = 0
    for size in groups:
        parts.append(code[offset:offset + size])
        offset += size
    return "-".join(parts)


def qr_code_url(payload: str) -> str:
    return QR_CODE_URL + payload
