from __future__ import annotations

import pytest

from commissionctl.core import pairing_code
from commissionctl.core.errors import InvalidPairingCodeError
from commissionctl.core.model import (
    CommissioningFlow,
    CommissioningSecret,
    DeviceIdentity,
    DeviceType,
    DiscoveryCapabilities,
    ManualCodeData,
    QrCodeData,
)

SECRET = CommissioningSecret(passcode=20202021, discriminator=3840)
IDENTITY = DeviceIdentity(
    vendor_id=0xFFF1,
    product_id=0x8000,
    device_type=DeviceType.ON_OFF_LIGHT,
    serial_number="node-matter-1",
    unique_id=1,
)


def test_short_manual_code_matches_known_value() -> None:
    assert pairing_code.encode_manual_code(SECRET) == "34970112332"


def test_long_manual_code_matches_known_value() -> None:
    assert pairing_code.encode_manual_code(SECRET, IDENTITY, long_form=True) == "749701123365521327687"


@pytest.mark.parametrize(
    ("capabilities", "expected"),
    [
        (DiscoveryCapabilities.BLE, "MT:Y.K9042C00KA0648G00"),
        (DiscoveryCapabilities.ON_NETWORK, "MT:Y.K90AFN00KA0648G00"),
        (DiscoveryCapabilities.NONE, "MT:Y.K90-Q000KA0648G00"),
    ],
)
def test_qr_payload_matches_known_values(capabilities: DiscoveryCapabilities, expected: str) -> None:
    assert pairing_code.encode_qr_payload(SECRET, IDENTITY, capabilities) == expected


def test_encode_is_deterministic() -> None:
    first = pairing_code.encode(SECRET, IDENTITY)
    second = pairing_code.encode(SECRET, IDENTITY)
    assert first == second
    assert first.manual_code == "34970112332"
    assert first.qr_payload == "MT:Y.K90AFN00KA0648G00"


def test_non_standard_flow_uses_long_manual_code() -> None:
    code = pairing_code.encode(SECRET, IDENTITY, flow=CommissioningFlow.USER_ACTION_REQUIRED)
    assert len(code.manual_code) == 21
    decoded = pairing_code.decode_qr_payload(code.qr_payload)
    assert decoded.flow is CommissioningFlow.USER_ACTION_REQUIRED


def test_decode_manual_code_recovers_fields() -> None:
    data = pairing_code.decode_manual_code("3497-011-2332")
    assert data == ManualCodeData(passcode=20202021, short_discriminator=SECRET.short_discriminator)


def test_decode_long_manual_code_recovers_vendor_and_product() -> None:
    data = pairing_code.decode_manual_code("749701123365521327687")
    assert data.passcode == 20202021
    assert data.vendor_id == 0xFFF1
    assert data.product_id == 0x8000


def test_decode_qr_payload_recovers_fields() -> None:
    data = pairing_code.decode_qr_payload("MT:Y.K9042C00KA0648G00")
    assert data == QrCodeData(
        version=0,
        vendor_id=0xFFF1,
        product_id=0x8000,
        flow=CommissioningFlow.STANDARD,
        capabilities=DiscoveryCapabilities.BLE,
        discriminator=3840,
        passcode=20202021,
    )


def test_decode_dispatches_on_prefix() -> None:
    assert isinstance(pairing_code.decode("MT:Y.K90AFN00KA0648G00"), QrCodeData)
    assert isinstance(pairing_code.decode(" 34970112332 "), ManualCodeData)


def test_every_single_digit_mutation_is_rejected() -> None:
    code = "34970112332"
    for position, original in enumerate(code):
        for digit in "0123456789":
            if digit == original:
                continue
            mutated = code[:position] + digit + code[position + 1:]
            with pytest.raises(InvalidPairingCodeError):
                pairing_code.decode_manual_code(mutated)


@pytest.mark.parametrize("code", ["", "1234", "3497011233x", "349701123321"])
def test_malformed_manual_codes_rejected(code: str) -> None:
    with pytest.raises(InvalidPairingCodeError):
        pairing_code.decode_manual_code(code)


def test_qr_payload_with_bad_prefix_rejected() -> None:
    with pytest.raises(InvalidPairingCodeError):
        pairing_code.decode_qr_payload("XX:Y.K90AFN00KA0648G00")


def test_qr_payload_with_invalid_characters_rejected() -> None:
    with pytest.raises(InvalidPairingCodeError):
        pairing_code.decode_qr_payload("MT:y.k90afn00ka0648g00")


def test_verhoeff_check_digit() -> None:
    assert pairing_code.verhoeff_check_digit("236") == "3"
    assert pairing_code.verhoeff_validate("2363")
    assert not pairing_code.verhoeff_validate("2364")


def test_format_manual_code_groups_digits() -> None:
    assert pairing_code.format_manual_code("34970112332") == "3497-011-2332"
    assert pairing_code.format_manual_code("749701123365521327687") == "7497-011-2336-55213-27687"


def test_qr_code_url() -> None:
    url = pairing_code.qr_code_url("MT:Y.K90AFN00KA0648G00")
    assert url.endswith("MT:Y.K90AFN00KA0648G00")
    assert url.startswith("https://")


@pytest.mark.parametrize("passcode", [1, 12345679, 99999998])
@pytest.mark.parametrize("discriminator", [0, 0x0FF, 0xFFF])
@pytest.mark.parametrize(("vendor_id", "product_id"), [(0, 0), (0xFFFF, 0xFFFF), (0, 0xFFFF)])
@pytest.mark.parametrize("flow", list(CommissioningFlow))
@pytest.mark.parametrize(
    "capabilities",
    [
        DiscoveryCapabilities.NONE,
        DiscoveryCapabilities.ON_NETWORK,
        DiscoveryCapabilities.BLE | DiscoveryCapabilities.SOFT_AP,
        DiscoveryCapabilities.BLE | DiscoveryCapabilities.SOFT_AP | DiscoveryCapabilities.ON_NETWORK,
    ],
)
def test_decode_recovers_encoded_values(
    passcode: int,
    discriminator: int,
    vendor_id: int,
    product_id: int,
    flow: CommissioningFlow,
    capabilities: DiscoveryCapabilities,
) -> None:
    secret = CommissioningSecret(passcode=passcode, discriminator=discriminator)
    identity = DeviceIdentity(
        vendor_id=vendor_id,
        product_id=product_id,
        device_type=DeviceType.ON_OFF_PLUG_IN_UNIT,
        serial_number="plug-2",
        unique_id=2,
    )

    short_code = pairing_code.decode(pairing_code.encode_manual_code(secret))
    assert short_code == ManualCodeData(passcode=passcode, short_discriminator=secret.short_discriminator)

    long_code = pairing_code.decode(pairing_code.encode_manual_code(secret, identity, long_form=True))
    assert long_code == ManualCodeData(
        passcode=passcode,
        short_discriminator=secret.short_discriminator,
        vendor_id=vendor_id,
        product_id=product_id,
    )

    qr = pairing_code.decode(pairing_code.encode_qr_payload(secret, identity, capabilities, flow))
    assert qr == QrCodeData(
        version=0,
        vendor_id=vendor_id,
        product_id=product_id,
        flow=flow,
        capabilities=capabilities,
        discriminator=discriminator,
        passcode=passcode,
    )
