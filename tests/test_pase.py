from __future__ import annotations

import pytest

from commissionctl.core.errors import AuthError, ProtocolError
from commissionctl.core.pase import (
    P256_M,
    CryptographyProvider,
    compute_verifier,
    compute_w0w1,
    exchange_context,
    prover_finish,
    prover_share,
    verifier_share,
    verify_confirmation,
)

SALT = bytes(range(32))
CONTEXT = b"\x01" * 32


@pytest.fixture
def crypto() -> CryptographyProvider:
    return CryptographyProvider()


def test_verifier_holds_w0_and_l_point(crypto: CryptographyProvider) -> None:
    w0, w1 = compute_w0w1(crypto, 20202021, SALT, 1000)
    verifier = compute_verifier(crypto, 20202021, SALT, 1000)

    assert verifier.w0 == w0
    assert verifier.l_point == crypto.point_mul(w1)
    assert len(verifier.l_point) == 65 and verifier.l_point[0] == 0x04


def test_matching_passcodes_agree_on_keys_and_confirmations(crypto: CryptographyProvider) -> None:
    w0, w1 = compute_w0w1(crypto, 20202021, SALT, 1000)
    x, pa = prover_share(crypto, w0)
    pb, device = verifier_share(crypto, compute_verifier(crypto, 20202021, SALT, 1000), pa=pa, context=CONTEXT)
    prover = prover_finish(crypto, w0=w0, w1=w1, x=x, pa=pa, pb=pb, context=CONTEXT)

    assert prover.confirmation == device.confirmation
    assert bytes(prover.keys.i2r) == bytes(device.keys.i2r)
    assert bytes(prover.keys.r2i) == bytes(device.keys.r2i)
    verify_confirmation(crypto, device.confirmation.kc_a, pb, crypto.hmac(prover.confirmation.kc_a, pb))


def test_mismatched_passcode_fails_confirmation(crypto: CryptographyProvider) -> None:
    w0, w1 = compute_w0w1(crypto, 20202022, SALT, 1000)
    x, pa = prover_share(crypto, w0)
    pb, device = verifier_share(crypto, compute_verifier(crypto, 20202021, SALT, 1000), pa=pa, context=CONTEXT)
    prover = prover_finish(crypto, w0=w0, w1=w1, x=x, pa=pa, pb=pb, context=CONTEXT)

    with pytest.raises(AuthError):
        verify_confirmation(crypto, device.confirmation.kc_a, pb, crypto.hmac(prover.confirmation.kc_a, pb))


def test_shares_are_blinded_per_exchange(crypto: CryptographyProvider) -> None:
    w0, _ = compute_w0w1(crypto, 20202021, SALT, 1000)
    assert prover_share(crypto, w0)[1] != prover_share(crypto, w0)[1]


def test_invalid_share_is_rejected(crypto: CryptographyProvider) -> None:
    verifier = compute_verifier(crypto, 20202021, SALT, 1000)
    with pytest.raises(ProtocolError):
        verifier_share(crypto, verifier, pa=b"\x04" + bytes(64), context=CONTEXT)


def test_blinding_point_decodes(crypto: CryptographyProvider) -> None:
    assert crypto.point_sub(crypto.point_add(crypto.point_mul(5), P256_M), P256_M) == crypto.point_mul(5)


def test_context_binds_both_randoms(crypto: CryptographyProvider) -> None:
    assert exchange_context(crypto, b"a" * 32, b"b" * 32) != exchange_context(crypto, b"b" * 32, b"a" * 32)
