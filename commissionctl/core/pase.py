"""Password-authenticated session establishment primitives.

SPAKE2+ over NIST P-256. The commissioner (prover) stretches the passcode
into ``w0``/``w1``; the device (verifier) only needs ``w0`` and
``L = w1*G``. Shares are blinded with the fixed points M and N so a share
binds its sender to a single passcode guess, and the confirmation MACs are
computed over the full transcript.

The exchange is expressed against a ``CryptoProvider`` capability so the
session state machine never touches primitives directly.
"""

from __future__ import annotations

import hmac
import os
import secrets
from dataclasses import dataclass
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESCCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from ecdsa import NIST256p, ellipticcurve

from commissionctl.core.errors import AuthError, FrameIntegrityError, ProtocolError

RANDOM_LEN = 32
SALT_LEN = 32
# group order size plus 8 bytes per scalar
W_LEN = 40
KEY_LEN = 16
DEFAULT_ITERATIONS = 1000
CONTEXT_PREFIX = b"CHIP PAKE V1 Commissioning"

P256_M = bytes.fromhex("02886e2f97ace46e55ba9dd7242579f2993b64e16ef3dcab95afd497333d8fa12f")
P256_N = bytes.fromhex("03d8bbd6c639c62937b04d997f38c3770719c629d7014d49a24b4f98baa1292b49")

_CURVE = NIST256p.curve
_GENERATOR = NIST256p.generator
_ORDER: int = _GENERATOR.order()


class CryptoProvider(Protocol):
    def random_bytes(self, length: int) -> bytes: ...

    def pbkdf2(self, secret: bytes, salt: bytes, iterations: int, length: int) -> bytes: ...

    def sha256(self, data: bytes) -> bytes: ...

    def hmac(self, key: bytes, data: bytes) -> bytes: ...

    def hkdf(self, ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes: ...

    def random_scalar(self) -> int: ...

    def reduce_scalar(self, data: bytes) -> int: ...

    def point_mul(self, scalar: int, point: bytes | None = None) -> bytes: ...

    def point_add(self, first: bytes, second: bytes) -> bytes: ...

    def point_sub(self, first: bytes, second: bytes) -> bytes: ...

    def aead_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes: ...

    def aead_decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes: ...


def _decode_point(data: bytes) -> ellipticcurve.PointJacobi:
    try:
        numbers = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), data).public_numbers()
    except ValueError as exc:
        raise ProtocolError(f"Invalid P-256 point: {exc}") from exc
    return ellipticcurve.PointJacobi.from_affine(ellipticcurve.Point(_CURVE, numbers.x, numbers.y, _ORDER))


def _encode_point(point) -> bytes:
    if point is not ellipticcurve.INFINITY:
        point = point.to_affine()
    if point is ellipticcurve.INFINITY:
        raise ProtocolError("Point at infinity")
    numbers = ec.EllipticCurvePublicNumbers(point.x(), point.y(), ec.SECP256R1())
    return numbers.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )


class CryptographyProvider:
    """CryptoProvider backed by ``cryptography`` with ``ecdsa`` point arithmetic."""

    def random_bytes(self, length: int) -> bytes:
        return os.urandom(length)

    def pbkdf2(self, secret: bytes, salt: bytes, iterations: int, length: int) -> bytes:
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=length, salt=salt, iterations=iterations)
        return kdf.derive(secret)

    def sha256(self, data: bytes) -> bytes:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(data)
        return digest.finalize()

    def hmac(self, key: bytes, data: bytes) -> bytes:
        mac = crypto_hmac.HMAC(key, hashes.SHA256())
        mac.update(data)
        return mac.finalize()

    def hkdf(self, ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
        return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)

    def random_scalar(self) -> int:
        return secrets.randbelow(_ORDER - 1) + 1

    def reduce_scalar(self, data: bytes) -> int:
        return int.from_bytes(data, "big") % _ORDER

    def point_mul(self, scalar: int, point: bytes | None = None) -> bytes:
        base = _GENERATOR if point is None else _decode_point(point)
        return _encode_point(scalar * base)

    def point_add(self, first: bytes, second: bytes) -> bytes:
        return _encode_point(_decode_point(first) + _decode_point(second))

    def point_sub(self, first: bytes, second: bytes) -> bytes:
        return _encode_point(_decode_point(first) + (-_decode_point(second)))

    def aead_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        return AESCCM(key, tag_length=16).encrypt(nonce, plaintext, aad)

    def aead_decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes:
        try:
            return AESCCM(key, tag_length=16).decrypt(nonce, ciphertext, aad)
        except InvalidTag as exc:
            raise FrameIntegrityError("Payload authentication failed") from exc


@dataclass
class PaseKeys:
    """Session keys owned by exactly one session; zeroed when it ends."""

    i2r: bytearray
    r2i: bytearray
    challenge: bytearray

    def zero(self) -> None:
        for buffer in (self.i2r, self.r2i, self.challenge):
            buffer[:] = bytes(len(buffer))

    @property
    def is_zeroed(self) -> bool:
        return not any(self.i2r) and not any(self.r2i) and not any(self.challenge)


@dataclass(frozen=True)
class Verifier:
    """What the device keeps of the passcode: ``w0`` and ``L = w1*G``."""

    w0: int
    l_point: bytes


@dataclass(frozen=True)
class Confirmation:
    kc_a: bytes
    kc_b: bytes


@dataclass
class ExchangeResult:
    confirmation: Confirmation
    keys: PaseKeys


def compute_w0w1(crypto: CryptoProvider, passcode: int, salt: bytes, iterations: int) -> tuple[int, int]:
    stretched = crypto.pbkdf2(passcode.to_bytes(4, "little"), salt, iterations, 2 * W_LEN)
    return crypto.reduce_scalar(stretched[:W_LEN]), crypto.reduce_scalar(stretched[W_LEN:])


def compute_verifier(crypto: CryptoProvider, passcode: int, salt: bytes, iterations: int) -> Verifier:
    w0, w1 = compute_w0w1(crypto, passcode, salt, iterations)
    return Verifier(w0=w0, l_point=crypto.point_mul(w1))


def exchange_context(crypto: CryptoProvider, initiator_random: bytes, responder_random: bytes) -> bytes:
    return crypto.sha256(CONTEXT_PREFIX + initiator_random + responder_random)


def prover_share(crypto: CryptoProvider, w0: int) -> tuple[int, bytes]:
    """Return the prover's ephemeral scalar x and share pA = x*G + w0*M."""
    x = crypto.random_scalar()
    return x, crypto.point_add(crypto.point_mul(x), crypto.point_mul(w0, P256_M))


def verifier_share(
    crypto: CryptoProvider,
    verifier: Verifier,
    *,
    pa: bytes,
    context: bytes,
) -> tuple[bytes, ExchangeResult]:
    """Answer pA with pB = y*G + w0*N and derive the verifier's keys."""
    y = crypto.random_scalar()
    pb = crypto.point_add(crypto.point_mul(y), crypto.point_mul(verifier.w0, P256_N))
    unblinded = crypto.point_sub(pa, crypto.point_mul(verifier.w0, P256_M))
    z = crypto.point_mul(y, unblinded)
    v = crypto.point_mul(y, verifier.l_point)
    return pb, _key_schedule(crypto, context=context, pa=pa, pb=pb, z=z, v=v, w0=verifier.w0)


def prover_finish(
    crypto: CryptoProvider,
    *,
    w0: int,
    w1: int,
    x: int,
    pa: bytes,
    pb: bytes,
    context: bytes,
) -> ExchangeResult:
    unblinded = crypto.point_sub(pb, crypto.point_mul(w0, P256_N))
    z = crypto.point_mul(x, unblinded)
    v = crypto.point_mul(w1, unblinded)
    return _key_schedule(crypto, context=context, pa=pa, pb=pb, z=z, v=v, w0=w0)


def _len8le(data: bytes) -> bytes:
    return len(data).to_bytes(8, "little") + data


def _key_schedule(
    crypto: CryptoProvider,
    *,
    context: bytes,
    pa: bytes,
    pb: bytes,
    z: bytes,
    v: bytes,
    w0: int,
) -> ExchangeResult:
    transcript = b"".join(
        _len8le(part)
        for part in (context, b"", b"", P256_M, P256_N, pa, pb, z, v, w0.to_bytes(32, "big"))
    )
    digest = crypto.sha256(transcript)
    ka, ke = digest[:KEY_LEN], digest[KEY_LEN:]
    zero_salt = bytes(32)
    confirm = crypto.hkdf(ka, zero_salt, b"ConfirmationKeys", 2 * KEY_LEN)
    material = crypto.hkdf(ke, zero_salt, b"SessionKeys", 3 * KEY_LEN)
    return ExchangeResult(
        confirmation=Confirmation(kc_a=confirm[:KEY_LEN], kc_b=confirm[KEY_LEN:]),
        keys=PaseKeys(
            i2r=bytearray(material[:KEY_LEN]),
            r2i=bytearray(material[KEY_LEN:2 * KEY_LEN]),
            challenge=bytearray(material[2 * KEY_LEN:]),
        ),
    )


def verify_confirmation(crypto: CryptoProvider, key: bytes, data: bytes, received: bytes) -> None:
    if not hmac.compare_digest(crypto.hmac(key, data), received):
        raise AuthError("Key confirmation mismatch")
