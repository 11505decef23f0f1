"""Operational credential issuance collaborators."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from commissionctl.core.errors import IssuanceError
from commissionctl.core.model import OperationalCredentials, OperationalRequest

LOGGER = logging.getLogger(__name__)


class CredentialIssuer(Protocol):
    async def issue(self, request: OperationalRequest) -> OperationalCredentials:
        """Issue operational credentials for a commissioned node."""


class LocalCredentialIssuer:
    """Issues a self-signed P-256 node certificate.

    Key generation and signing run in a worker thread so only the requesting
    session waits on them.
    """

    def __init__(self, *, validity_days: int = 365) -> None:
        self.validity_days = validity_days

    async def issue(self, request: OperationalRequest) -> OperationalCredentials:
        try:
            return await asyncio.to_thread(self._issue, request)
        except (ValueError, TypeError) as exc:
            raise IssuanceError(f"Could not issue credentials for node {request.node_id:016X}: {exc}") from exc

    def _issue(self, request: OperationalRequest) -> OperationalCredentials:
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, f"{request.node_id:016X}"),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, f"{request.fabric_id:016X}"),
            ]
        )
        now = datetime.now(timezone.utc)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=self.validity_days))
            .sign(key, hashes.SHA256())
        )
        fingerprint = certificate.fingerprint(hashes.SHA256()).hex()
        LOGGER.debug("Issued node certificate %s for fabric %016X", fingerprint, request.fabric_id)
        return OperationalCredentials(
            fabric_id=request.fabric_id,
            node_id=request.node_id,
            certificate=certificate.public_bytes(serialization.Encoding.DER),
            fingerprint=fingerprint,
        )
