"""Commissioning secret and device identity persistence."""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any

from commissionctl.core.errors import InvalidRangeError
from commissionctl.core.model import CommissioningSecret, DeviceDefaults, DeviceIdentity, DeviceType
from commissionctl.core.storage import StorageContext

LOGGER = logging.getLogger(__name__)

MIN_PASSCODE = 1
MAX_PASSCODE = 99999998
MAX_DISCRIMINATOR = 0xFFF
WEAK_PASSCODES = frozenset(
    [int(str(digit) * 8) for digit in range(10)] + [12345678, 87654321]
)

KEY_PASSCODE = "passcode"
KEY_DISCRIMINATOR = "discriminator"
KEY_VENDOR_ID = "vendorid"
KEY_PRODUCT_ID = "productid"
KEY_DEVICE_TYPE = "devicetype"
KEY_UNIQUE_ID = "uniqueid"


def _require_int(value: Any, *, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRangeError(f"{name} must be an integer, got {value!r}")
    return value


def validate_uint(value: Any, bits: int, *, name: str) -> int:
    number = _require_int(value, name=name)
    if number < 0 or number >= 1 << bits:
        raise InvalidRangeError(f"{name} {number} does not fit in {bits} bits")
    return number


def validate_passcode(value: Any) -> int:
    passcode = validate_uint(value, 27, name="passcode")
    if not MIN_PASSCODE <= passcode <= MAX_PASSCODE:
        raise InvalidRangeError(
            f"passcode {passcode} outside valid range {MIN_PASSCODE}..{MAX_PASSCODE}"
        )
    if passcode in WEAK_PASSCODES:
        raise InvalidRangeError(f"passcode {passcode:08d} is a disallowed weak value")
    return passcode


def validate_discriminator(value: Any) -> int:
    return validate_uint(value, 12, name="discriminator")


def generate_passcode() -> int:
    while True:
        candidate = MIN_PASSCODE + secrets.randbelow(MAX_PASSCODE)
        if candidate not in WEAK_PASSCODES:
            return candidate


def generate_discriminator() -> int:
    return secrets.randbelow(MAX_DISCRIMINATOR + 1)


class CredentialStore:
    """Long-lived commissioning secret material backed by a storage context.

    The first ``ensure_defaults`` call fills in missing values and persists
    them; later calls return the persisted values unchanged so the pairing
    code stays stable across restarts. Invalid persisted values are fatal:
    regenerating them would invalidate earlier commissioning.
    """

    def __init__(self, context: StorageContext) -> None:
        self.context = context

    def get(self, key: str, default: Any = None) -> Any:
        return self.context.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.context.set(key, value)

    def ensure_defaults(self, defaults: DeviceDefaults) -> tuple[CommissioningSecret, DeviceIdentity]:
        missing: dict[str, Any] = {}

        def _value(key: str, fallback: Any) -> Any:
            stored = self.get(key)
            if stored is not None:
                return stored
            value = fallback() if callable(fallback) else fallback
            missing[key] = value
            return value

        passcode = _value(
            KEY_PASSCODE,
            defaults.passcode if defaults.passcode is not None else generate_passcode,
        )
        discriminator = _value(
            KEY_DISCRIMINATOR,
            defaults.discriminator if defaults.discriminator is not None else generate_discriminator,
        )
        vendor_id = _value(KEY_VENDOR_ID, defaults.vendor_id)
        product_id = _value(KEY_PRODUCT_ID, defaults.product_id)
        device_type_value = _value(KEY_DEVICE_TYPE, int(defaults.device_type))
        unique_id = _value(KEY_UNIQUE_ID, lambda: int(time.time() * 1000))

        secret = CommissioningSecret(
            passcode=validate_passcode(passcode),
            discriminator=validate_discriminator(discriminator),
        )
        try:
            device_type = DeviceType(validate_uint(device_type_value, 32, name="device type"))
        except ValueError as exc:
            raise InvalidRangeError(f"Unknown persisted device type {device_type_value!r}") from exc
        if device_type != defaults.device_type:
            LOGGER.warning(
                "Persisted device type %s differs from profile device type %s; keeping persisted value",
                device_type.name,
                defaults.device_type.name,
            )

        unique_id = validate_uint(unique_id, 64, name="unique id")
        identity = DeviceIdentity(
            vendor_id=validate_uint(vendor_id, 16, name="vendor id"),
            product_id=validate_uint(product_id, 16, name="product id"),
            device_type=device_type,
            serial_number=f"{defaults.serial_prefix}-{unique_id}",
            unique_id=unique_id,
        )

        if missing:
            for key, value in missing.items():
                self.set(key, value)
            self.context.flush()
            LOGGER.info("Persisted default credentials: %s", ", ".join(sorted(missing)))
        return secret, identity
