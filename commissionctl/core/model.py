"""Core data models used across codec, session, server, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, IntFlag


class StatusCode(IntEnum):
    SUCCESS = 0x00
    FAILURE = 0x01
    UNSUPPORTED_ENDPOINT = 0x7F
    UNSUPPORTED_COMMAND = 0x81
    UNSUPPORTED_ATTRIBUTE = 0x86
    CONSTRAINT_ERROR = 0x87


class DeviceType(IntEnum):
    ROOT_NODE = 0x0016
    ON_OFF_LIGHT = 0x0100
    ON_OFF_PLUG_IN_UNIT = 0x010A


class DiscoveryCapabilities(IntFlag):
    NONE = 0
    SOFT_AP = 0x01
    BLE = 0x02
    ON_NETWORK = 0x04


class CommissioningFlow(IntEnum):
    STANDARD = 0
    USER_ACTION_REQUIRED = 1
    CUSTOM = 2


@dataclass(frozen=True)
class DeviceIdentity:
    vendor_id: int
    product_id: int
    device_type: DeviceType
    serial_number: str
    unique_id: int


@dataclass(frozen=True)
class CommissioningSecret:
    passcode: int
    discriminator: int

    @property
    def short_discriminator(self) -> int:
        return self.discriminator >> 8


@dataclass(frozen=True)
class DeviceDefaults:
    vendor_id: int
    product_id: int
    device_type: DeviceType
    serial_prefix: str
    passcode: int | None = None
    discriminator: int | None = None


@dataclass(frozen=True)
class PairingCode:
    manual_code: str
    qr_payload: str


@dataclass(frozen=True)
class ManualCodeData:
    passcode: int
    short_discriminator: int
    vendor_id: int | None = None
    product_id: int | None = None


@dataclass(frozen=True)
class QrCodeData:
    version: int
    vendor_id: int
    product_id: int
    flow: CommissioningFlow
    capabilities: DiscoveryCapabilities
    discriminator: int
    passcode: int


@dataclass(frozen=True)
class CommissioningOptions:
    flow: CommissioningFlow = CommissioningFlow.STANDARD
    stage_timeout_s: float = 60.0
    max_auth_attempts: int = 2
    pbkdf_iterations: int = 1000


@dataclass(frozen=True)
class DeviceProfile:
    id: str
    name: str
    vendor_name: str
    product_name: str
    port: int
    defaults: DeviceDefaults
    discovery: DiscoveryCapabilities
    commissioning: CommissioningOptions

    @property
    def device_type(self) -> DeviceType:
        return self.defaults.device_type


@dataclass(frozen=True)
class NetworkCredentials:
    ssid: str | None = None
    interface: str | None = None


@dataclass(frozen=True)
class OperationalRequest:
    session_id: int
    fabric_id: int
    node_id: int
    network: NetworkCredentials | None = None


@dataclass(frozen=True)
class OperationalCredentials:
    fabric_id: int
    node_id: int
    certificate: bytes
    fingerprint: str


@dataclass(frozen=True)
class DiscoveryRecord:
    instance_name: str
    port: int
    discriminator: int
    vendor_id: int
    product_id: int
    device_type: DeviceType
    device_name: str
    commissioning_mode: int = 1

    def txt_records(self) -> dict[str, str]:
        return {
            "D": str(self.discriminator),
            "VP": f"{self.vendor_id}+{self.product_id}",
            "CM": str(self.commissioning_mode),
            "DT": str(int(self.device_type)),
            "DN": self.device_name,
        }


@dataclass(frozen=True)
class PairingInfo:
    profile_id: str
    identity: DeviceIdentity
    secret: CommissioningSecret
    code: PairingCode
    commissioned: bool
