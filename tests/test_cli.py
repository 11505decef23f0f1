from __future__ import annotations

from typer.testing import CliRunner

from commissionctl import cli
from commissionctl.core.errors import ListenerBindError, ProfileNotFoundError
from commissionctl.core.model import (
    CommissioningOptions,
    CommissioningSecret,
    DeviceDefaults,
    DeviceIdentity,
    DeviceProfile,
    DeviceType,
    DiscoveryCapabilities,
    PairingCode,
    PairingInfo,
)

PROFILE = DeviceProfile(
    id="on_off_light",
    name="Test Light",
    vendor_name="Example Vendor",
    product_name="Example Light",
    port=5540,
    defaults=DeviceDefaults(
        vendor_id=0xFFF1,
        product_id=0x8000,
        device_type=DeviceType.ON_OFF_LIGHT,
        serial_prefix="node-matter",
        passcode=20202021,
        discriminator=3840,
    ),
    discovery=DiscoveryCapabilities.ON_NETWORK,
    commissioning=CommissioningOptions(),
)


class FakeService:
    instances: list[FakeService] = []
    commissioned = False

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.load_warnings = ("User profile 'on_off_light' overrides packaged profile",)
        self.served: tuple[str, int | None] | None = None
        FakeService.instances.append(self)

    def list_profiles(self):
        return [PROFILE]

    def pairing_info(self, profile_id):
        if profile_id != "on_off_light":
            raise ProfileNotFoundError(f"Unknown profile '{profile_id}'")
        return PairingInfo(
            profile_id=profile_id,
            identity=DeviceIdentity(0xFFF1, 0x8000, DeviceType.ON_OFF_LIGHT, "node-matter-1", 1),
            secret=CommissioningSecret(20202021, 3840),
            code=PairingCode(manual_code="34970112332", qr_payload="MT:Y.K90AFN00KA0648G00"),
            commissioned=self.commissioned,
        )

    async def serve_forever(self, profile_id, *, port=None):
        self.served = (profile_id, port)
        if port == 1:
            raise ListenerBindError("Could not bind UDP 0.0.0.0:1")


runner = CliRunner()


def test_profiles_command(monkeypatch):
    monkeypatch.setattr(cli, "CommissioningService", FakeService)
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "on_off_light: Test Light (Example Vendor Example Light)" in result.stdout
    assert "vendor_id=0xFFF1 product_id=0x8000" in result.stdout


def test_pairing_code_command(monkeypatch):
    monkeypatch.setattr(cli, "CommissioningService", FakeService)
    result = runner.invoke(cli.app, ["pairing-code", "--profile", "on_off_light"])
    assert result.exit_code == 0
    assert "QR code: MT:Y.K90AFN00KA0648G00" in result.stdout
    assert "Manual pairing code: 3497-011-2332" in result.stdout


def test_pairing_code_hidden_once_commissioned(monkeypatch):
    monkeypatch.setattr(cli, "CommissioningService", FakeService)
    monkeypatch.setattr(FakeService, "commissioned", True)
    result = runner.invoke(cli.app, ["pairing-code"])
    assert result.exit_code == 0
    assert "Device is already commissioned" in result.stdout
    assert "MT:" not in result.stdout
    assert "3497-011-2332" not in result.stdout


def test_pairing_code_unknown_profile(monkeypatch):
    monkeypatch.setattr(cli, "CommissioningService", FakeService)
    result = runner.invoke(cli.app, ["pairing-code", "--profile", "dimmer"])
    assert result.exit_code == 1
    assert "Error: Unknown profile 'dimmer'" in result.output


def test_load_warnings_are_printed(monkeypatch):
    monkeypatch.setattr(cli, "CommissioningService", FakeService)
    result = runner.invoke(cli.app, ["profiles"])
    assert "Warning: User profile 'on_off_light' overrides packaged profile" in result.output


def test_decode_manual_code():
    result = runner.invoke(cli.app, ["decode", "3497-011-2332"])
    assert result.exit_code == 0
    assert "passcode=20202021" in result.stdout
    assert "short_discriminator=15" in result.stdout


def test_decode_qr_payload():
    result = runner.invoke(cli.app, ["decode", "MT:Y.K9042C00KA0648G00"])
    assert result.exit_code == 0
    assert "discriminator=3840" in result.stdout
    assert "discovery=ble" in result.stdout


def test_decode_invalid_code():
    result = runner.invoke(cli.app, ["decode", "34970112333"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_serve_passes_options(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "CommissioningService", FakeService)
    FakeService.instances.clear()
    result = runner.invoke(
        cli.app,
        ["serve", "--storage", str(tmp_path), "--port", "5541", "--clear-storage", "--no-advertise"],
    )
    assert result.exit_code == 0
    service = FakeService.instances[-1]
    assert service.kwargs == {"storage_dir": tmp_path, "clear_storage": True, "advertise": False}
    assert service.served == ("on_off_light", 5541)


def test_serve_bind_failure(monkeypatch):
    monkeypatch.setattr(cli, "CommissioningService", FakeService)
    result = runner.invoke(cli.app, ["serve", "--port", "1"])
    assert result.exit_code == 1
    assert "Error: Could not bind UDP" in result.output
