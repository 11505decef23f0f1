"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from commissionctl.core import pairing_code
from commissionctl.core.errors import CommissioningError
from commissionctl.core.model import DiscoveryCapabilities, ManualCodeData
from commissionctl.core.service import DEFAULT_PROFILE, CommissioningService

app = typer.Typer(help="Commissionable on/off node with PASE-secured commissioning")


def _build_service(**kwargs: object) -> CommissioningService:
    service = CommissioningService(**kwargs)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


@app.command("profiles")
def list_profiles() -> None:
    """List available device profiles."""
    try:
        service = _build_service()
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name} ({profile.vendor_name} {profile.product_name})")
            typer.echo(
                f"  device_type={profile.device_type.name.lower()} port={profile.port} "
                f"vendor_id=0x{profile.defaults.vendor_id:04X} product_id=0x{profile.defaults.product_id:04X}"
            )
    except CommissioningError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("pairing-code")
def show_pairing_code(
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", help="Profile ID"),
    storage: Path | None = typer.Option(None, "--storage", help="Storage directory"),
) -> None:
    """Print the QR payload and manual pairing code of a node."""
    try:
        service = _build_service(storage_dir=storage)
        info = service.pairing_info(profile)
        if info.commissioned:
            typer.echo("Device is already commissioned")
            return
        typer.echo(f"QR code: {info.code.qr_payload}")
        typer.echo(f"QR code URL: {pairing_code.qr_code_url(info.code.qr_payload)}")
        typer.echo(f"Manual pairing code: {pairing_code.format_manual_code(info.code.manual_code)}")
        typer.echo(f"Serial number: {info.identity.serial_number}")
    except CommissioningError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("decode")
def decode_code(code: str) -> None:
    """Decode a manual pairing code or an MT: QR payload."""
    try:
        data = pairing_code.decode(code)
    except CommissioningError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"passcode={data.passcode:08d}")
    if isinstance(data, ManualCodeData):
        typer.echo(f"short_discriminator={data.short_discriminator}")
        if data.vendor_id is not None:
            typer.echo(f"vendor_id=0x{data.vendor_id:04X} product_id=0x{data.product_id:04X}")
        return
    typer.echo(f"discriminator={data.discriminator}")
    typer.echo(f"vendor_id=0x{data.vendor_id:04X} product_id=0x{data.product_id:04X}")
    typer.echo(f"flow={data.flow.name.lower()}")
    capabilities = [flag.name.lower() for flag in DiscoveryCapabilities if flag and flag in data.capabilities]
    typer.echo(f"discovery={','.join(capabilities) or 'none'}")


@app.command("serve")
def serve(
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", help="Profile ID"),
    storage: Path | None = typer.Option(None, "--storage", help="Storage directory"),
    port: int | None = typer.Option(None, "--port", help="UDP port (defaults to the profile port)"),
    clear_storage: bool = typer.Option(False, "--clear-storage", help="Wipe persisted state before starting"),
    no_advertise: bool = typer.Option(False, "--no-advertise", help="Do not announce over mDNS"),
    log_level: str = typer.Option("info", "--log-level", help="Logging level"),
) -> None:
    """Run a commissionable node until interrupted."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        service = _build_service(
            storage_dir=storage,
            clear_storage=clear_storage,
            advertise=not no_advertise,
        )
        asyncio.run(service.serve_forever(profile, port=port))
    except CommissioningError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
