"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import typer

from sensorctl.api import Client, decode_stream
from sensorctl.core.errors import DecodeError, SensorctlError
from sensorctl.core.model import Reading, ReadingKind, SessionState, SessionStatus

app = typer.Typer(help="Stream ECG/PPG readings from a BLE sensor bridge")

_TAG_NAMES = {"E": ReadingKind.ECG.value, "P": ReadingKind.PPG.value}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_client() -> Client:
    client = Client()
    for warning in getattr(client, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return client


def format_reading(reading: Reading) -> str:
    if reading.kind is ReadingKind.INVALID:
        tag = _TAG_NAMES.get((reading.raw_text or "")[:1], "reading")
        return f"Invalid {tag}: {reading.raw_text}"
    return f"{reading.kind.value}: {reading.value}"


def format_status(status: SessionStatus) -> str:
    peripheral = f" {status.peripheral.name} ({status.peripheral.address})" if status.peripheral else ""
    if status.state is SessionState.FAILED:
        return f"Failed: {status.detail or status.reason}"
    if status.state is SessionState.CONNECTING:
        return f"Found{peripheral}. Connecting..."
    if status.state is SessionState.RECEIVING:
        return "Listening for data..."
    return f"{status.state.value.replace('_', ' ').capitalize()}{peripheral}"


class _EchoSink:
    def on_reading(self, reading: Reading) -> None:
        typer.echo(format_reading(reading))

    def on_status(self, status: SessionStatus) -> None:
        typer.echo(format_status(status), err=True)

    def on_decode_error(self, error: DecodeError) -> None:
        typer.echo(f"Warning: {error}", err=True)


@app.command("profiles")
def list_profiles() -> None:
    """List available device profiles."""
    try:
        client = _build_client()
        profiles = client.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.target_name}")
            typer.echo(f"  service: {profile.service_uuid}")
            typer.echo(f"  characteristic: {profile.characteristic_uuid}")
    except SensorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan_devices(
    timeout: float = typer.Option(10.0, "--timeout", help="Scan budget in seconds"),
    raw: bool = typer.Option(False, "--raw", help="Show every advertisement instead of one line per address"),
) -> None:
    """List nearby BLE devices."""
    try:
        client = _build_client()
        devices = asyncio.run(client.discover(timeout, deduplicate=not raw))
        if not devices:
            typer.echo("No Bluetooth devices found")
            return

        for result in devices:
            name = result.peripheral.name or "<unknown-device>"
            typer.echo(f"{result.peripheral.address} {name} rssi={result.rssi}")
    except SensorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("stream")
def stream_readings(
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    name: str | None = typer.Option(None, "--name", help="Override the advertised target name"),
    timeout: float | None = typer.Option(None, "--timeout", min=0.1, help="Scan budget in seconds"),
) -> None:
    """Connect to the target sensor and print readings until it disconnects."""
    try:
        client = _build_client()
        status = asyncio.run(
            client.stream(_EchoSink(), profile_id=profile, target_name=name, scan_timeout_s=timeout)
        )
    except SensorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None

    if status.state is SessionState.FAILED:
        raise typer.Exit(code=1)


def _read_chunks(path: Path, chunk_size: int) -> Iterator[bytes]:
    handle = sys.stdin.buffer if str(path) == "-" else path.open("rb")
    try:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                return
            yield chunk
    finally:
        if handle is not sys.stdin.buffer:
            handle.close()


@app.command("decode")
def decode_capture(
    path: Path = typer.Argument(..., help="Captured notification bytes, or '-' for stdin"),
    chunk_size: int = typer.Option(20, "--chunk-size", min=1, help="Bytes per simulated notification"),
    max_pending: int = typer.Option(4096, "--max-pending", min=1, help="Unterminated frame limit in bytes"),
) -> None:
    """Decode a captured byte stream offline."""

    def _warn(error: DecodeError) -> None:
        typer.echo(f"Warning: {error}", err=True)

    try:
        for reading in decode_stream(
            _read_chunks(path, chunk_size),
            max_pending_bytes=max_pending,
            on_error=_warn,
        ):
            typer.echo(format_reading(reading))
    except OSError as exc:
        typer.echo(f"Error: Could not read {path}: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
