"""CLI commands for pawfeeds."""

import asyncio
import json
import os
import signal
import sys
import threading
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from pawfeeds import __logo__, __version__

app = typer.Typer(
    name="pawfeeds",
    help=f"{__logo__} pawfeeds - Networked pet feeder runtime",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} pawfeeds v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """pawfeeds - Networked pet feeder runtime."""
    pass


def _configure_logging(config, logs: bool) -> None:
    from loguru import logger

    if logs:
        logger.enable("pawfeeds")
    else:
        logger.disable("pawfeeds")
    if config.logging.file:
        logger.enable("pawfeeds")
        logger.add(
            str(Path(config.logging.file).expanduser()),
            level=config.logging.level,
            rotation=config.logging.rotation,
            retention=config.logging.retention,
            enqueue=True,
        )


def _reexec() -> None:
    """Restart by replacing the current process with a fresh one."""
    sys.stdout.flush()
    sys.stderr.flush()
    os.execv(sys.executable, [sys.executable, *sys.argv])


# ============================================================================
# Config Commands
# ============================================================================


config_app = typer.Typer(help="Manage pawfeeds config")
app.add_typer(config_app, name="config")


@config_app.command("check")
def config_check(
    config: Path | None = typer.Option(None, "--config", help="Config path to validate"),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Fail when unknown keys are detected (possible typos)",
    ),
):
    """Validate config JSON structure and schema."""
    from pawfeeds.config.loader import convert_keys, find_unknown_keys, get_config_path
    from pawfeeds.config.schema import Config

    config_path = (config or get_config_path()).expanduser()
    if not config_path.exists():
        console.print(f"[red]Config file not found:[/red] {config_path}")
        raise typer.Exit(2)

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON:[/red] {exc}")
        raise typer.Exit(2) from exc
    except OSError as exc:
        console.print(f"[red]Failed to read config:[/red] {exc}")
        raise typer.Exit(2) from exc

    normalized = convert_keys(raw)
    try:
        cfg = Config.model_validate(normalized)
    except Exception as exc:
        console.print(f"[red]Schema validation failed:[/red] {exc}")
        raise typer.Exit(1) from exc

    unknown_paths = find_unknown_keys(normalized)
    if unknown_paths:
        console.print(
            f"[yellow]Unknown config keys detected ({len(unknown_paths)}):[/yellow]"
        )
        for item in unknown_paths[:10]:
            console.print(f"  - {item}")
        if len(unknown_paths) > 10:
            console.print(f"  - ... ({len(unknown_paths) - 10} more)")
        if strict:
            raise typer.Exit(1)

    console.print("[green]✓[/green] Config validation passed")
    console.print(f"path={config_path}")
    console.print(
        f"cloud project={cfg.cloud.project_id or '-'} "
        f"realtime={cfg.realtime.database_url or '-'}"
    )
    console.print(
        f"network={cfg.network.backend} actuator={cfg.actuator.driver} "
        f"ms_per_gram={cfg.actuator.ms_per_gram} timezone={cfg.schedule.timezone}"
    )


# ============================================================================
# Device Commands
# ============================================================================


@app.command()
def run(
    config_file: Path | None = typer.Option(None, "--config", help="Config file path"),
    logs: bool = typer.Option(True, "--logs/--no-logs", help="Show runtime logs"),
):
    """Boot the feeder and run until interrupted."""
    from pawfeeds.api.provisioning_server import ProvisioningServer
    from pawfeeds.config.loader import load_config
    from pawfeeds.hardware.runtime.orchestrator import build_orchestrator

    config = load_config(config_file.expanduser() if config_file else None)
    _configure_logging(config, logs)

    orchestrator = build_orchestrator(config, restart=_reexec)
    orchestrator.provisioning_listener = ProvisioningServer(
        host=config.provisioning.host,
        port=config.provisioning.port,
        link=orchestrator.link,
        preferences=orchestrator.preferences,
        on_saved=orchestrator.credentials_saved,
        access_point_ssid=config.provisioning.access_point_ssid,
        max_request_body_bytes=config.provisioning.max_request_body_bytes,
    )

    console.print(f"{__logo__} pawfeeds runtime")
    console.print(
        f"network={config.network.backend} actuator={config.actuator.driver} "
        f"bowls={sorted(config.actuator.bowl_pins)} tick={config.runtime.tick_interval_ms}ms"
    )

    async def _run() -> None:
        if os.name != "nt":
            signal.signal(signal.SIGINT, lambda *_: orchestrator.request_stop())
            signal.signal(signal.SIGTERM, lambda *_: orchestrator.request_stop())
        await orchestrator.run()

    try:
        asyncio.run(_run())
    finally:
        orchestrator.actuator.close()
        orchestrator.preferences.close()
    snapshot = orchestrator.metrics.snapshot()
    console.print(
        f"stopped in state={orchestrator.state} ticks={snapshot['ticks_total']} "
        f"dispensed={snapshot['dispense_total']} ({snapshot['dispense_grams_total']} g) "
        f"commands={snapshot['commands_accepted']}"
    )


@app.command()
def provision(
    port: int | None = typer.Option(None, "--port", help="Provisioning listener port override"),
    logs: bool = typer.Option(True, "--logs/--no-logs", help="Show runtime logs"),
):
    """Serve the provisioning listener until credentials are saved."""
    from pawfeeds.api.provisioning_server import ProvisioningServer
    from pawfeeds.config.loader import load_config
    from pawfeeds.hardware.runtime.orchestrator import create_link_from_config
    from pawfeeds.storage.preferences import PreferenceStore

    config = load_config()
    _configure_logging(config, logs)
    preferences = PreferenceStore(config.preferences_path, namespace=config.storage.namespace)
    saved = threading.Event()
    server = ProvisioningServer(
        host=config.provisioning.host,
        port=port if port is not None else config.provisioning.port,
        link=create_link_from_config(config),
        preferences=preferences,
        on_saved=saved.set,
        access_point_ssid=config.provisioning.access_point_ssid,
        max_request_body_bytes=config.provisioning.max_request_body_bytes,
    )
    server.start()
    console.print(f"{__logo__} provisioning on http://{config.provisioning.host}:{server.bound_port}")
    try:
        while not saved.wait(0.5):
            pass
    except KeyboardInterrupt:
        console.print("[yellow]Provisioning interrupted[/yellow]")
        raise typer.Exit(1)
    finally:
        server.stop()
        preferences.close()
    console.print("[green]✓[/green] Credentials saved; start the feeder with [cyan]pawfeeds run[/cyan]")


@app.command()
def status():
    """Show config, stored credentials and the boot state."""
    from pawfeeds.config.loader import get_config_path, load_config
    from pawfeeds.hardware.runtime.state import initial_state
    from pawfeeds.storage.preferences import KEY_IDENTITY_ID, PreferenceStore
    from pawfeeds.utils.helpers import redact_sensitive_map

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} pawfeeds Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Storage: {config.preferences_path}")

    preferences = PreferenceStore(config.preferences_path, namespace=config.storage.namespace)
    try:
        stored = redact_sensitive_map(preferences.snapshot())
        state = initial_state(has_credentials=preferences.has_credentials())
        identity = preferences.get(KEY_IDENTITY_ID)
    finally:
        preferences.close()

    table = Table(title="Stored preferences")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in stored.items():
        table.add_row(key, str(value))
    console.print(table)
    console.print(f"Boot state: {state}")
    console.print(f"Identity: {identity or '[dim]not registered[/dim]'}")
    console.print(
        f"Cloud: project={config.cloud.project_id or '[dim]not set[/dim]'} "
        f"token={'[green]✓[/green]' if (config.cloud.auth_token or config.cloud.auth_token_file) else '[dim]not set[/dim]'}"
    )


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Factory reset: erase Wi-Fi credentials, owner and identity."""
    from pawfeeds.config.loader import load_config
    from pawfeeds.storage.preferences import PreferenceStore

    config = load_config()
    if not yes:
        typer.confirm("Erase all stored feeder preferences?", abort=True)
    preferences = PreferenceStore(config.preferences_path, namespace=config.storage.namespace)
    try:
        removed = preferences.clear()
    finally:
        preferences.close()
    console.print(f"[green]✓[/green] Cleared {removed} stored key(s)")


@app.command()
def dispense(
    bowl: int = typer.Argument(..., help="Bowl number"),
    grams: int = typer.Argument(..., help="Portion in grams"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs"),
):
    """Run one dispense cycle for testing the actuator."""
    from pawfeeds.config.loader import load_config
    from pawfeeds.hardware.runtime.orchestrator import create_actuator_from_config

    config = load_config()
    _configure_logging(config, logs)
    actuator = create_actuator_from_config(config)
    try:
        result = asyncio.run(actuator.dispense(bowl, grams, source="cli"))
    finally:
        actuator.close()
    if result is None:
        console.print(f"[red]Dispense ignored[/red] (bowl={bowl} grams={grams})")
        raise typer.Exit(1)
    console.print(
        f"[green]✓[/green] Dispensed {result.grams} g from bowl {result.bowl} in {result.duration_ms} ms"
    )


if __name__ == "__main__":
    app()
