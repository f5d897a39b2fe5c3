"""CLI commands for dashrec.

This module provides all command-line interface commands using Typer.
"""

import asyncio
import signal
import sys
from datetime import datetime
from typing import Optional

import typer
from loguru import logger
from rich.panel import Panel

from dashrec.core.agent import Agent, build_identity, build_quality_options
from dashrec.core.capture import describe_quality, list_input_devices
from dashrec.core.config import AppConfig
from dashrec.core.identity import collect_device_metadata
from dashrec.core.recording import RecordingSession, StartResult, TriggerSource
from dashrec.core.s3_upload import S3Uploader
from dashrec.core.scheduling import schedule_recording
from dashrec.cli.utils import (
    console, make_device_table, make_info_grid, make_level_progress, setup_logging, suppress_stderr,
)

app = typer.Typer(help="Dashboard-driven audio recording agent")

app_config = AppConfig()
default_duration = int(app_config.get("default_duration"))


def _load_agent() -> Agent:
    return Agent(app_config)


def _list_devices(driver: Optional[str], verbose: bool) -> list:
    if verbose:
        return list_input_devices(driver_filter=driver)
    with suppress_stderr():
        return list_input_devices(driver_filter=driver)


async def _cancel_on_sigterm() -> None:
    task = asyncio.current_task()
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, task.cancel)
    except (NotImplementedError, RuntimeError):
        # Signal handlers are unavailable on Windows event loops.
        pass


@app.command()
def run(
    interval_minutes: Optional[float] = typer.Option(
        None, help="Also record every N minutes. Leave empty to only follow dashboard commands."
    ),
    interval_duration: int = typer.Option(
        default_duration, min=1, help="Length in seconds of each interval recording"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Run the agent: poll the dashboard for commands until Ctrl+C."""
    setup_logging(verbose, level="INFO")
    agent = _load_agent()

    server = app_config.get_section("server")
    rows = {
        "Device ID": agent.activate(),
        "Dashboard": agent.dashboard.base_url,
        "Poll every": f"{server['poll_interval']}s",
        "Interval": (
            f"every {interval_minutes} min for {interval_duration}s" if interval_minutes else "off"
        ),
        "Journal": str(agent.journal.path),
    }
    console.print(Panel(
        make_info_grid(rows),
        title="[bold]📡 dashrec agent[/bold]",
        border_style="green",
    ))

    async def _serve() -> None:
        await _cancel_on_sigterm()
        await agent.run(interval_minutes=interval_minutes, interval_duration=interval_duration)

    try:
        asyncio.run(_serve())
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("[warning]⏹ Agent stopped[/warning]")


async def _watch_level(agent: Agent, session: RecordingSession) -> None:
    with make_level_progress() as progress:
        task = progress.add_task("level", total=120, db_text="-- dB")
        while agent.engine.current_session is session:
            try:
                status = await agent.capability.get_status(session.handle)
                level = status.level_db
            except Exception as error:
                logger.debug(f"Level read failed: {error}")
                level = 0.0
            progress.update(task, completed=level, db_text=f"{level:.1f} dB")
            await asyncio.sleep(0.1)


async def _record(agent: Agent, duration: int, at: Optional[datetime]) -> StartResult:
    agent.activate()
    try:
        if at is not None:
            console.print(f"[info]⏰ Waiting until {at:%Y-%m-%d %H:%M:%S}[/info]")
            result = await schedule_recording(agent.dispatcher, at, duration)
        else:
            result = await agent.dispatcher.trigger_recording(TriggerSource.MANUAL, duration)
        if not result.success or result.session is None:
            return result

        mode = f"{duration}s" if duration else "continuous, Ctrl+C to stop"
        console.print(f"[success]🎙 Recording session {result.session.session_id} ({mode})[/success]")
        await _watch_level(agent, result.session)
        await agent.dispatcher.join()
        return result
    finally:
        if agent.engine.has_handle:
            await agent.dispatcher.stop_recording()
        await agent.shutdown()


@app.command()
def record(
    duration: Optional[int] = typer.Option(
        None, min=0, help="Recording duration in seconds. Leave empty for continuous recording."
    ),
    at: Optional[datetime] = typer.Option(
        None, help="Start at this local time (e.g. 2025-10-19T14:30:00) instead of now"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Record from the microphone and hand the file to the dashboard."""
    setup_logging(verbose)
    agent = _load_agent()
    console.print(f"[dim]📝 Recording log: {agent.journal.path}[/dim]")

    async def _main() -> StartResult:
        await _cancel_on_sigterm()
        return await _record(agent, duration or 0, at)

    try:
        result = asyncio.run(_main())
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("[warning]⏹ Recording interrupted by user[/warning]")
        return

    if not result.success:
        console.print(f"[error]✗ Could not start recording: {result.error}[/error]")
        raise typer.Exit(code=1)
    if result.already_recording:
        console.print("[warning]Recording already in progress[/warning]")
        return
    console.print("[success]✓ Recording completed[/success]")


@app.command()
def register(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Register this device with the dashboard."""
    setup_logging(verbose)
    agent = _load_agent()
    device = app_config.get_section("device")
    metadata = collect_device_metadata(
        manufacturer=device.get("manufacturer"),
        model=device.get("model"),
        platform_tag=device.get("platform"),
    )

    async def _register():
        try:
            return await agent.dashboard.register(metadata)
        finally:
            await agent.shutdown()

    result = asyncio.run(_register())
    if not result.success:
        console.print(f"[error]✗ Registration failed: {result.error}[/error]")
        raise typer.Exit(code=1)
    console.print(f"[success]✓ {result.message}[/success]")
    console.print(f"Device ID: [bold]{result.device_id}[/bold]")


@app.command("device-id")
def device_id(
    reset: bool = typer.Option(False, "--reset", help="Forget the stored device ID"),
):
    """Print the device ID used for polling and uploads."""
    setup_logging()
    identity = build_identity(app_config)
    if reset:
        identity.reset()
        console.print("[warning]Device ID cleared; a new one is derived on next use[/warning]")
        return
    console.print(identity.resolve())


@app.command()
def check(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Test connectivity to the dashboard health and command endpoints."""
    setup_logging(verbose)
    agent = _load_agent()

    async def _check():
        try:
            return await agent.dashboard.check_connectivity(agent.identity.resolve())
        finally:
            await agent.shutdown()

    report = asyncio.run(_check())
    rows = {
        "Dashboard": agent.dashboard.base_url,
        "Health": "[green]ok[/green]" if report.health_ok else "[red]unreachable[/red]",
        "Command endpoint": (
            f"{report.command_status}" + (" (HTML)" if report.command_is_html else "")
            if report.command_status is not None else "-"
        ),
    }
    console.print(Panel(make_info_grid(rows), title="[bold]🔌 Connectivity[/bold]"))
    if not report.success:
        console.print(f"[error]✗ {report.error}[/error]")
        raise typer.Exit(code=1)
    console.print("[success]✓ Backend connectivity OK[/success]")


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output from audio libraries"),
):
    """Show configuration, device ID, dashboard and optional S3 storage information.

    If an S3 configuration is present in ``.dashrec.yml`` the command
    will attempt a lightweight health check on the configured bucket and
    report whether it is reachable.
    """
    setup_logging(verbose)
    console.rule("[bold]📋 dashrec Status[/bold]")
    console.print()

    server = app_config.get_section("server")
    rows = {"Config": str(app_config.path) if app_config.path.exists() else "defaults"}
    rows.update(describe_quality(build_quality_options(app_config)))
    rows["Dashboard"] = str(server["base_url"])
    rows["Device ID"] = build_identity(app_config).resolve()
    console.print(Panel(make_info_grid(rows), title="[bold]Configuration[/bold]"))

    try:
        console.print(Panel(make_device_table(_list_devices(None, verbose)), title="[bold]Available Input Devices[/bold]"))
    except Exception as e:
        console.print(f"[error]✗ Error listing devices: {e}[/error]")

    agent = _load_agent()

    async def _health() -> bool:
        try:
            return await agent.dashboard.check_health()
        finally:
            await agent.shutdown()

    if asyncio.run(_health()):
        console.print(f"[info]Dashboard reachable at {agent.dashboard.base_url}[/info]")
    else:
        console.print(f"[warning]Dashboard not reachable at {agent.dashboard.base_url}[/warning]")

    # S3 storage status
    s3_conf = app_config.get_s3_config()
    if not s3_conf:
        console.print("[dim]S3 storage not configured[/dim]")
    else:
        try:
            uploader = S3Uploader.from_dict(s3_conf)
            if uploader.check_bucket():
                console.print(f"[info]S3 storage available: bucket {uploader.bucket}[/info]")
            else:
                console.print(f"[warning]S3 storage not reachable (bucket: {uploader.bucket})[/warning]")
        except Exception as e:  # include config errors
            console.print(f"[error]Failed to initialize S3 client: {e}[/error]")


@app.command("list-devices")
def list_devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    devices = _list_devices(driver, verbose)
    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(devices), title=f"[bold]{title}[/bold]"))
    if not devices:
        console.print("[warning]No input devices found[/warning]")
        sys.exit(1)
