"""CLI utilities for dashrec.

This module provides common CLI utilities like Rich console output, log
sink setup and progress indicators.
"""

import os
import sys
from contextlib import contextmanager
from typing import Dict, List

from loguru import logger
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.theme import Theme

# Create themed console for consistent output
_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)

console = Console(theme=_theme)


def setup_logging(verbose: bool = False, level: str = "WARNING") -> None:
    """Replace loguru sinks with a single stderr sink.

    Args:
        verbose: Log at DEBUG level
        level: Level used when not verbose
    """
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else level)


def make_device_table(devices: List[dict]) -> Table:
    """Build a Rich Table from the device list returned by ``list_input_devices()``.

    Args:
        devices: List of dicts with keys: id, name, driver, channels, rate, is_default

    Returns:
        Configured Rich Table ready to print.
    """
    table = Table(show_header=True, header_style="bold", show_lines=False, expand=False)
    table.add_column("ID", style="cyan", width=4, justify="right")
    table.add_column("Name", min_width=30)
    table.add_column("Driver", style="dim", width=8)
    table.add_column("Ch", justify="right", style="dim", width=4)
    table.add_column("Rate", justify="right", style="dim", width=12)
    table.add_column("", width=9)

    for d in devices:
        default_mark = "[bold green]DEFAULT[/bold green]" if d.get("is_default") else ""
        table.add_row(
            str(d["id"]),
            d["name"],
            d.get("driver", "").upper(),
            str(d.get("channels", "")),
            f"{d.get('rate', '')} Hz",
            default_mark,
        )
    return table


def make_info_grid(rows: Dict[str, str]) -> Table:
    """Build a two-column label/value grid for summary panels."""
    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    for label, value in rows.items():
        grid.add_row(f"{label}:", value)
    return grid


def make_level_progress() -> Progress:
    """Create a Rich Progress instance repurposed as a real-time dB level meter.

    Usage::

        with make_level_progress() as progress:
            task = progress.add_task("level", total=120, db_text="-- dB")
            while recording:
                progress.update(task, completed=db_level, db_text=f"{db_level:.1f} dB")
                await asyncio.sleep(0.1)

    Returns:
        Configured Rich Progress instance (0–120 dB scale).
    """
    return Progress(
        TextColumn("📈 Audio Level"),
        BarColumn(
            bar_width=50,
            complete_style="green",
            finished_style="green",
            pulse_style="yellow",
        ),
        TextColumn("[bold]{task.fields[db_text]}[/bold]"),
        console=console,
        transient=False,
        expand=False,
    )


@contextmanager
def suppress_stderr():
    """Context manager to suppress stderr output from libraries like ALSA, JACK.

    Used to hide debug/warning messages from audio subsystems that pollute
    terminal output.
    """
    # Save original stderr file descriptor
    original_stderr_fd = os.dup(2)
    try:
        # Open /dev/null and redirect stderr to it
        null_fd = os.open(os.devnull, os.O_WRONLY)
        os.dup2(null_fd, 2)
        os.close(null_fd)
        yield
    finally:
        # Restore original stderr
        os.dup2(original_stderr_fd, 2)
        os.close(original_stderr_fd)


__all__ = [
    "console",
    "setup_logging",
    "suppress_stderr",
    "make_device_table",
    "make_info_grid",
    "make_level_progress",
]
