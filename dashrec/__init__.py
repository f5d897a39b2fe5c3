"""dashrec - dashboard-driven audio recording agent.

This package provides a recording agent that polls a dashboard for
start/stop commands, records from the local microphone and hands the
recordings back to the dashboard.
"""

from .cli.commands import app

__version__ = "1.0.0"

__all__ = ["app", "__version__"]
