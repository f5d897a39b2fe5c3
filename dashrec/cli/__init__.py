"""Command-line interface for dashrec."""

from .commands import app

__all__ = ["app"]
