"""Remote command model and parser.

The dashboard answers ``GET /api/command/{device_id}`` with::

    {"hasCommand": true, "action": "start recording", "durationSeconds": 5}
    {"hasCommand": false}

or, when nothing is pending, a 404 whose body may be empty, JSON or a server
HTML error page. :func:`classify_response` turns any of those into one of the
:data:`Command` variants and never raises.

Accepted action spellings are ``start`` / ``start recording`` and ``stop`` /
``stop recording``; anything else becomes :class:`UnknownCommand`.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Optional, Union

from loguru import logger

from .errors import ParseFailure

START_ACTIONS = frozenset({'start', 'start recording'})
STOP_ACTIONS = frozenset({'stop', 'stop recording'})

HTML_PREFIXES = ('<!doctype', '<html')

STATUS_OK = 200
STATUS_NOT_FOUND = 404


@dataclass(frozen=True)
class NoCommand:
    """Nothing is pending for this device."""


@dataclass(frozen=True)
class StartCommand:
    """Start recording.

    ``duration_seconds`` is ``None`` when the server did not send one, ``0``
    for continuous recording.
    """

    duration_seconds: Optional[int] = None


@dataclass(frozen=True)
class StopCommand:
    """Stop the current recording."""


@dataclass(frozen=True)
class UnknownCommand:
    """A pending command whose action is not understood."""

    action: str


Command = Union[NoCommand, StartCommand, StopCommand, UnknownCommand]

NO_COMMAND = NoCommand()


def _parse_duration(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
        # partial seconds round up, 0 is reserved for continuous
        duration = math.ceil(seconds)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Ignoring invalid durationSeconds: {value!r}")
        return None
    if seconds < 0:
        logger.warning(f"Ignoring negative durationSeconds: {value!r}")
        return None
    return duration


def parse_command(data: Any) -> Command:
    """Build a command from a decoded JSON payload.

    Args:
        data: Decoded response body

    Returns:
        Parsed command

    Raises:
        ParseFailure: If *data* is not a JSON object
    """
    if not isinstance(data, dict):
        raise ParseFailure(f"Expected a JSON object, got {type(data).__name__}")

    if not data.get('hasCommand'):
        return NO_COMMAND

    action = data.get('action')
    if not isinstance(action, str) or not action.strip():
        logger.warning(f"Pending command without an action: {data}")
        return NO_COMMAND

    normalized = ' '.join(action.lower().split())
    if normalized in START_ACTIONS:
        return StartCommand(duration_seconds=_parse_duration(data.get('durationSeconds')))
    if normalized in STOP_ACTIONS:
        return StopCommand()
    return UnknownCommand(action=action)


def is_html(body: str) -> bool:
    """Return True when *body* looks like an HTML document."""
    return body.lstrip().lower().startswith(HTML_PREFIXES)


def classify_response(status_code: int, body: str) -> Command:
    """Classify a command-endpoint response.

    Args:
        status_code: HTTP status of the response
        body: Response text

    Returns:
        Parsed command, :data:`NO_COMMAND` for every non-command outcome
    """
    text = body.strip() if body else ''

    if not text:
        if status_code not in (STATUS_OK, STATUS_NOT_FOUND):
            logger.error(f"Command poll error: {status_code} - empty response")
        return NO_COMMAND

    if is_html(text):
        if status_code == STATUS_NOT_FOUND:
            logger.debug("No command endpoint or no pending command (HTML 404 response)")
        else:
            logger.error(f"Command poll error: server returned HTML (status {status_code}): {text[:200]}")
        return NO_COMMAND

    try:
        data = json.loads(text)
    except ValueError:
        if status_code == STATUS_NOT_FOUND:
            logger.debug(f"No command found (404 with text response): {text[:100]}")
        else:
            logger.error(f"Command poll error: failed to parse response (status {status_code}): {text[:200]}")
        return NO_COMMAND

    try:
        return parse_command(data)
    except ParseFailure as error:
        logger.error(f"Command poll error: {error} (status {status_code})")
        return NO_COMMAND
