"""Error types shared by the dashrec core.

None of these escape the command/recording flow: the engine turns them into
:class:`~dashrec.core.recording.StartResult` errors, the channel and the
dashboard client turn them into "no command" / ``False`` outcomes.
"""


class RecorderError(Exception):
    """Base class for dashrec errors."""


class PermissionDenied(RecorderError):
    """The recording capability refused access to the microphone."""


class VerificationFailure(RecorderError):
    """The capability reports a different state than the operation requested."""


class TransportFailure(RecorderError):
    """A request to the dashboard could not be completed."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseFailure(RecorderError):
    """A response body did not have the expected shape."""


class StaleResourceFailure(RecorderError):
    """A capture handle no longer refers to a live stream."""
