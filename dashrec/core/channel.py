"""HTTP command channel for dashrec."""

from typing import Optional
from urllib.parse import quote

import httpx
from loguru import logger

from .commands import NO_COMMAND, Command, NoCommand, classify_response
from .config import BASE_URL, REQUEST_TIMEOUT


class CommandChannel:
    """Fetches the pending command of a device from the dashboard.

    Every failure resolves to "no command" so the polling loop is never
    interrupted by a single bad cycle.
    """

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the channel.

        Args:
            base_url: Dashboard root URL
            timeout: Per-request timeout in seconds
            client: Shared HTTP client; one is created (and owned) when omitted
        """
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip('/'), timeout=timeout)

    @staticmethod
    def command_path(device_id: str) -> str:
        """Return the command endpoint path for *device_id*."""
        return f"/api/command/{quote(device_id, safe='')}"

    async def poll(self, device_id: str) -> Command:
        """Fetch and classify the pending command for *device_id*.

        Args:
            device_id: Device identifier addressing the command queue

        Returns:
            Parsed command, or no command on any failure
        """
        path = self.command_path(device_id)
        try:
            response = await self._client.get(
                path,
                headers={'Accept': 'application/json'},
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            logger.warning(f"Command poll timed out after {self._timeout}s ({path})")
            return NO_COMMAND
        except httpx.HTTPError as error:
            logger.warning(f"Error checking for commands: {error!r}")
            return NO_COMMAND

        logger.debug(f"Command poll response status: {response.status_code}")
        command = classify_response(response.status_code, response.text)
        if not isinstance(command, NoCommand):
            logger.info(f"Command received for {device_id}: {command}")
        return command

    async def aclose(self) -> None:
        """Close the HTTP client if this channel created it."""
        if self._owns_client:
            await self._client.aclose()
