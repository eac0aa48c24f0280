"""
Command client for the native streaming backend.

The backend exposes a fixed set of commands. Every command is posted as
JSON to ``{endpoint}/invoke/{command}`` and answers with either
``{"ok": true, "result": ...}`` or ``{"ok": false, "error": "..."}``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .errors import BackendUnavailable, CommandRejected

logger = logging.getLogger(__name__)


class Backend(ABC):
    """Command contract of the streaming backend."""

    @abstractmethod
    async def start_server(self, port: int, options: Dict[str, Any]) -> str:
        """Start a session and return its base address."""

    @abstractmethod
    async def stop_server(self) -> None:
        """Stop the active session."""

    @abstractmethod
    async def get_server_status(self) -> bool:
        """Return True if the backend listener is running."""

    @abstractmethod
    async def get_server_url(self) -> str:
        """Return the address of the running session."""

    @abstractmethod
    async def get_available_monitors(self) -> List[Dict[str, Any]]:
        """Return the displays the backend can capture."""

    @abstractmethod
    async def get_logs(self) -> Tuple[str, str]:
        """Return the (debug, error) log contents."""

    async def close(self) -> None:
        """Release transport resources."""


class HttpBackend(Backend):
    """
    Backend reached over HTTP with aiohttp.

    A single ClientSession is created on first use and reused for every
    command until close() is called.
    """

    def __init__(self, endpoint: str, timeout: float = 5.0):
        """
        Args:
            endpoint: Base URL of the backend command endpoint
            timeout: Per-command timeout in seconds
        """
        self.endpoint = endpoint.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def invoke(self, command: str, **args: Any) -> Any:
        """
        Invoke a backend command.

        Returns:
            The command result

        Raises:
            BackendUnavailable: The request failed or the reply was unreadable
            CommandRejected: The backend reported an error for the command
        """
        url = f"{self.endpoint}/invoke/{command}"
        logger.debug("Invoking %s", command)

        try:
            async with self._get_session().post(url, json=args) as response:
                if response.status >= 400:
                    raise BackendUnavailable(
                        f"{command}: HTTP {response.status} from backend"
                    )
                reply = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise BackendUnavailable(f"{command}: {str(e) or type(e).__name__}") from e

        if not isinstance(reply, dict):
            raise BackendUnavailable(f"{command}: malformed reply from backend")

        if not reply.get("ok", False):
            raise CommandRejected(command, str(reply.get("error", "unknown error")))

        return reply.get("result")

    async def start_server(self, port: int, options: Dict[str, Any]) -> str:
        url = await self.invoke("start_server", port=port, options=options)
        return str(url) if url else ""

    async def stop_server(self) -> None:
        await self.invoke("stop_server")

    async def get_server_status(self) -> bool:
        return bool(await self.invoke("get_server_status"))

    async def get_server_url(self) -> str:
        url = await self.invoke("get_server_url")
        if not url:
            raise CommandRejected("get_server_url", "backend returned no address")
        return str(url)

    async def get_available_monitors(self) -> List[Dict[str, Any]]:
        result = await self.invoke("get_available_monitors")
        if not isinstance(result, list):
            raise BackendUnavailable("get_available_monitors: expected a list")
        return result

    async def get_logs(self) -> Tuple[str, str]:
        result = await self.invoke("get_logs")
        if not isinstance(result, (list, tuple)) or len(result) != 2:
            raise BackendUnavailable("get_logs: expected a (debug, error) pair")
        return str(result[0]), str(result[1])

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
