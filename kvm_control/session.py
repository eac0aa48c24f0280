"""
Session lifecycle controller.

Owns the only authoritative SessionState. Start and stop go through the
backend command contract; a recurring poll keeps the state in line with what
the backend reports and recovers from inconsistent backend answers.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

from .backend import Backend, HttpBackend
from .connection import ConnectionDescriptor, build_connection
from .errors import (
    BackendUnavailable,
    CommandRejected,
    InconsistentState,
    InvalidConfig,
    InvalidTransition,
    TransitionInProgress,
)
from .monitors import MonitorRegistry
from .presets import PresetCatalog
from .reconciler import ConfigReconciler, ServerConfig

logger = logging.getLogger(__name__)


DEFAULT_PORT = 9921
PORT_RANGE = (1024, 65535)
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_RECHECK_DELAY = 1.0


class SessionPhase(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass(frozen=True)
class SessionState:
    """Tagged session state. url/port are set only when RUNNING, message only on ERROR."""

    phase: SessionPhase
    url: str = ""
    port: Optional[int] = None
    message: str = ""

    @classmethod
    def stopped(cls) -> "SessionState":
        return cls(SessionPhase.STOPPED)

    @classmethod
    def starting(cls) -> "SessionState":
        return cls(SessionPhase.STARTING)

    @classmethod
    def running(cls, url: str, port: Optional[int]) -> "SessionState":
        return cls(SessionPhase.RUNNING, url=url, port=port)

    @classmethod
    def stopping(cls) -> "SessionState":
        return cls(SessionPhase.STOPPING)

    @classmethod
    def error(cls, message: str) -> "SessionState":
        return cls(SessionPhase.ERROR, message=message)

    @property
    def is_running(self) -> bool:
        return self.phase is SessionPhase.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "url": self.url,
            "port": self.port,
            "message": self.message,
        }


def port_from_url(url: str) -> Optional[int]:
    try:
        return urlsplit(url).port
    except ValueError:
        return None


class SessionController:
    """
    Start/stop state machine for the streaming backend.

        STOPPED --start()--> STARTING --ack--> RUNNING
        RUNNING --stop()---> STOPPING --ack--> STOPPED
        any backend failure -> ERROR, normalized by the next poll

    Only one start or stop may be in flight; overlapping requests are
    dropped. Use as an async context manager to run the poll loop:

        async with SessionController(backend) as controller:
            await controller.start(9921)
    """

    def __init__(
        self,
        backend: Backend,
        reconciler: Optional[ConfigReconciler] = None,
        monitors: Optional[MonitorRegistry] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        recheck_delay: float = DEFAULT_RECHECK_DELAY,
    ):
        self.backend = backend
        self.reconciler = reconciler or ConfigReconciler()
        self.monitors = monitors or MonitorRegistry(backend, self.reconciler)
        self.poll_interval = poll_interval
        self.recheck_delay = recheck_delay

        self._state = SessionState.stopped()
        self._in_flight = False
        self._transitions = 0
        self.error_message = ""

        self._poll_task: Optional[asyncio.Task] = None
        self._recheck_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def server_url(self) -> str:
        return self._state.url

    @property
    def server_port(self) -> Optional[int]:
        return self._state.port

    @property
    def busy(self) -> bool:
        """True while a start or stop is in flight."""
        return self._in_flight

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            logger.debug("Session %s -> %s", self._state.phase.value, state.phase.value)
        self._state = state

    def _fail(self, prefix: str, error: Exception) -> None:
        self.error_message = f"{prefix}: {error}"
        logger.error(self.error_message)
        self._set_state(SessionState.error(str(error)))

    def connection(self) -> Optional[ConnectionDescriptor]:
        """Connection descriptor for the running session, if any."""
        if not self._state.is_running or not self._state.url:
            return None
        return build_connection(self._state.url, self.reconciler.config)

    def connection_url(self) -> str:
        descriptor = self.connection()
        return descriptor.url if descriptor else ""

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data view of the controller for presentation layers."""
        return {
            "state": self._state.to_dict(),
            "running": self.is_running,
            "busy": self._in_flight,
            "error": self.error_message,
            "url": self.connection_url(),
            "codec": self.reconciler.selected_codec,
            "settings": self.reconciler.config.to_dict(),
            "monitors": [monitor.to_dict() for monitor in self.monitors.monitors],
            "monitor_error": self.monitors.last_error,
            "monitors_loading": self.monitors.loading,
        }

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    async def _call(self, command: str, *args: Any) -> Any:
        """Invoke a backend command, reporting any failure as BackendUnavailable."""
        try:
            return await getattr(self.backend, command)(*args)
        except BackendUnavailable:
            raise
        except Exception as e:
            raise BackendUnavailable(f"{command}: {e}") from e

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _begin_transition(self) -> None:
        if self._in_flight:
            raise TransitionInProgress("A start or stop is already in progress")
        self._in_flight = True
        self._transitions += 1

    async def start(self, port: int = DEFAULT_PORT, config: Optional[ServerConfig] = None) -> bool:
        """
        Start a session on the given port.

        Args:
            port: Listener port (1024-65535)
            config: Settings to start with; defaults to the current settings

        Returns:
            True once RUNNING, False if another transition was in flight

        Raises:
            InvalidTransition: A session is already running
            InvalidConfig: Bad port, or the backend rejected the settings
            BackendUnavailable: The backend could not be reached
        """
        try:
            self._begin_transition()
        except TransitionInProgress as e:
            logger.debug("Start ignored: %s", e)
            return False

        try:
            return await self._start(port, config)
        finally:
            self._in_flight = False

    async def _start(self, port: int, config: Optional[ServerConfig]) -> bool:
        if self._state.is_running:
            raise InvalidTransition("Server is already running")

        self.error_message = ""

        low, high = PORT_RANGE
        if isinstance(port, bool) or not isinstance(port, int) or not low <= port <= high:
            error = InvalidConfig(f"Port must be between {low} and {high}, got {port!r}")
            self._fail("Failed to start server", error)
            raise error

        if config is None:
            config = self.reconciler.config

        self._set_state(SessionState.starting())
        logger.info("Starting server on port %d (codec %s)", port, config.selected_codec)

        try:
            url = await self._call("start_server", port, config.to_backend_options())
        except CommandRejected as e:
            error = InvalidConfig(e.message)
            self._fail("Failed to start server", error)
            raise error from e
        except BackendUnavailable as e:
            self._fail("Failed to start server", e)
            raise

        if not url:
            error = BackendUnavailable("start_server returned no address")
            self._fail("Failed to start server", error)
            self._schedule_recheck()
            raise error

        self._set_state(SessionState.running(str(url), port))
        logger.info("Server running at %s", url)
        self._schedule_recheck()
        return True

    async def stop(self) -> bool:
        """
        Stop the running session.

        Returns:
            True once STOPPED, False if another transition was in flight

        Raises:
            InvalidTransition: No session is active
            BackendUnavailable: The backend could not be reached
        """
        try:
            self._begin_transition()
        except TransitionInProgress as e:
            logger.debug("Stop ignored: %s", e)
            return False

        try:
            return await self._stop()
        finally:
            self._in_flight = False

    async def _stop(self) -> bool:
        if self._state.phase is SessionPhase.STOPPED:
            raise InvalidTransition("Server is not running")

        self.error_message = ""
        self._set_state(SessionState.stopping())
        logger.info("Stopping server")

        try:
            await self._call("stop_server")
        except BackendUnavailable as e:
            self._fail("Failed to stop server", e)
            raise

        self._set_state(SessionState.stopped())
        logger.info("Server stopped")
        self._schedule_recheck()
        return True

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _query_backend_state(self) -> SessionState:
        running = await self._call("get_server_status")
        if not running:
            return SessionState.stopped()

        try:
            url = await self._call("get_server_url")
        except BackendUnavailable as e:
            url = ""
            reason = str(e)
        else:
            reason = "empty address"

        if not url:
            error = InconsistentState(f"Backend reports running but has no address ({reason})")
            logger.warning("%s; treating server as stopped", error)
            return SessionState.stopped()

        port = port_from_url(url)
        if port is None:
            port = self._state.port
        return SessionState.running(url, port)

    async def poll(self) -> SessionState:
        """
        Reconcile the session state with the backend and refresh monitors.

        Never raises. While a start or stop is in flight the session state
        is left alone.
        """
        if self._in_flight:
            logger.debug("Transition in flight, skipping status check")
        else:
            transitions = self._transitions
            try:
                state = await self._query_backend_state()
            except BackendUnavailable as e:
                if self._transitions == transitions:
                    self._fail("Failed to check server status", e)
            else:
                # A start/stop that began meanwhile owns the state
                if self._transitions == transitions:
                    self._set_state(state)

        await self.monitors.refresh()
        return self._state

    async def _poll_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll()
            except Exception:
                logger.exception("Status poll failed")

    def start_polling(self, interval: Optional[float] = None) -> None:
        """Start (or restart) the recurring status poll."""
        if self._poll_task is not None:
            self._poll_task.cancel()
        if interval is None:
            interval = self.poll_interval
        self._poll_task = asyncio.create_task(self._poll_loop(interval))

    async def stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        await _cancel(task)

    def _schedule_recheck(self) -> None:
        if self._recheck_task is not None:
            self._recheck_task.cancel()
        self._recheck_task = asyncio.create_task(self._recheck_later())

    async def _recheck_later(self) -> None:
        await asyncio.sleep(self.recheck_delay)
        await self.poll()

    async def close(self) -> None:
        """Cancel the poll loop and any pending re-check, then release the backend."""
        await self.stop_polling()
        task, self._recheck_task = self._recheck_task, None
        await _cancel(task)
        await self.backend.close()

    async def __aenter__(self) -> "SessionController":
        await self.poll()
        self.start_polling()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Informational
    # ------------------------------------------------------------------

    async def get_logs(self) -> Tuple[str, str]:
        """Return the backend (debug, error) logs."""
        return await self._call("get_logs")


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


def create_controller(config) -> SessionController:
    """
    Build a controller wired to the HTTP backend from a Config.

    The configured preset is applied first, then any explicit settings.
    """
    backend = HttpBackend(config.backend_endpoint, timeout=config.backend_timeout)
    reconciler = ConfigReconciler(PresetCatalog(config.presets))
    reconciler.apply_preset(config.preset)
    if config.settings:
        reconciler.update(config.settings)

    return SessionController(
        backend,
        reconciler,
        poll_interval=config.poll_interval,
        recheck_delay=config.recheck_delay,
    )
