"""Shared pytest configuration and fixtures for the KVM Control test suite."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from kvm_control.errors import CommandRejected
from kvm_control.reconciler import ConfigReconciler
from kvm_control.session import SessionController


DEFAULT_MONITORS = [
    {"id": 0, "name": "DP-1", "width": 2560, "height": 1440, "is_primary": False},
    {"id": 1, "name": "HDMI-1", "width": 1920, "height": 1080, "is_primary": True},
    {"id": 2, "name": "eDP-1", "width": 1920, "height": 1200, "is_primary": False},
]


class FakeBackend:
    """
    In-memory stand-in for the streaming backend.

    Every command is an AsyncMock wrapping a small state machine, so tests
    can both rely on realistic answers and override them with side_effect.
    """

    def __init__(self, host: str = "http://host", monitors: Optional[List[Dict[str, Any]]] = None):
        self.host = host
        self.running = False
        self.port: Optional[int] = None
        self.options: Optional[Dict[str, Any]] = None
        self.monitor_list = list(DEFAULT_MONITORS if monitors is None else monitors)

        self.start_server = AsyncMock(side_effect=self._start_server)
        self.stop_server = AsyncMock(side_effect=self._stop_server)
        self.get_server_status = AsyncMock(side_effect=self._get_server_status)
        self.get_server_url = AsyncMock(side_effect=self._get_server_url)
        self.get_available_monitors = AsyncMock(side_effect=self._get_available_monitors)
        self.get_logs = AsyncMock(return_value=("debug output", "error output"))
        self.close = AsyncMock()

    async def _start_server(self, port: int, options: Dict[str, Any]) -> str:
        if self.running:
            raise CommandRejected("start_server", "Server is already running")
        self.running = True
        self.port = port
        self.options = options
        return f"{self.host}:{port}"

    async def _stop_server(self) -> None:
        if not self.running:
            raise CommandRejected("stop_server", "Server is not running")
        self.running = False

    async def _get_server_status(self) -> bool:
        return self.running

    async def _get_server_url(self) -> str:
        if not self.running:
            raise CommandRejected("get_server_url", "Server is not running")
        return f"{self.host}:{self.port}/kvm"

    async def _get_available_monitors(self) -> List[Dict[str, Any]]:
        return list(self.monitor_list)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def reconciler() -> ConfigReconciler:
    return ConfigReconciler()


@pytest_asyncio.fixture
async def controller(fake_backend, reconciler):
    """Controller with a fast poll interval and a re-check that never fires on its own."""
    controller = SessionController(
        fake_backend,
        reconciler,
        poll_interval=0.01,
        recheck_delay=60.0,
    )
    yield controller
    await controller.close()


@pytest.fixture
def config_file(tmp_path) -> Path:
    """Path for a per-test config.yaml (not created)."""
    return tmp_path / "config.yaml"
