"""
Cache of the displays the backend can capture.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .backend import Backend
from .reconciler import ConfigReconciler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Monitor:
    """A display reported by the backend."""

    id: int
    name: str
    width: int
    height: int
    is_primary: bool = False
    x: int = 0
    y: int = 0

    @classmethod
    def from_dict(cls, index: int, data: Dict[str, Any]) -> "Monitor":
        return cls(
            id=int(data.get("id", index)),
            name=str(data.get("name", f"Monitor {index + 1}")),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            is_primary=bool(data.get("is_primary", False)),
            x=int(data.get("position_x", data.get("x", 0))),
            y=int(data.get("position_y", data.get("y", 0))),
        )

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "width": self.width,
            "height": self.height,
            "is_primary": self.is_primary,
        }


class MonitorRegistry:
    """
    Snapshot of available monitors, refreshed on every poll.

    A failed refresh empties the snapshot instead of keeping stale data.
    """

    def __init__(self, backend: Backend, reconciler: Optional[ConfigReconciler] = None):
        self.backend = backend
        self.reconciler = reconciler
        self._monitors: Tuple[Monitor, ...] = ()
        self.loading = False
        self.last_error: Optional[str] = None

    @property
    def monitors(self) -> List[Monitor]:
        return list(self._monitors)

    def __len__(self) -> int:
        return len(self._monitors)

    def get(self, index: int) -> Optional[Monitor]:
        if 0 <= index < len(self._monitors):
            return self._monitors[index]
        return None

    def default_index(self) -> int:
        """Index of the primary monitor, or 0 if none is marked primary."""
        for index, monitor in enumerate(self._monitors):
            if monitor.is_primary:
                return index
        return 0

    async def refresh(self) -> List[Monitor]:
        """
        Fetch the monitor list from the backend.

        Never raises; on failure the snapshot is cleared and the error is
        kept in last_error.
        """
        self.loading = True
        try:
            raw = await self.backend.get_available_monitors()
            self._monitors = tuple(Monitor.from_dict(i, item) for i, item in enumerate(raw))
            self.last_error = None
        except Exception as e:
            logger.warning("Failed to load monitors: %s", e)
            self._monitors = ()
            self.last_error = str(e)
        finally:
            self.loading = False

        if self.reconciler is not None:
            self.reconciler.adopt_monitors(self._monitors, self.default_index())

        return self.monitors
