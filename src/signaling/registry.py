"""In-process room registry.

Maps room names to their coordinator. A coordinator is created on first
reference and, when ``evict_empty_rooms`` is enabled, dropped as soon as its
last session leaves; a later connection to the same name starts a fresh
room with no password.
"""

import logging
from typing import Any

from src.signaling.config import RoomConfig
from src.signaling.coordinator import RoomCoordinator
from src.signaling.metrics import MetricsCollector, get_metrics_collector

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Exactly one live coordinator per room name within this process."""

    def __init__(
        self,
        config: RoomConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            config: Policy applied to every room created by this registry
            metrics: Metrics collector shared by all rooms
        """
        self.config = config or RoomConfig()
        self._metrics = metrics or get_metrics_collector()
        self._rooms: dict[str, RoomCoordinator] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, name: object) -> bool:
        return name in self._rooms

    @property
    def rooms(self) -> dict[str, RoomCoordinator]:
        """Snapshot of live rooms."""
        return dict(self._rooms)

    @property
    def session_count(self) -> int:
        return sum(len(room.sessions) for room in self._rooms.values())

    def get(self, name: str) -> RoomCoordinator | None:
        return self._rooms.get(name)

    def get_or_create(self, name: str) -> RoomCoordinator:
        """Return the room's coordinator, creating it on first reference."""
        room = self._rooms.get(name)
        if room is None:
            room = RoomCoordinator(name, config=self.config, metrics=self._metrics)
            self._rooms[name] = room
            self._metrics.set_rooms_active(len(self._rooms))
            logger.info("Room created", extra={"room": name})
        return room

    def release(self, name: str) -> bool:
        """Evict the room if it has no sessions left.

        Returns:
            True if the room was evicted
        """
        room = self._rooms.get(name)
        if room is None or not room.is_empty or not self.config.evict_empty_rooms:
            return False

        del self._rooms[name]
        self._metrics.set_rooms_active(len(self._rooms))
        logger.info("Room evicted", extra={"room": name})
        return True

    def close_all(self) -> None:
        """Close every session channel in every room."""
        for room in list(self._rooms.values()):
            room.close_all()

    def summary(self) -> list[dict[str, Any]]:
        """Per-room snapshot, sorted by room name."""
        return [self._rooms[name].summary() for name in sorted(self._rooms)]
