"""Shared fixtures for signaling tests."""

import itertools
from collections.abc import Callable

import pytest

from src.signaling.config import RoomConfig
from src.signaling.coordinator import RoomCoordinator
from src.signaling.metrics import MetricsCollector
from src.signaling.session import Role, Session
from tests.helpers.channels import FakeChannel


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh metrics collector (keeps the global one untouched)."""
    return MetricsCollector()


@pytest.fixture
def room_factory(metrics: MetricsCollector) -> Callable[..., RoomCoordinator]:
    """Build rooms with predictable session ids (s1, s2, ...)."""

    def factory(config: RoomConfig | None = None) -> RoomCoordinator:
        counter = itertools.count(1)
        return RoomCoordinator(
            "studio",
            config=config,
            metrics=metrics,
            id_factory=lambda: f"s{next(counter)}",
        )

    return factory


@pytest.fixture
def room(room_factory: Callable[..., RoomCoordinator]) -> RoomCoordinator:
    return room_factory()


@pytest.fixture
def join(room: RoomCoordinator) -> Callable[..., tuple[Session, FakeChannel]]:
    """Admit a session into ``room`` on a fresh FakeChannel."""

    def _join(
        role: Role = Role.GUEST, name: str | None = None, password: str | None = None
    ) -> tuple[Session, FakeChannel]:
        channel = FakeChannel()
        session = room.admit(channel, name=name, role=role, password=password)
        return session, channel

    return _join

