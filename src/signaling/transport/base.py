"""Base transport abstraction for client connections.

Defines the lifecycle interface a transport (WebSocket server, in-memory
test transport) implements to feed connections into the room registry.
"""

from abc import ABC, abstractmethod


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a specific transport type and hands every
    accepted connection to a room coordinator.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport server.

        Initialize and bind the transport server to begin accepting connections.
        This should be non-blocking and return once the server is ready.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails (for network transports)
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport server.

        Gracefully shut down the transport, closing all active sessions and
        releasing resources.
        """
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        pass
