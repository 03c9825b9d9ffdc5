"""Signaling server entry point.

Wires the room registry, the WebSocket transport and the HTTP health
server together:
1. Loads configuration (YAML + environment overrides)
2. Configures logging
3. Starts the WebSocket transport on /signal/<room>
4. Starts health/metrics endpoints
5. Runs until SIGINT/SIGTERM, then shuts down gracefully
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from src.signaling.config import SignalingConfig
from src.signaling.health import setup_health_routes
from src.signaling.metrics import MetricsCollector, get_metrics_collector
from src.signaling.registry import RoomRegistry
from src.signaling.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "configs" / "signaling.yaml"


class SignalingServer:
    """Signaling server: one registry, one WebSocket transport, one health app.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self, config: SignalingConfig, metrics: MetricsCollector | None = None
    ) -> None:
        """Initialize server components (nothing is bound yet).

        Args:
            config: Server configuration
            metrics: Metrics collector (defaults to the global collector)
        """
        self.config = config
        self.metrics = metrics or get_metrics_collector()
        self.registry = RoomRegistry(config.room, metrics=self.metrics)
        self.transport = WebSocketTransport(
            self.registry, config.transport.websocket, metrics=self.metrics
        )
        self._health_runner: AppRunner | None = None
        self._health_site: TCPSite | None = None

    @property
    def port(self) -> int:
        """Bound WebSocket port."""
        return self.transport.port

    @property
    def health_port(self) -> int | None:
        """Bound health server port, or None when disabled/not started."""
        if self._health_runner is None or not self._health_runner.addresses:
            return None
        port: int = self._health_runner.addresses[0][1]
        return port

    async def start(self) -> None:
        """Start the transport and (if enabled) the health server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If a port cannot be bound
        """
        await self.transport.start()
        logger.info("WebSocket transport started", extra={"port": self.port})

        if self.config.health.enabled:
            health_app = Application()
            setup_health_routes(health_app, self.registry, self.transport, self.metrics)

            self._health_runner = AppRunner(health_app)
            await self._health_runner.setup()
            self._health_site = TCPSite(
                self._health_runner, self.config.health.host, self.config.health.port
            )
            await self._health_site.start()
            logger.info("Health check server started", extra={"port": self.health_port})

        logger.info(
            "Signaling server ready",
            extra={
                "max_guests": self.config.room.max_guests,
                "restrict_control": self.config.room.restrict_control_to_director,
            },
        )

    async def stop(self) -> None:
        """Stop the transport and health server."""
        logger.info("Shutting down signaling server")

        try:
            await asyncio.wait_for(
                self.transport.stop(), timeout=self.config.graceful_shutdown_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning(
                "WebSocket transport did not stop in time",
                extra={"timeout_s": self.config.graceful_shutdown_timeout_s},
            )

        if self._health_runner is not None:
            await self._health_runner.cleanup()
            self._health_runner = None
            self._health_site = None
            logger.info("Health check server stopped")

        logger.info("Signaling server stopped")


async def start_server(config_path: Path | None = None) -> None:
    """Start the signaling server and run until interrupted.

    Args:
        config_path: Path to YAML config file (defaults are used if missing)
    """
    config = SignalingConfig.from_yaml_with_defaults(config_path)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    server = SignalingServer(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await server.start()
        await stop_event.wait()
        logger.info("Received shutdown signal")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await server.stop()


def main() -> None:
    """Entry point for the signaling server."""
    parser = argparse.ArgumentParser(description="WebRTC studio signaling server")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to signaling config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Signaling server interrupted")


if __name__ == "__main__":
    main()
