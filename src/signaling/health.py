"""Health check endpoints for the signaling server.

Provides HTTP endpoints for load balancers, monitoring systems and
orchestration tools (e.g., Docker healthcheck, Kubernetes liveness probe),
plus a room listing and Prometheus metrics.
"""

import logging
import time
from typing import Any

from aiohttp import web

from src.signaling.metrics import MetricsCollector, get_metrics_collector
from src.signaling.registry import RoomRegistry

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the signaling server.

    Endpoints:
    - /health, /readiness: 200 while the transport accepts connections
    - /liveness: 200 while the process runs
    - /rooms: live rooms with per-role session counts
    - /metrics, /metrics/summary: Prometheus text and JSON summary
    """

    def __init__(
        self,
        registry: RoomRegistry,
        transport: Any = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize health check handler.

        Args:
            registry: Room registry to report on
            transport: Transport exposing ``is_running`` (optional)
            metrics: Metrics collector (defaults to the global collector)
        """
        self.registry = registry
        self.transport = transport
        self.start_time = time.time()
        self.metrics_collector = metrics or get_metrics_collector()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Transport is running
            503 Service Unavailable: Transport is down

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "transport": bool,
            "rooms": int,
            "sessions": int
        }
        """
        transport_ok = self.transport is not None and bool(self.transport.is_running)
        status_code = 200 if transport_ok else 503

        response_data = {
            "status": "healthy" if transport_ok else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "transport": transport_ok,
            "rooms": len(self.registry),
            "sessions": self.registry.session_count,
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=status_code)

    async def readiness_check(self, request: web.Request) -> web.Response:
        """Readiness check endpoint (same as health)."""
        return await self.health_check(request)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK if the process is running, even if the transport is down.
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def rooms(self, request: web.Request) -> web.Response:
        """List live rooms. Passwords are never included."""
        return web.json_response({"rooms": self.registry.summary()})

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
            Content-Type: text/plain; version=0.0.4
        """
        try:
            metrics_text = self.metrics_collector.export_prometheus()
        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

        response = web.Response(text=metrics_text, status=200)
        response.headers["Content-Type"] = "text/plain; version=0.0.4; charset=utf-8"
        return response

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary endpoint."""
        return web.json_response(
            {
                "status": "ok",
                "uptime_seconds": time.time() - self.start_time,
                "metrics": self.metrics_collector.get_summary(),
            },
            status=200,
        )


def setup_health_routes(
    app: web.Application,
    registry: RoomRegistry,
    transport: Any = None,
    metrics: MetricsCollector | None = None,
) -> HealthCheckHandler:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        registry: Room registry to report on
        transport: Transport instance (optional)
        metrics: Metrics collector (optional)

    Returns:
        The handler bound to the routes
    """
    handler = HealthCheckHandler(registry=registry, transport=transport, metrics=metrics)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/readiness", handler.readiness_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/rooms", handler.rooms)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info(
        "Health check endpoints configured: "
        "/health, /readiness, /liveness, /rooms, /metrics, /metrics/summary"
    )
    return handler
