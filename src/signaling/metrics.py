"""Prometheus-compatible metrics for signaling observability.

Tracks room and session lifecycle, admission outcomes, routed message
kinds and best-effort delivery failures. Metrics live in memory and are
exposed through the health server's /metrics endpoint in Prometheus text
exposition format.

Architecture:
    RoomCoordinator / Transport → MetricsCollector → /metrics endpoint
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        """Increment counter.

        Args:
            amount: Amount to increment by (default: 1.0)
        """
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Labelled counters are created on first use and keyed by
    ``name`` plus sorted label values.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        # Metrics storage (keyed by metric name + labels)
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}

        self._gauges["rooms_active"] = Gauge(
            name="signaling_rooms_active",
            help="Number of live room coordinators",
        )
        self._gauges["sessions_active"] = Gauge(
            name="signaling_sessions_active",
            help="Number of admitted sessions across all rooms",
        )
        self._counters["delivery_failures_total"] = Counter(
            name="signaling_delivery_failures_total",
            help="Outbound messages dropped because the channel was broken",
        )
        self._counters["guests_kicked_total"] = Counter(
            name="signaling_guests_kicked_total",
            help="Guests evicted with kick-guest",
        )

        logger.info("MetricsCollector initialized")

    def _labelled_counter(self, name: str, help_text: str, labels: dict[str, str]) -> Counter:
        key = name + self._format_labels(labels)
        counter = self._counters.get(key)
        if counter is None:
            counter = Counter(name=name, help=help_text, labels=labels)
            self._counters[key] = counter
        return counter

    # === Recording ===

    def record_admission(self, role: str) -> None:
        """Record a successful admission and bump the active session gauge."""
        with self._lock:
            self._labelled_counter(
                "signaling_admissions_total",
                "Sessions admitted, by role",
                {"role": role},
            ).inc()
            self._gauges["sessions_active"].inc()

    def record_rejection(self, reason: str) -> None:
        """Record a refused connection.

        Args:
            reason: Short reason label (e.g. "unauthorized", "room_full")
        """
        with self._lock:
            self._labelled_counter(
                "signaling_rejections_total",
                "Connections refused at admission, by reason",
                {"reason": reason},
            ).inc()

    def record_session_end(self) -> None:
        with self._lock:
            self._gauges["sessions_active"].dec()

    def record_message(self, kind: str) -> None:
        """Record an inbound message by kind ("unknown" for unrecognized kinds)."""
        with self._lock:
            self._labelled_counter(
                "signaling_messages_total",
                "Inbound messages, by kind",
                {"kind": kind},
            ).inc()

    def record_delivery_failure(self) -> None:
        with self._lock:
            self._counters["delivery_failures_total"].inc()

    def record_guest_kicked(self) -> None:
        with self._lock:
            self._counters["guests_kicked_total"].inc()

    def set_rooms_active(self, count: int) -> None:
        with self._lock:
            self._gauges["rooms_active"].set(count)

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Returns:
            Metrics text, one HELP/TYPE header per metric family
        """
        with self._lock:
            lines: list[str] = []
            seen: set[str] = set()

            for counter in sorted(self._counters.values(), key=lambda c: c.name):
                if counter.name not in seen:
                    lines.append(f"# HELP {counter.name} {counter.help}")
                    lines.append(f"# TYPE {counter.name} counter")
                    seen.add(counter.name)
                labels_str = self._format_labels(counter.labels)
                lines.append(f"{counter.name}{labels_str} {counter.value}")

            for gauge in self._gauges.values():
                lines.append(f"# HELP {gauge.name} {gauge.help}")
                lines.append(f"# TYPE {gauge.name} gauge")
                labels_str = self._format_labels(gauge.labels)
                lines.append(f"{gauge.name}{labels_str} {gauge.value}")

            return "\n".join(lines) + "\n"

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels for Prometheus output.

        Returns:
            Formatted label string (e.g., '{label1="value1",label2="value2"}')
        """
        if not labels:
            return ""

        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    def get_summary(self) -> dict[str, float]:
        """Get summary statistics for dashboards.

        Returns:
            Flat dictionary of key metrics
        """
        with self._lock:
            summary: dict[str, float] = {
                "rooms_active": self._gauges["rooms_active"].value,
                "sessions_active": self._gauges["sessions_active"].value,
                "delivery_failures": self._counters["delivery_failures_total"].value,
                "guests_kicked": self._counters["guests_kicked_total"].value,
            }
            for counter in self._counters.values():
                if counter.name == "signaling_admissions_total":
                    summary[f"admissions_{counter.labels['role']}"] = counter.value
                elif counter.name == "signaling_rejections_total":
                    summary[f"rejections_{counter.labels['reason']}"] = counter.value
            return summary


# Global metrics collector singleton
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
