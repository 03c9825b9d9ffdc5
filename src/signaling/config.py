"""Configuration schema for the signaling server.

Defines Pydantic models for loading and validating server configuration
from YAML files and environment variables.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=0, le=65535, description="Bind port (0 = ephemeral)")
    max_connections: int = Field(
        default=500, ge=1, description="Maximum concurrent connections across all rooms"
    )
    max_message_size: int = Field(
        default=2**20, ge=1024, description="Maximum inbound message size in bytes"
    )
    ping_interval_s: float | None = Field(
        default=20.0, gt=0, description="Keepalive ping interval (None disables)"
    )
    ping_timeout_s: float | None = Field(
        default=20.0, gt=0, description="Keepalive pong timeout (None disables)"
    )
    outbound_queue_size: int = Field(
        default=256, ge=1, description="Per-session outbound message queue limit"
    )
    path_prefix: str = Field(
        default="/signal/", description="URL prefix followed by the room name"
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Reject privileged ports; 0 asks the OS for a free port."""
        if 0 < v < 1024:
            raise ValueError(f"WebSocket port must be 0 or in 1024-65535, got {v}")
        return v

    @field_validator("path_prefix")
    @classmethod
    def validate_path_prefix(cls, v: str) -> str:
        """Normalize the prefix to start and end with a slash."""
        if not v.startswith("/"):
            v = "/" + v
        if not v.endswith("/"):
            v = v + "/"
        return v


class TransportConfig(BaseModel):
    """Transport layer configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)


class RoomConfig(BaseModel):
    """Per-room admission and routing policy."""

    max_guests: int = Field(default=5, ge=1, description="Concurrent guest limit per room")
    default_name: str = Field(
        default="Unnamed", min_length=1, description="Display name when none is supplied"
    )
    restrict_control_to_director: bool = Field(
        default=False,
        description="Only directors may send kick-guest and remote-mute",
    )
    evict_empty_rooms: bool = Field(
        default=True,
        description="Drop a room's coordinator (and password) once its last session leaves",
    )


class HealthConfig(BaseModel):
    """HTTP health/metrics server configuration."""

    enabled: bool = Field(default=True, description="Serve health and metrics endpoints")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int = Field(default=8081, ge=0, le=65535, description="Bind port")


class SignalingConfig(BaseModel):
    """Root signaling server configuration."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    room: RoomConfig = Field(default_factory=RoomConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and upper-case the logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "SignalingConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import os

        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        # Apply WebSocket environment variable overrides
        if host := os.getenv("SIGNALING_HOST"):
            data.setdefault("transport", {}).setdefault("websocket", {})["host"] = host

        if port := os.getenv("SIGNALING_PORT"):
            data.setdefault("transport", {}).setdefault("websocket", {})["port"] = int(port)

        # Apply room policy overrides
        if max_guests := os.getenv("SIGNALING_MAX_GUESTS"):
            data.setdefault("room", {})["max_guests"] = int(max_guests)

        if restrict := os.getenv("SIGNALING_RESTRICT_CONTROL"):
            data.setdefault("room", {})["restrict_control_to_director"] = restrict.lower() in (
                "true",
                "1",
                "yes",
            )

        if log_level := os.getenv("LOG_LEVEL"):
            data["log_level"] = log_level

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "SignalingConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls()
