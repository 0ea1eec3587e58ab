"""Engine configuration for the permission manager.

Pydantic-validated settings shared by the graph, compiler and evaluator of one
``PermissionManager``. Direct os.environ/os.getenv usage is limited to
:func:`load_engine_config_from_env`.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EngineConfig(BaseModel):
    """Settings for one permission engine instance.

    Policy content is not configured here; it is declared in code through
    ``PolicyCompiler.configure()``.
    """

    name: str = Field(
        default="default",
        description="Engine name, attached to every log record the engine emits",
    )

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level used by setup_logging()",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )
    log_decisions: bool = Field(
        default=False,
        description="Log every is_allowed() decision at DEBUG level",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject blank engine names."""
        if not v.strip():
            raise ValueError("Engine name must not be blank")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    model_config = {
        "extra": "forbid",
    }


def load_engine_config_from_env() -> EngineConfig:
    """Load engine configuration from environment variables.

    Environment variables:
    - PERMISSION_MANAGER_NAME: Engine name (default: "default")
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - PERMISSION_LOG_DECISIONS: Log every decision (true/false, default: false)

    Returns:
        EngineConfig instance with values from environment or defaults.
    """
    import os

    truthy = ("true", "1", "yes", "on")

    return EngineConfig(
        name=os.getenv("PERMISSION_MANAGER_NAME", "default"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in truthy,
        log_decisions=os.getenv("PERMISSION_LOG_DECISIONS", "false").lower() in truthy,
    )


__all__ = [
    "EngineConfig",
    "LogLevel",
    "load_engine_config_from_env",
]
