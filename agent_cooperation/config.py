"""Configuration management for the Agent Cooperation Engine.

Every field of ``AppConfig`` can be set from the environment as
``AGENT_COOP_<FIELD NAME IN UPPER CASE>``; ``load_config`` reads a ``.env``
file first when one exists.
"""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum


ENV_PREFIX = "AGENT_COOP_"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Settings for the engine, its HTTP surface and the audit store."""

    app_name: str = Field(default="Agent Cooperation Engine", description="Service name")
    app_version: str = Field(default="1.0.0", description="Service version")
    debug: bool = Field(default=False, description="Debug mode")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, description="Bind port")
    reload: bool = Field(default=False, description="Auto-reload on code changes")

    database_url: str = Field(
        default="sqlite:///./agent_cooperation.db",
        description="SQLAlchemy URL of the audit store"
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")
    audit_enabled: bool = Field(default=True, description="Record workflow audit events")

    retry_backoff_base_ms: int = Field(
        default=1000,
        description="Delay after the n-th failed attempt is this value times n"
    )
    max_traversal_steps: int = Field(
        default=250,
        description="Maximum nodes along one path of an execution; stops cycles"
    )

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Root log level")
    log_format: Optional[str] = Field(default=None, description="Format string for plain log output")
    log_file: Optional[str] = Field(default=None, description="Rotating log file")
    log_structured: bool = Field(default=False, description="Emit JSON log lines")
    log_max_size: int = Field(default=10 * 1024 * 1024, description="Log rotation size in bytes")
    log_backup_count: int = Field(default=5, description="Rotated log files to keep")

    slow_request_threshold: float = Field(default=5.0, description="Seconds before a request is logged as slow")
    enable_performance_monitoring: bool = Field(default=True, description="Add the response-time middleware")

    cors_origins: list = Field(default=["*"], description="Allowed CORS origins")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        scheme = v.split('://', 1)[0].split('+', 1)[0].lower() if v else ""
        if scheme not in ('sqlite', 'postgresql', 'mysql'):
            raise ValueError(f"Unsupported database URL: {v!r}")
        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('retry_backoff_base_ms')
    @classmethod
    def validate_backoff(cls, v):
        if v < 0:
            raise ValueError("Retry backoff base cannot be negative")
        return v

    @field_validator('max_traversal_steps')
    @classmethod
    def validate_max_traversal_steps(cls, v):
        if v < 1:
            raise ValueError("Maximum traversal steps must be at least 1")
        return v

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator('cors_origins', mode='before')
    @classmethod
    def split_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.lower().startswith("sqlite")

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Keyword arguments for ``uvicorn.run``."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Build a configuration from ``AGENT_COOP_*`` variables; unset fields keep their defaults."""
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        return cls.model_validate(values)


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, reading the environment on first use."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load ``config_file`` (or ./.env) into the environment and rebuild the configuration."""
    global _config

    from dotenv import load_dotenv
    env_file = config_file if config_file and os.path.exists(config_file) else '.env'
    if os.path.exists(env_file):
        load_dotenv(env_file)

    _config = AppConfig.from_env()
    return _config


def reset_config():
    global _config
    _config = None


def _ensure_directory(path: str, label: str, errors: list):
    directory = os.path.dirname(path)
    if not directory or os.path.isdir(directory):
        return
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as e:
        errors.append(f"Cannot create {label} directory {directory}: {e}")


def validate_config(config: AppConfig) -> None:
    """Create missing directories for the SQLite file and the log file.

    Raises:
        ConfigurationError: If a directory cannot be created
    """
    errors = []

    if config.is_sqlite:
        db_path = config.database_url.split(":///", 1)[-1]
        if db_path != ":memory:":
            _ensure_directory(db_path, "database", errors)

    if config.log_file:
        _ensure_directory(config.log_file, "log", errors)

    if errors:
        from .core.exceptions import ConfigurationError
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")


def get_development_config() -> AppConfig:
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_echo=True
    )


def get_testing_config() -> AppConfig:
    """In-memory audit store, no retry delays and a low traversal depth limit."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        retry_backoff_base_ms=0,
        max_traversal_steps=100,
        enable_performance_monitoring=False
    )
