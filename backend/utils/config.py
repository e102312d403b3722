"""
ConfSync Configuration Module.

Centralizes all configuration settings using Pydantic Settings.
Requires Python 3.11+.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file into os.environ at module import time
# This ensures nested BaseSettings classes can read the values
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    # Try current working directory
    load_dotenv()


class SyncSettings(BaseSettings):
    """Configuration synchronization settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    config_file: Path = Field(default=Path("config.yml"), description="Shared configuration file")
    poll_interval_minutes: float = Field(
        default=1.0,
        gt=0,
        description="Minutes between store polls (also worst-case propagation delay)",
    )
    node_id: str | None = Field(default=None, description="Explicit node identity")
    node_id_file: Path = Field(default=Path(".node_id"), description="Where a generated node id is kept")
    source_node_id: str | None = Field(
        default=None,
        description="Node whose published config is pulled; defaults to this node's own id",
    )
    suppress_pulled_writes: bool = Field(
        default=True,
        description="Skip publishing file changes made by the poll path",
    )
    enabled: bool = Field(default=True)

    @field_validator("node_id", "source_node_id", mode="before")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Treat empty environment values as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @property
    def poll_interval_seconds(self) -> float:
        """Poll period in seconds."""
        return self.poll_interval_minutes * 60.0


class StoreSettings(BaseSettings):
    """Shared config store settings."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    backend: Literal["sqlite", "neo4j", "memory"] = Field(default="sqlite")
    sqlite_path: Path = Field(default=Path("data/confsync.db"))
    sqlite_timeout: float = Field(default=10.0, ge=0.1, description="Seconds to wait on a locked database")


class Neo4jSettings(BaseSettings):
    """Neo4j database connection settings."""

    model_config = SettingsConfigDict(env_prefix="NEO4J_")

    uri: str = Field(default="bolt://localhost:7687", description="Neo4j connection URI")
    user: str = Field(default="neo4j", description="Neo4j username")
    password: str = Field(default="password", description="Neo4j password")
    database: str = Field(default="neo4j", description="Neo4j database name")
    max_connection_pool_size: int = Field(default=10, ge=1, le=100)
    connection_timeout: float = Field(default=30.0, ge=1.0)
    max_retries: int = Field(default=3, ge=1, le=10)


class WatcherSettings(BaseSettings):
    """File watcher configuration settings."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_")

    debounce_delay_ms: int = Field(default=500, ge=100, le=5000)
    join_timeout_seconds: float = Field(default=5.0, ge=0.1)
    rewatch_interval_seconds: float = Field(default=1.0, gt=0)
    enabled: bool = Field(default=True)


class APISettings(BaseSettings):
    """API server configuration settings."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    debug: bool = Field(default=False)
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Allowed CORS origins",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="json")  # "json" or "console"


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="ConfSync")
    app_version: str = Field(default="0.1.0")
    environment: str = Field(default="development")

    # Sub-settings
    sync: SyncSettings = Field(default_factory=SyncSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    neo4j: Neo4jSettings = Field(default_factory=Neo4jSettings)
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    api: APISettings = Field(default_factory=APISettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() in ("development", "dev", "local")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns singleton instance of Settings for performance.
    Components receive the sub-settings they need at construction.
    """
    return Settings()
