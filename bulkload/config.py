"""
Configuration management for the bulk loader.
Handles environment variables, constants, and runtime parameters.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from psycopg2.extensions import make_dsn


# Environment types
ENV_LOCAL = "local"
ENV_PRODUCTION = "production"

# Tuning profiles
PROFILE_NONE = "none"
PROFILE_SESSION = "session"
PROFILE_AGGRESSIVE = "aggressive"
TUNING_PROFILES = (PROFILE_NONE, PROFILE_SESSION, PROFILE_AGGRESSIVE)

# Duplicate column policies
ON_DUPLICATE_ERROR = "error"
ON_DUPLICATE_SUFFIX = "suffix"

DEFAULT_PROGRESS_INTERVAL = 100_000
DEFAULT_POSTGRES_PORT = "5433"


@dataclass
class LoadConfig:
    """Central configuration for a bulk load."""

    # Environment
    environment: str = ENV_LOCAL
    database_url: Optional[str] = None

    # Performance tuning
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL
    tuning_profile: str = PROFILE_AGGRESSIVE
    restore_settings: bool = True
    copy_chunk_size: int = 8192

    # Source
    encoding: str = "utf-8-sig"
    delimiter: str = ","

    # Schema
    on_duplicate_columns: str = ON_DUPLICATE_ERROR

    # Database
    db_connect_timeout: int = 30

    def __post_init__(self):
        if self.tuning_profile not in TUNING_PROFILES:
            raise ValueError(
                f"Unknown tuning profile {self.tuning_profile!r}, "
                f"expected one of: {', '.join(TUNING_PROFILES)}"
            )
        if self.on_duplicate_columns not in (ON_DUPLICATE_ERROR, ON_DUPLICATE_SUFFIX):
            raise ValueError(f"Unknown duplicate column policy {self.on_duplicate_columns!r}")
        if self.progress_interval <= 0:
            raise ValueError("progress_interval must be positive")

    @classmethod
    def from_env(
        cls,
        use_production: bool = False,
        profile: Optional[str] = None,
        env_dir: Optional[Path] = None,
    ) -> "LoadConfig":
        """
        Load configuration from environment variables.

        Args:
            use_production: Use production environment file
            profile: Tuning profile - "none", "session" or "aggressive"
            env_dir: Directory holding the .env files (defaults to cwd)
        """
        env_dir = env_dir or Path.cwd()

        # Determine which env file to load
        if use_production:
            env_path = env_dir / ".env.production"
            environment = ENV_PRODUCTION
        else:
            env_path = env_dir / ".env.local"
            environment = ENV_LOCAL
            if not env_path.exists():
                env_path = env_dir / ".env"

        if env_path.exists():
            load_dotenv(env_path)

        database_url = os.getenv("DATABASE_URL") or _dsn_from_parts()

        if not database_url:
            missing = [
                name for name in ("POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD")
                if not os.getenv(name)
            ]
            raise ValueError(
                "Missing required environment variables: DATABASE_URL or "
                + ", ".join(missing)
            )

        progress_interval = int(
            os.getenv("BULKLOAD_PROGRESS_INTERVAL", DEFAULT_PROGRESS_INTERVAL)
        )
        tuning_profile = profile or os.getenv("BULKLOAD_TUNING_PROFILE", PROFILE_AGGRESSIVE)

        return cls(
            environment=environment,
            database_url=database_url,
            progress_interval=progress_interval,
            tuning_profile=tuning_profile,
        )

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == ENV_PRODUCTION


def _dsn_from_parts() -> Optional[str]:
    """Compose a libpq DSN from docker-compose style POSTGRES_* variables."""
    dbname = os.getenv("POSTGRES_DB")
    user = os.getenv("POSTGRES_USER")
    password = os.getenv("POSTGRES_PASSWORD")
    if not all([dbname, user, password]):
        return None

    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", DEFAULT_POSTGRES_PORT)
    return make_dsn(host=host, port=port, dbname=dbname, user=user, password=password)


# Message constants
MSG_LOADING_ENV = "Loading environment configuration"
MSG_CONNECTING_DB = "Establishing database connection"
MSG_TUNED = "PostgreSQL optimized for COPY"
MSG_RESTORED = "Session settings restored"
MSG_COPY_START = "Starting COPY stream"
MSG_ROLLBACK = "Rolling back transaction"

# Error messages
ERR_CONNECTION_FAILED = "Failed to establish connection"
ERR_LOAD_FAILED = "Load failed, nothing committed"
