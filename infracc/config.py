"""InfraCC configuration management.

Loads configuration from environment variables with sensible defaults.
Every tunable of the record store (debounce, batch sizes, ingestion
timeout, cost epsilon) lives here so tests can shrink them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class StoreConfig:
    """Record cache, write coalescer and bulk loader tuning."""

    debounce_seconds: float = 0.2
    flush_batch_size: int = 2000
    load_chunk_size: int = 1000
    load_chunk_threshold: int = 1000  # Above this key count the loader chunks
    flush_timeout_seconds: float = 300.0
    clear_on_corrupt_load: bool = True  # Lossy recovery, see DESIGN.md

    def __post_init__(self) -> None:
        if self.debounce_seconds < 0:
            raise ValueError("debounce_seconds must be >= 0")
        if self.flush_batch_size < 1:
            raise ValueError("flush_batch_size must be >= 1")
        if self.load_chunk_size < 1:
            raise ValueError("load_chunk_size must be >= 1")


@dataclass
class IngestConfig:
    """Ingestion/dedupe pipeline settings."""

    batch_size: int = 500
    cost_epsilon: float = 0.001
    timeout_seconds: float = 1800.0  # 30 minutes
    default_region: str = "us-east-1"
    default_os: str = "linux"
    default_currency: str = "USD"
    max_error_messages: int = 100

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.cost_epsilon < 0:
            raise ValueError("cost_epsilon must be >= 0")


@dataclass
class RedisConfig:
    """Backing store connection (Redis)."""

    url: str = "redis://localhost:6379/0"
    namespace: str = "infracc:records:"


@dataclass
class AppConfig:
    """Root application configuration."""

    log_level: str = "INFO"
    log_format: str = "text"  # json or text

    store: StoreConfig = field(default_factory=StoreConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables.

        All variables are optional:
        - REDIS_URL / REDIS_NAMESPACE: backing store location
        - STORE_DEBOUNCE_MS, STORE_FLUSH_BATCH_SIZE, STORE_LOAD_CHUNK_SIZE,
          STORE_LOAD_CHUNK_THRESHOLD, STORE_FLUSH_TIMEOUT,
          STORE_CLEAR_ON_CORRUPT_LOAD
        - INGEST_BATCH_SIZE, INGEST_COST_EPSILON, INGEST_TIMEOUT,
          INGEST_DEFAULT_REGION, INGEST_DEFAULT_OS, INGEST_DEFAULT_CURRENCY
        - LOG_LEVEL, LOG_FORMAT

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
            store=StoreConfig(
                debounce_seconds=_env_int("STORE_DEBOUNCE_MS", 200) / 1000,
                flush_batch_size=_env_int("STORE_FLUSH_BATCH_SIZE", 2000),
                load_chunk_size=_env_int("STORE_LOAD_CHUNK_SIZE", 1000),
                load_chunk_threshold=_env_int("STORE_LOAD_CHUNK_THRESHOLD", 1000),
                flush_timeout_seconds=_env_float("STORE_FLUSH_TIMEOUT", 300.0),
                clear_on_corrupt_load=_env_bool("STORE_CLEAR_ON_CORRUPT_LOAD", True),
            ),
            ingest=IngestConfig(
                batch_size=_env_int("INGEST_BATCH_SIZE", 500),
                cost_epsilon=_env_float("INGEST_COST_EPSILON", 0.001),
                timeout_seconds=_env_float("INGEST_TIMEOUT", 1800.0),
                default_region=os.getenv("INGEST_DEFAULT_REGION", "us-east-1"),
                default_os=os.getenv("INGEST_DEFAULT_OS", "linux"),
                default_currency=os.getenv("INGEST_DEFAULT_CURRENCY", "USD"),
                max_error_messages=_env_int("INGEST_MAX_ERROR_MESSAGES", 100),
            ),
            redis=RedisConfig(
                url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
                namespace=os.getenv("REDIS_NAMESPACE", "infracc:records:"),
            ),
        )


# Singleton instance (lazy-loaded), used by the CLI only
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create singleton AppConfig instance from environment.

    Library code takes its config explicitly; this is the CLI entry point.
    """
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config
