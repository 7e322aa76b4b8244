"""Configuration system using pydantic-settings with environment variable loading."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeSettings(BaseSettings):
    """Connection to the baker node's query API."""

    model_config = SettingsConfigDict(env_prefix="NODE_")

    uri: str = "http://127.0.0.1:10000"
    token: SecretStr = SecretStr("rpcadmin")  # default token of a fresh node
    timeout: float = 10.0  # seconds, applies to every node call


class StorageSettings(BaseSettings):
    """Local SQLite storage."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/bakerd.db"


class IngestionSettings(BaseSettings):
    """Block ingestion parameters.

    The seed block is where processing starts on an empty database. Heights
    below it are never ingested.
    All fields configurable via INGESTION_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="INGESTION_")

    seed_height: int = 2840311
    seed_hash: str = "994dbdd7f9493286ed05706e154c3366d83281a76bdb7a058a5f4c7859a9f9a8"
    seed_slot_time_ms: int = 1651978740000
    seed_baker: int = 2
    max_blocks_per_run: int = 1000  # bounds a single run while catching up


class JobSettings(BaseSettings):
    """Scheduler intervals in seconds. An interval of 0 disables the job."""

    model_config = SettingsConfigDict(env_prefix="JOBS_")

    block_fetcher_interval: float = 10.0
    price_refresher_interval: float = 60.0
    status_checker_interval: float = 60.0
    shutdown_timeout: float = 10.0  # grace period for in-flight runs


class PriceSettings(BaseSettings):
    """Price refresher configuration (ccxt exchange id and followed pairs)."""

    model_config = SettingsConfigDict(env_prefix="PRICE_")

    exchange: str = "bitfinex"
    pairs: list[str] = ["CCD/USD", "BTC/USD"]


class StatusSettings(BaseSettings):
    """Status checker configuration."""

    model_config = SettingsConfigDict(env_prefix="STATUS_")

    cpu_sample_seconds: float = 1.0
    max_reports: int = 10_000


class ApiSettings(BaseSettings):
    """Read-only HTTP API server."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"  # "json" for machine-readable output
    node: NodeSettings = NodeSettings()
    storage: StorageSettings = StorageSettings()
    ingestion: IngestionSettings = IngestionSettings()
    jobs: JobSettings = JobSettings()
    price: PriceSettings = PriceSettings()
    status: StatusSettings = StatusSettings()
    api: ApiSettings = ApiSettings()
