"""Process configuration.

Loaded once at startup from the environment, then from ``config.env`` and
``.env`` in the working directory (environment variables win).  Only the
proxy flag changes at runtime, and that lives in EngineState, not here.
"""
from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from klinefeed.data.intervals import SUPPORTED_INTERVALS
from klinefeed.exceptions import ConfigError


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """Service settings; field names map to upper-case environment variables."""

    model_config = SettingsConfigDict(
        env_file=("config.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field("klinefeed", description="Service name reported by /health")

    # Database
    db_name: str = Field("crypto_data", description="Database name")
    database_url: str = Field("", description="SQLAlchemy URL; defaults to a SQLite file named after db_name")
    db_dir: Path = Field(Path("data"), description="Directory for the default SQLite file")

    # HTTP surface
    api_host: str = Field("127.0.0.1", description="Bind address")
    api_port: int = Field(8080, description="Bind port")
    api_allowed_origins: str = Field("*", description="Comma-separated CORS origins")
    api_key: str = Field("", description="Bearer token; empty disables auth")

    # Upstream feed
    binance_symbols: str = Field("BTCUSDT,ETHUSDT,BNBUSDT", description="Comma-separated symbols")
    binance_intervals: str = Field("5m,30m,1h,4h", description="Comma-separated intervals")
    binance_base_url: str = Field("https://api.binance.com", description="Feed base URL")
    binance_proxy_url: str = Field("", description="Prefix prepended to every URL in proxy mode")
    binance_use_proxy: bool = Field(False, description="Initial routing mode")
    binance_test_symbol: str = Field("BTCUSDT", description="Symbol used by the connectivity probe")

    # Time zone
    timezone: str = Field("Asia/Shanghai", description="IANA zone name for stored timestamps")
    timezone_offset: int = Field(8, description="Fallback UTC offset in hours")

    # Logging
    log_level: str = Field("INFO", description="Root log level")
    log_file: str = Field("logs/klinefeed.log", description="Log file path; empty disables file logging")
    log_max_size: int = Field(10, description="Log file size in MB before rotation")
    log_max_backups: int = Field(5, description="Rotated log files kept")
    log_max_records: int = Field(1000, description="Lines kept in the in-memory log buffer")

    # Scheduler
    scheduler_tick_seconds: float = Field(60.0, description="Seconds between scheduler ticks")

    @property
    def symbols(self) -> list[str]:
        return _split_csv(self.binance_symbols)

    @property
    def intervals(self) -> list[str]:
        return _split_csv(self.binance_intervals)

    @property
    def allowed_origins(self) -> list[str]:
        return _split_csv(self.api_allowed_origins)

    @property
    def db_path(self) -> Path:
        return self.db_dir / f"{self.db_name}.db"

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.db_path}"

    def validate_runtime(self) -> None:
        """Raise ConfigError if the service cannot start with these settings."""
        if not self.db_name.strip():
            raise ConfigError("DB_NAME must not be empty")
        if not self.symbols:
            raise ConfigError("BINANCE_SYMBOLS must list at least one symbol")
        if not self.intervals:
            raise ConfigError("BINANCE_INTERVALS must list at least one interval")
        unsupported = [i for i in self.intervals if i not in SUPPORTED_INTERVALS]
        if unsupported:
            raise ConfigError(
                f"Unsupported intervals {unsupported}; expected a subset of {list(SUPPORTED_INTERVALS)}"
            )
        if self.scheduler_tick_seconds <= 0:
            raise ConfigError("SCHEDULER_TICK_SECONDS must be positive")


settings = Settings()
