import os
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings

from covidservice.app.errors import ConfigurationError

ECDC_DEFAULT_URL = "https://opendata.ecdc.europa.eu/covid19/casedistribution/json/"


def default_db_path() -> str:
    """Locate covid.db under the user's XDG data directory."""
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        return str(Path(xdg_data_home) / "covid.db")
    home = os.environ.get("HOME")
    if home:
        return str(Path(home) / ".local" / "share" / "covid.db")
    raise ConfigurationError("Unable to detect user home directory: empty $HOME")


class Settings(BaseSettings):
    covid_db_path: str | None = None
    database_url: str | None = None
    covid_ecdc_url: str = ECDC_DEFAULT_URL
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "info"
    log_json: bool = False
    scrape_enabled: bool = True
    scrape_interval_hours: int = 24
    import_backfill: bool = False
    query_buffer_size: int = 1
    db_startup_max_attempts: int = 8
    db_startup_initial_backoff_seconds: int = 2
    db_startup_max_backoff_seconds: int = 30

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _normalize_db_url(self):
        """Derive an async SQLAlchemy URL from whatever the environment gave us.

        DATABASE_URL wins when set. Plain 'postgresql://' and 'sqlite://'
        URLs are rewritten to their async drivers. Otherwise the SQLite file
        at COVID_DB_PATH (or the XDG default) is used.
        """
        url = self.database_url
        if url:
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            elif url.startswith("sqlite://"):
                url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
            self.database_url = url
            return self
        if not self.covid_db_path:
            self.covid_db_path = default_db_path()
        self.database_url = f"sqlite+aiosqlite:///{self.covid_db_path}"
        return self

    @property
    def storage_location(self) -> str:
        """Human-readable location of the store, without credentials."""
        if self.covid_db_path and self.database_url.endswith(self.covid_db_path):
            return self.covid_db_path
        return self.database_url.split("@")[-1]


@lru_cache
def get_settings() -> Settings:
    return Settings()
