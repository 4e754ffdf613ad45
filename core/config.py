"""
Pipeline configuration using Pydantic Settings
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

from core.exceptions import ConfigurationError

# Used when DB_PORT is unset, keyed by SQLAlchemy backend name
DEFAULT_PORTS = {
    "postgresql": 5432,
    "mysql": 3306,
}


class Settings(BaseSettings):
    """Run settings with environment variable support.

    Loaded once at startup and frozen; the pipeline receives the instance
    explicitly instead of reading a module-level global.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    # Database
    DATABASE_URL: Optional[str] = None
    DB_DRIVER: str = "postgresql+asyncpg"
    DB_HOST: str = "localhost"
    DB_PORT: Optional[int] = None
    DB_USERNAME: Optional[str] = None
    DB_PASSWORD: Optional[str] = None
    DB_DATABASE: str = "github_covid_modelling_dev"
    DB_REQUIRE_TLS: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    # Fetching
    FETCH_TIMEOUT_SECONDS: float = 60.0
    FETCH_MAX_REDIRECTS: int = 20
    FETCH_CONCURRENCY: int = 5

    # Publishing
    INSERT_BATCH_SIZE: int = 1000

    def database_url(self) -> URL:
        """Connection URL, preferring DATABASE_URL over the DB_* parts."""
        if self.DATABASE_URL:
            try:
                return make_url(self.DATABASE_URL)
            except Exception as e:
                raise ConfigurationError(
                    "DATABASE_URL is not a valid database URL",
                    original_exception=e
                )

        return URL.create(
            drivername=self.DB_DRIVER,
            username=self.DB_USERNAME,
            password=self.DB_PASSWORD,
            host=self.DB_HOST,
            port=self.DB_PORT or DEFAULT_PORTS.get(self.DB_DRIVER.split("+", 1)[0]),
            database=self.DB_DATABASE,
        )


def load_settings(**overrides) -> Settings:
    """Read settings from the environment, failing with ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValueError as e:
        raise ConfigurationError(
            "Invalid pipeline configuration",
            original_exception=e
        )
