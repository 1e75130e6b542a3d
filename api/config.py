"""
Application settings (Pydantic Settings) and logging setup.
"""
import logging
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env at the project root (parent of api/)
_env_path = Path(__file__).resolve().parent.parent / ".env"

REQUIRED_ENV_VARS = (
    "TICKETMASTER_API_KEY",
    "EVENTBRITE_API_KEY",
    "TICKETMASTER_WEBHOOK_SECRET",
    "EVENTBRITE_WEBHOOK_SECRET",
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=_env_path, extra="ignore")

    environment: str = "development"
    database_path: Path = Path(__file__).resolve().parent.parent / "concerts.db"
    log_level: str = "INFO"
    cors_origins: str = "*"

    ticketmaster_api_key: str = ""
    eventbrite_api_key: str = ""
    ticketmaster_webhook_secret: str = ""
    eventbrite_webhook_secret: str = ""

    # Scheduled sync: always on in production, opt-in elsewhere
    enable_scheduled_jobs: bool = False
    sync_interval_minutes: int = 60

    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_cleanup_minutes: int = 30

    @field_validator(
        "ticketmaster_api_key",
        "eventbrite_api_key",
        "ticketmaster_webhook_secret",
        "eventbrite_webhook_secret",
        mode="after",
    )
    @classmethod
    def strip_secret(cls, v: str) -> str:
        return (v or "").strip()

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def scheduled_jobs_enabled(self) -> bool:
        return self.is_production or self.enable_scheduled_jobs

    def secrets(self) -> dict[str, str]:
        """Secret values keyed by their environment variable name."""
        return {
            "TICKETMASTER_API_KEY": self.ticketmaster_api_key,
            "EVENTBRITE_API_KEY": self.eventbrite_api_key,
            "TICKETMASTER_WEBHOOK_SECRET": self.ticketmaster_webhook_secret,
            "EVENTBRITE_WEBHOOK_SECRET": self.eventbrite_webhook_secret,
        }

    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs full request URLs at INFO, which include the Ticketmaster apikey
    logging.getLogger("httpx").setLevel(logging.WARNING)
