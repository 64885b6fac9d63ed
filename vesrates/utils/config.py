"""Configuration management for the rates service."""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _parse_hours(raw: str) -> list[int]:
    """Parse a comma separated list of hours ("9,13,17")."""
    hours = []
    for part in raw.split(","):
        part = part.strip()
        if part:
            hours.append(int(part))
    return hours


@dataclass
class SourcesConfig:
    """Upstream rate sources."""

    official_rate_url: str = "https://www.bcv.org.ve/"
    official_fallback_url: str = "https://ve.dolarapi.com/v1/dolares/oficial"
    marketplace_url: str = "https://p2p.binance.com/bapi/c2c/v2/friendly/c2c/adv/search"
    rates_api_url: str = "https://ve.dolarapi.com/v1/dolares"
    request_timeout: float = 10.0  # Seconds, per upstream request
    verify_ssl: bool = True


@dataclass
class CacheConfig:
    """Cache tier configuration."""

    cache_ttl: int = 300  # Rates list TTL in seconds
    official_cache_ttl: int = 300  # Official pair TTL in seconds


@dataclass
class SchedulerConfig:
    """Scheduler configuration."""

    utc_offset_hours: int = -4  # Venezuela (VET)
    official_refresh_hours: list[int] = field(default_factory=lambda: [9, 13, 17])
    tick_minutes: int = 15
    enabled: bool = True


@dataclass
class DatabaseConfig:
    """Database configuration."""

    database_url: str
    echo: bool = False


class Config:
    """Main application configuration."""

    def __init__(self):
        self.sources = SourcesConfig(
            official_rate_url=os.getenv("OFFICIAL_RATE_URL", SourcesConfig.official_rate_url),
            official_fallback_url=os.getenv(
                "OFFICIAL_FALLBACK_URL", SourcesConfig.official_fallback_url
            ),
            marketplace_url=os.getenv("MARKETPLACE_URL", SourcesConfig.marketplace_url),
            rates_api_url=os.getenv("RATES_API_URL", SourcesConfig.rates_api_url),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10")),
            verify_ssl=os.getenv("VERIFY_SSL", "true").lower() == "true",
        )

        self.cache = CacheConfig(
            cache_ttl=int(os.getenv("CACHE_TTL_SECONDS", "300")),
            official_cache_ttl=int(os.getenv("OFFICIAL_CACHE_TTL_SECONDS", "300")),
        )

        self.scheduler = SchedulerConfig(
            utc_offset_hours=int(os.getenv("UTC_OFFSET_HOURS", "-4")),
            official_refresh_hours=_parse_hours(os.getenv("OFFICIAL_REFRESH_HOURS", "9,13,17")),
            tick_minutes=int(os.getenv("SCHEDULER_TICK_MINUTES", "15")),
            enabled=os.getenv("SCHEDULER_ENABLED", "true").lower() == "true",
        )

        self.database = DatabaseConfig(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./rates.db"),
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
        )

    def validate(self) -> bool:
        """
        Validate configuration.

        Returns:
            True if configuration is valid

        Raises:
            ValueError if configuration is invalid
        """
        if self.cache.cache_ttl <= 0:
            raise ValueError("CACHE_TTL_SECONDS must be positive")
        if self.cache.official_cache_ttl <= 0:
            raise ValueError("OFFICIAL_CACHE_TTL_SECONDS must be positive")
        if self.sources.request_timeout <= 0:
            raise ValueError("REQUEST_TIMEOUT_SECONDS must be positive")

        if not -12 <= self.scheduler.utc_offset_hours <= 14:
            raise ValueError(f"Invalid UTC_OFFSET_HOURS: {self.scheduler.utc_offset_hours}")

        for hour in self.scheduler.official_refresh_hours:
            if not 0 <= hour < 24:
                raise ValueError(f"Invalid hour in OFFICIAL_REFRESH_HOURS: {hour}")

        tick = self.scheduler.tick_minutes
        if tick <= 0 or 60 % tick != 0:
            raise ValueError(f"SCHEDULER_TICK_MINUTES must divide 60, got {tick}")

        return True


# Global config instance
config = Config()
