"""Configuration management for the payroll lifecycle service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    host: str
    port: int
    debug: bool
    log_level: str
    calculation_service_url: str
    distribution_service_url: str
    collaborator_timeout_seconds: float

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        return cls(
            database_url=os.getenv(
                "DATABASE_URL",
                "sqlite+aiosqlite:///./payroll_lifecycle.db",
            ),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            calculation_service_url=os.getenv(
                "CALCULATION_SERVICE_URL", "http://localhost:8100"
            ),
            distribution_service_url=os.getenv(
                "DISTRIBUTION_SERVICE_URL", "http://localhost:8200"
            ),
            collaborator_timeout_seconds=float(
                os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "30")
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
