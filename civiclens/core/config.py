"""
Application configuration with environment-specific secrets management.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
2. .env (fallback)

Required settings for production:
- DATABASE_URL
- INEC_CANDIDATE_URLS (the authoritative candidate feed)
"""
import os
import logging
from pathlib import Path
from typing import Optional, Literal, List
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# Get the project root directory (2 levels up from this file's package)
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings with environment-specific configuration."""

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Allow extra fields from .env
    )

    # Application
    APP_NAME: str = "CivicLens Election Data Sync"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8001

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./civiclens.db")

    # Upstream sources - comma-separated URL lists for env var parsing
    INEC_CANDIDATE_URLS_STR: str = ""
    INEC_TIMETABLE_URLS_STR: str = ""
    INEC_RESULTS_URLS_STR: str = "https://inecelectionresults.ng,https://irev.inec.gov.ng"
    MANIFESTO_NG_URLS_STR: str = ""
    PARTY_WEBSITE_URLS_STR: str = ""
    PARTY_WEBSITE_ALLOWLIST_STR: str = "apc.ng,pdp.ng,labourparty.ng,nnpp.ng,apgaonline.com"
    DUBAWA_FEED_URLS_STR: str = ""

    # Fetching
    SOURCE_REQUEST_TIMEOUT: float = 30.0  # seconds, applied to every request
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_MS: int = 1000

    # Fact checks
    FACT_CHECK_TRUST_SCORE: float = 0.8  # Trust assigned to Dubawa verdicts
    FACT_CHECK_TRUST_THRESHOLD: float = 0.5  # Minimum trust score to store

    # Embedding index refresh (post-pass of a full sync)
    EMBEDDINGS_REFRESH_URL: Optional[str] = None

    # Scheduler
    SYNC_ENABLED: bool = True
    SYNC_INTERVAL_MINUTES: int = 60
    SYNC_PARALLEL_PROVIDERS: bool = True
    SYNC_TIMEZONE: str = "Africa/Lagos"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @property
    def INEC_CANDIDATE_URLS(self) -> List[str]:
        return _split_csv(self.INEC_CANDIDATE_URLS_STR)

    @property
    def INEC_TIMETABLE_URLS(self) -> List[str]:
        return _split_csv(self.INEC_TIMETABLE_URLS_STR)

    @property
    def INEC_RESULTS_URLS(self) -> List[str]:
        return _split_csv(self.INEC_RESULTS_URLS_STR)

    @property
    def MANIFESTO_NG_URLS(self) -> List[str]:
        return _split_csv(self.MANIFESTO_NG_URLS_STR)

    @property
    def PARTY_WEBSITE_URLS(self) -> List[str]:
        return _split_csv(self.PARTY_WEBSITE_URLS_STR)

    @property
    def PARTY_WEBSITE_ALLOWLIST(self) -> List[str]:
        return [d.lower() for d in _split_csv(self.PARTY_WEBSITE_ALLOWLIST_STR)]

    @property
    def DUBAWA_FEED_URLS(self) -> List[str]:
        return _split_csv(self.DUBAWA_FEED_URLS_STR)

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    def validate_required_secrets(self) -> list[str]:
        """
        Validate that required settings are present for the current environment.

        Returns:
            List of missing setting names (empty if all present)
        """
        missing = []

        if self.is_production():
            if not self.DATABASE_URL or self.DATABASE_URL.startswith("sqlite"):
                missing.append("DATABASE_URL")
            # Without the official feed no candidate can ever be verified
            if not self.INEC_CANDIDATE_URLS:
                missing.append("INEC_CANDIDATE_URLS_STR")

        return missing


def _load_env_file() -> Path:
    """
    Load the appropriate environment file based on ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        return env_file

    default_env = PROJECT_ROOT / ".env"
    if default_env.exists():
        logger.info(f"Loading environment from .env (environment: {environment})")
        return default_env

    logger.debug(f"No environment file found for '{environment}' (checked .env.{environment}, .env)")
    return default_env


# Auto-detect and load environment file
_env_file = _load_env_file()


class _SettingsWithEnvFile(Settings):
    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


settings = _SettingsWithEnvFile()


# Validate settings on startup
missing_secrets = settings.validate_required_secrets()
if missing_secrets:
    logger.warning(f"Missing required settings for {settings.ENVIRONMENT}: {', '.join(missing_secrets)}")
    if settings.is_production():
        raise ValueError(
            f"Cannot start in production with missing settings: {', '.join(missing_secrets)}. "
            f"Please set these environment variables in .env.production"
        )
