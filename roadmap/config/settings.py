"""Application settings and configuration"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Project Roadmap"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    REFRESH_KEY: Optional[str] = None

    # Database (key-value blob store)
    DATABASE_URL: str = "sqlite:///./roadmap.db"

    # External services
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_API_BASE_URL: str = "https://api.github.com"
    ACTIVITY_FEED_URL: str = "https://aibtc.com/api/activity"
    IDENTITY_API_URL: str = "https://aibtc.com/api/agents"
    USER_AGENT: str = "project-roadmap/1.0"
    HTTP_TIMEOUT_SECONDS: float = 15.0
    HTTP_MAX_RETRIES: int = 3
    HTTP_BACKOFF_BASE_SECONDS: float = 1.0
    HTTP_BACKOFF_MAX_SECONDS: float = 10.0

    # Identity cache
    IDENTITY_CACHE_TTL_SECONDS: int = 3600

    # Scan budget and cooldowns
    SCAN_TIME_BUDGET_SECONDS: float = 50.0
    SNAPSHOT_STALE_AFTER_MINUTES: int = 15
    NOT_FOUND_ARCHIVE_THRESHOLD: int = 3
    MENTION_SCAN_COOLDOWN_MINUTES: int = 10
    REPO_SCAN_COOLDOWN_MINUTES: int = 15
    REPO_SCAN_BACKOFF_MINUTES: int = 60
    WEBSITE_SCAN_COOLDOWN_MINUTES: int = 60
    WEBSITE_SCAN_BACKOFF_MINUTES: int = 360
    SCAN_FAILURE_BACKOFF_THRESHOLD: int = 3
    CONTRIBUTORS_PER_PAGE: int = 30
    CLOSED_PULLS_PER_PAGE: int = 10

    # Registry writes
    SAVE_MAX_RETRIES: int = 3
    SAVE_BACKOFF_BASE_SECONDS: float = 0.1
    SAVE_BACKOFF_MAX_SECONDS: float = 5.0

    # Retention caps
    MESSAGE_ARCHIVE_LIMIT: int = 2000
    PROCESSED_ENTRY_LIMIT: int = 500
    AUDIT_LOG_LIMIT: int = 1000

    # Records
    LEADER_INACTIVITY_DAYS: int = 30
    SELF_HOSTS: tuple[str, ...] = ("aibtc-projects.pages.dev",)
    GENERIC_HOMEPAGE_HOSTS: tuple[str, ...] = ("aibtc.com", "github.com", "stacks.co", "bitcoin.org")

    # GitHub login -> account id, e.g. '{"octocat": "bc1q..."}'
    GITHUB_ACCOUNT_SEED: dict[str, str] = {}

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env


settings = Settings()
