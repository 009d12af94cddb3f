"""Process-wide settings, read from ``SITEWALKER_*`` environment variables."""

import os

from pydantic import BaseModel, Field


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    headless: bool = Field(default_factory=lambda: _env_bool("SITEWALKER_HEADLESS", "true"))
    screenshots_dir: str = Field(
        default_factory=lambda: os.getenv("SITEWALKER_SCREENSHOTS_DIR", "screenshots")
    )
    recordings_dir: str = Field(
        default_factory=lambda: os.getenv("SITEWALKER_RECORDINGS_DIR", "recordings")
    )
    rules_dir: str = Field(
        default_factory=lambda: os.getenv("SITEWALKER_RULES_DIR", "site-rules")
    )
    robots_user_agent: str = Field(
        default_factory=lambda: os.getenv("SITEWALKER_ROBOTS_USER_AGENT", "Googlebot")
    )

    # Timings, all in milliseconds
    navigation_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("SITEWALKER_NAVIGATION_TIMEOUT_MS", "60000"))
    )
    network_idle_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("SITEWALKER_NETWORK_IDLE_TIMEOUT_MS", "10000"))
    )
    settle_delay_ms: int = Field(
        default_factory=lambda: int(os.getenv("SITEWALKER_SETTLE_DELAY_MS", "3000"))
    )
    login_settle_ms: int = Field(
        default_factory=lambda: int(os.getenv("SITEWALKER_LOGIN_SETTLE_MS", "5000"))
    )
    retry_backoff_ms: int = Field(
        default_factory=lambda: int(os.getenv("SITEWALKER_RETRY_BACKOFF_MS", "1000"))
    )
    # Randomised pauses that imitate a human operator
    human_delays: bool = Field(
        default_factory=lambda: _env_bool("SITEWALKER_HUMAN_DELAYS", "true")
    )


def get_settings() -> Settings:
    return Settings()
