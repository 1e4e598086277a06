"""
Configuration management for the Review Harvester.
Handles environment variables and harvesting defaults.
"""
import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")  # json or console

    # Request settings
    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "30"))
    USER_AGENT: str = os.getenv(
        "USER_AGENT",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    )
    # Opaque to the pipeline, handed straight to the HTTP client
    PROXY_URL: Optional[str] = os.getenv("PROXY_URL")

    # Target site
    HOME_URL: str = os.getenv("HOME_URL", "https://www.trendyol.com/en")
    SITE_ORIGIN: str = os.getenv("SITE_ORIGIN", "https://www.trendyol.com")
    REVIEWS_API_URL: str = os.getenv(
        "REVIEWS_API_URL",
        "https://apigw.trendyol.com/discovery-web-productgw-service/api/review/comments",
    )

    # Harvest defaults (0 means unbounded for results and pages)
    DEFAULT_RESULTS_WANTED: int = int(os.getenv("DEFAULT_RESULTS_WANTED", "20"))
    DEFAULT_MAX_PAGES: int = int(os.getenv("DEFAULT_MAX_PAGES", "5"))
    DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "50"))

    # Retry and pacing (seconds)
    RETRY_ATTEMPTS: int = int(os.getenv("RETRY_ATTEMPTS", "3"))
    RETRY_BASE_DELAY: float = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    RETRY_JITTER: float = float(os.getenv("RETRY_JITTER", "1.0"))
    PAGE_DELAY_MIN: float = float(os.getenv("PAGE_DELAY_MIN", "0.7"))
    PAGE_DELAY_JITTER: float = float(os.getenv("PAGE_DELAY_JITTER", "0.9"))

    # Network observation
    OBSERVE_TIMEOUT: float = float(os.getenv("OBSERVE_TIMEOUT", "5.0"))
    OBSERVATION_QUEUE_SIZE: int = int(os.getenv("OBSERVATION_QUEUE_SIZE", "32"))

    # Diagnostics: snapshots are mirrored here when set
    DEBUG_DIR: Optional[str] = os.getenv("DEBUG_DIR")

    @classmethod
    def is_proxy_configured(cls) -> bool:
        """Check if an outbound proxy is configured."""
        return bool(cls.PROXY_URL)

    @classmethod
    def is_debug_dir_configured(cls) -> bool:
        """Check if diagnostic snapshots should be written to disk."""
        return bool(cls.DEBUG_DIR)


config = Config()
