"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # App Settings
    log_level: str = "INFO"
    log_dir: str = ""  # Empty = current working directory
    log_to_file: bool = True

    # ==========================================================================
    # Relay Race Settings
    # ==========================================================================
    relay_timeout_seconds: float = 60.0  # Per-attempt budget; slow relays with big catalogs need it
    connect_timeout_seconds: float = 15.0
    # Relay names to race (empty = every registered relay)
    enabled_relays: list[str] = []
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # ==========================================================================
    # Stream Reading Settings
    # ==========================================================================
    max_feed_bytes: int = 200 * 1024 * 1024  # Hard ceiling per attempt (200 MB)
    default_encoding: str = "utf-8"

    # ==========================================================================
    # Content Validation Settings
    # ==========================================================================
    validator_prefix_length: int = 300  # Characters inspected for error-page markers

    # ==========================================================================
    # Syndication Crawl Settings
    # ==========================================================================
    max_feed_pages: int = 1000  # Pagination ceiling, guarantees termination
    description_max_length: int = 300

    # Metrics
    metrics_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
