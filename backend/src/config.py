"""
Configuration management for the LoL Stats Refresh Service.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Supabase Configuration (persistent state store)
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_service_key: Optional[str] = os.getenv("SUPABASE_SERVICE_KEY", None)
    kv_table: str = os.getenv("KV_TABLE", "kv_store")

    # Leaguepedia (Fandom) API Configuration
    leaguepedia_api_url: str = os.getenv("LEAGUEPEDIA_API_URL", "https://lol.fandom.com/api.php")
    fandom_user: str = os.getenv("FANDOM_USER", "")
    fandom_pass: str = os.getenv("FANDOM_PASS", "")

    # Remote configuration (tournaments.json / teams.json in a GitHub repo)
    github_user: str = os.getenv("GITHUB_USER", "")
    github_repo: str = os.getenv("GITHUB_REPO", "")
    github_token: str = os.getenv("GITHUB_TOKEN", "")
    # Local directory holding the same two files; takes precedence when set
    config_dir: str = os.getenv("CONFIG_DIR", "")

    # Rate Limiting (shared across every tournament query)
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "30"))
    min_request_interval: float = float(os.getenv("MIN_REQUEST_INTERVAL", "1.0"))

    # Retry Configuration (per page request)
    max_retries: int = int(os.getenv("MAX_RETRIES", "3"))
    retry_backoff_base: float = float(os.getenv("RETRY_BACKOFF_BASE", "30.0"))
    retry_jitter: float = float(os.getenv("RETRY_JITTER", "20.0"))
    max_retry_delay: float = float(os.getenv("MAX_RETRY_DELAY", "120.0"))

    # Pagination
    page_limit: int = int(os.getenv("PAGE_LIMIT", "50"))
    page_delay_seconds: float = float(os.getenv("PAGE_DELAY_SECONDS", "0.5"))
    # Pacing between two tournaments of the same batch
    tournament_delay_seconds: float = float(os.getenv("TOURNAMENT_DELAY_SECONDS", "2.0"))

    # Poll scheduling
    fast_threshold_minutes: int = int(os.getenv("FAST_THRESHOLD_MINUTES", "8"))
    slow_threshold_minutes: int = int(os.getenv("SLOW_THRESHOLD_MINUTES", "60"))
    # A run serves at most ceil(tournaments / update_rounds) tournaments
    update_rounds: int = int(os.getenv("UPDATE_ROUNDS", "2"))
    # Service tick (how often main.py asks the scheduler what is due)
    tick_interval_seconds: int = int(os.getenv("TICK_INTERVAL_SECONDS", "60"))

    # Aggregation
    schedule_days: int = int(os.getenv("SCHEDULE_DAYS", "4"))
    rollback_ratio: float = float(os.getenv("ROLLBACK_RATIO", "0.9"))

    # Run log kept in the state store
    max_log_entries: int = int(os.getenv("MAX_LOG_ENTRIES", "100"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if not self.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not self.supabase_key:
            errors.append("SUPABASE_KEY is required")
        if self.update_rounds < 1:
            errors.append("UPDATE_ROUNDS must be >= 1")
        if self.page_limit < 1:
            errors.append("PAGE_LIMIT must be >= 1")
        if self.max_retries < 1:
            errors.append("MAX_RETRIES must be >= 1")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Validate after initialization."""
        self.validate()

    @property
    def has_fandom_credentials(self) -> bool:
        return bool(self.fandom_user and self.fandom_pass)
