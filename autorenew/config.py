from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    environment: str = "development"  # "development" or "production"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/autorenew.db"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: str = ""

    # Notifications
    discord_webhook_url: str = ""
    discord_alert_webhook_url: str = ""  # optional channel for automation alerts
    notification_timeout_seconds: float = 10.0
    notification_enabled: bool = True

    # Portal / browser automation
    automation_enabled: bool = True
    portal_base_url: str = "https://onlineoffice.zip"
    portal_users_path: str = "/#/users-iptv"
    portal_username: str = ""
    portal_password: str = ""
    browser_user_data_dir: str = "./data/browser-profile"
    screenshot_dir: str = "./data/screenshots"
    browser_headless: bool = True
    browser_timeout_ms: int = 30000

    # Loop intervals (seconds)
    scan_interval_seconds: int = 60
    heartbeat_interval_seconds: int = 30
    watchdog_interval_seconds: int = 60
    worker_interval_seconds: int = 10

    # Renewal rules
    renewal_advance_minutes: int = 60
    dispatch_delay_seconds: float = 5.0
    lock_release_minutes: int = 5
    error_grace_minutes: int = 5
    heartbeat_stale_minutes: int = 5
    expiring_soon_minutes: int = 5
    client_overdue_days: int = 2
    renewal_cooldown_hours: int = 4
    renewal_max_attempts: int = 3
    task_claim_timeout_minutes: int = 15
    renewal_extension_hours: int = 720
    restart_delay_seconds: float = 5.0

    # CORS (comma-separated origins, empty means localhost only)
    cors_origins: str = ""

    # Admin
    admin_api_key: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def sync_database_url(self) -> str:
        return self.database_url.replace("+aiosqlite", "")

    @property
    def portal_users_url(self) -> str:
        return self.portal_base_url.rstrip("/") + self.portal_users_path


@lru_cache
def get_settings() -> Settings:
    return Settings()
