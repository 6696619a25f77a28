from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Application
    log_level: str = "INFO"
    dashboard_path: str = "/student/dashboard"
    events_path: str = "/events"

    # Quiz API
    api_url: str = "http://localhost:5000"
    http_timeout: float = 30.0
    max_retries: int = 3
    session_file: str = ".quiztaker/session.json"

    # Attempt
    tick_interval: float = 1.0
    status_poll_interval: float = 30.0
    default_time_remaining_ms: int = 3_600_000

    # Lockdown
    violation_threshold: int = 5
    personal_override_enabled: bool = True
    personal_override_minutes: int = 10
    fullscreen_retry_limit: int = 10
    fullscreen_retry_interval: float = 0.5

    # Browser
    playwright_timeout: int = 30000
    headless: bool = False

    # Bridge server
    host: str = "127.0.0.1"
    port: int = 8000


# Global settings instance
settings = Settings()
