from pydantic_settings import BaseSettings, SettingsConfigDict


class WidgetClientSettings(BaseSettings):
    base_url: str = "http://127.0.0.1:8000"
    api_key: str = "local-dev-widget-key"
    referrer: str | None = "http://localhost"
    request_timeout_seconds: float = 10.0

    message_poll_interval_seconds: float = 1.0
    status_poll_interval_seconds: float = 2.0
    context_window: int = 10
    failure_notice_threshold: int = 3
    session_file: str = ".support-handoff-session.json"

    model_config = SettingsConfigDict(
        env_prefix="WIDGET_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )
