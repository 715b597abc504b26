from functools import lru_cache
from uuid import UUID

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_OPERATOR_AUTH_SECRET = "local-dev-operator-auth-secret-change-me"


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 8000

    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "support_handoff"
    postgres_user: str = "handoff_user"
    postgres_password: str = "handoff_password"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_auto_create: bool = False

    operator_auth_secret: str = DEFAULT_OPERATOR_AUTH_SECRET
    operator_auth_token_ttl_minutes: int = 480
    cors_allowed_origins_raw: str = "http://127.0.0.1:5173,http://localhost:5173"
    trusted_hosts_raw: str = "127.0.0.1,localhost"
    force_https: bool = False

    handoff_context_window: int = 10
    operator_offline_after_seconds: int = 120
    presence_sweep_interval_seconds: int = 60

    automated_agent_url: str | None = None
    automated_agent_api_key: str | None = None
    automated_agent_timeout_seconds: float = 15.0
    automated_agent_retry_attempts: int = 3
    automated_agent_retry_delay_seconds: float = 0.3
    automated_agent_fallback_reply: str = (
        "I'm processing your request. Please try again in a moment."
    )

    seed_tenant_id: UUID = UUID("00000000-0000-0000-0000-000000000001")
    seed_widget_api_key: str = "local-dev-widget-key"
    seed_widget_allowed_domains_raw: str = "localhost,127.0.0.1"
    seed_operator_password: str = "operator-password"

    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cors_allowed_origins(self) -> list[str]:
        return _split_csv(self.cors_allowed_origins_raw)

    @property
    def trusted_hosts(self) -> list[str]:
        return _split_csv(self.trusted_hosts_raw)

    @property
    def seed_widget_allowed_domains(self) -> list[str]:
        return _split_csv(self.seed_widget_allowed_domains_raw)

    def validate_security_settings(self) -> None:
        """Refuse to boot a production deployment with development defaults."""
        if self.app_env.lower() != "production":
            return

        problems: list[str] = []
        if self.operator_auth_secret == DEFAULT_OPERATOR_AUTH_SECRET:
            problems.append("OPERATOR_AUTH_SECRET must be overridden in production.")
        elif len(self.operator_auth_secret) < 32:
            problems.append("OPERATOR_AUTH_SECRET must be at least 32 characters in production.")
        for label, values in (
            ("CORS_ALLOWED_ORIGINS_RAW", self.cors_allowed_origins),
            ("TRUSTED_HOSTS_RAW", self.trusted_hosts),
        ):
            if not values:
                problems.append(f"{label} must define explicit entries in production.")
            elif "*" in values:
                problems.append(f"{label} cannot contain a wildcard in production.")
        if problems:
            raise ValueError(" ".join(problems))


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
