from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from marketchat.domain.closure import ClosurePolicy

DEFAULT_AUTH_SECRET = "local-dev-auth-secret-change-me"


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 8000
    log_level: str = "INFO"

    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "marketchat"
    postgres_user: str = "chat_user"
    postgres_password: str = "chat_password"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_auto_create: bool = False

    auth_secret: str = DEFAULT_AUTH_SECRET
    auth_token_ttl_minutes: int = 480
    cors_allowed_origins_raw: str = "http://127.0.0.1:3000,http://localhost:3000"
    trusted_hosts_raw: str = "127.0.0.1,localhost"
    force_https: bool = False

    chat_participant_visibility_days: int = 7
    chat_admin_retention_days: int = 14
    chat_inactivity_close_days: int = 7
    chat_storefront_default_limit: int = 50
    chat_storefront_max_limit: int = 200
    chat_dashboard_default_limit: int = 200
    chat_dashboard_max_limit: int = 300
    chat_support_user_id: str = "platform-support"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
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
        return [
            origin.strip()
            for origin in self.cors_allowed_origins_raw.split(",")
            if origin.strip()
        ]

    @property
    def trusted_hosts(self) -> list[str]:
        return [
            host.strip() for host in self.trusted_hosts_raw.split(",") if host.strip()
        ]

    def closure_policy(self) -> ClosurePolicy:
        return ClosurePolicy(
            participant_visibility_days=self.chat_participant_visibility_days,
            admin_retention_days=self.chat_admin_retention_days,
            inactivity_close_days=self.chat_inactivity_close_days,
        )

    def validate_security_settings(self) -> None:
        if self.app_env.lower() != "production":
            return

        if self.auth_secret == DEFAULT_AUTH_SECRET:
            raise ValueError("AUTH_SECRET must be overridden in production.")
        if len(self.auth_secret) < 32:
            raise ValueError("AUTH_SECRET must be at least 32 characters in production.")
        if not self.cors_allowed_origins:
            raise ValueError(
                "CORS_ALLOWED_ORIGINS_RAW must define explicit origins in production."
            )
        if "*" in self.cors_allowed_origins:
            raise ValueError("Wildcard CORS origin is not allowed in production.")
        if not self.trusted_hosts:
            raise ValueError(
                "TRUSTED_HOSTS_RAW must define explicit hosts in production."
            )
        if "*" in self.trusted_hosts:
            raise ValueError("Wildcard trusted host is not allowed in production.")


@lru_cache
def get_settings() -> Settings:
    return Settings()
