import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)

DEFAULT_SESSION_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "postgresql+asyncpg://localhost/trackprofit"

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Hosted Postgres gives postgresql://, asyncpg needs postgresql+asyncpg://."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values

    session_secret: str = DEFAULT_SESSION_SECRET
    session_cookie_name: str = "trackprofit_session"
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    app_url: str = "http://localhost:3000"
    encryption_key: str = ""

    # Social-ads platform (Graph API) OAuth app
    ads_app_id: str = ""
    ads_app_secret: str = ""
    ads_api_version: str = "v18.0"
    ads_graph_url: str = "https://graph.facebook.com"

    # Storefront Admin GraphQL
    shopify_api_version: str = "2024-01"

    # Courier REST
    courier_base_url: str = "https://procolis.com/api_v1"

    # Per-call deadline for every provider request
    provider_timeout_seconds: float = 30.0

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if self.session_secret == DEFAULT_SESSION_SECRET:
                raise ValueError(
                    "SESSION_SECRET must be set to a secure value in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.encryption_key:
                raise ValueError(
                    "ENCRYPTION_KEY must be set in production. "
                    "Generate one with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
                )
            if not self.ads_app_id or not self.ads_app_secret:
                logger.warning("ADS_APP_ID / ADS_APP_SECRET are not set; ads connect will fail.")
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        if self.app_url and self.app_url not in origins:
            origins.append(self.app_url)
        return origins


@lru_cache
def get_settings() -> Settings:
    return Settings()
