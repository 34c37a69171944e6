from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Strongly-typed settings model loaded from env / .env.

    Notes:
        - The default DSN points at a local SQLite file so a dev checkout runs
          without a database server; deployments set a Postgres DSN.
        - JWT material has no default; without it every bearer token is rejected.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        protected_namespaces=()
    )

    ENV: str = Field(default="dev", description="Deployment environment, e.g. dev/staging/prod")
    SERVICE_NAME: str = Field(default="blog", description="Service name")
    LOG_LEVEL: str = Field(default="INFO", description="Root logging level")

    POSTGRES_DSN: str = Field(
        default="sqlite+aiosqlite:///./blog.db",
        description="SQLAlchemy async DSN, e.g. postgresql+asyncpg://user:pw@db/blog",
    )
    STORAGE_TIMEOUT_SEC: float = Field(default=5.0, gt=0, description="Default deadline for one storage transaction")

    COMMENTS_AUTO_APPROVE: bool = Field(default=False, description="New comments start Visible instead of PendingReview")
    COMMENTS_REQUIRE_PUBLISHED: bool = Field(default=False, description="Only Published posts accept comments")
    POST_DELETE_MODE: Literal["soft", "hard"] = Field(default="soft", description="How post deletion cascades to comments")
    MAX_PAGE_SIZE: int = Field(default=100, ge=1, le=100, description="Upper bound for list page size")

    JWT_PUBLIC_KEY: str | None = Field(default=None, description="JWT public key (RS256)")
    OIDC_AUDIENCE: str | None = Field(default=None, description="OIDC audience")


@lru_cache()
def get_settings() -> Settings:
    """Return a cached singleton `Settings` instance."""
    return Settings()
