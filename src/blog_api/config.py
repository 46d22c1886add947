"""Application configuration via environment variables."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service configuration loaded from environment variables."""

    model_config = {"env_prefix": ""}

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8080, description="Server bind port")
    log_level: str = Field(default="info", description="Log level")

    # Store backend
    store_backend: Literal["memory", "redis"] = Field(
        default="memory", description="Post store backend: 'memory' or 'redis'"
    )
    database_url: str | None = Field(
        default=None, description="Redis URL (required when STORE_BACKEND=redis)"
    )
    test_database_url: str | None = Field(
        default=None, description="Redis URL used by integration tests against a live server"
    )

    @model_validator(mode="after")
    def _check_store(self) -> "Settings":
        if self.store_backend == "redis" and not self.database_url:
            raise ValueError("DATABASE_URL is required when STORE_BACKEND=redis")
        return self
