"""
ContextGrade - Configuration
Settings loaded from environment variables (or a .env file).
"""
from functools import lru_cache
from typing import Optional
import os

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.

    One instance is built per process and handed explicitly to the
    context gatherer, the recommender and the decision service, so tests
    can inject their own.
    """

    # Environment: development | production | test
    environment: str = "development"
    log_level: str = "INFO"

    # Database - local PostgreSQL with current user by default
    database_url: str = f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/contextgrade"

    # Administrative override credential (client id must be supplied explicitly)
    master_api_key: Optional[str] = None

    # Session tokens
    jwt_secret_key: str = "contextgrade-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_hours: int = 24

    # Recommender
    openai_api_key: Optional[str] = None
    recommender_model: str = "gpt-4o-mini"
    recommender_timeout_seconds: float = 10.0

    # Signal gathering
    context_timeout_seconds: float = 5.0

    # Review guard - when False, only PROPOSED decisions can be reviewed
    allow_rereview: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v):
        valid = ("development", "production", "test")
        v = (v or "development").lower()
        if v not in valid:
            raise ValueError(f"environment must be one of: {', '.join(valid)}")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return (v or "INFO").upper()

    @field_validator("openai_api_key", "master_api_key", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings - also used as a FastAPI dependency."""
    return Settings()
