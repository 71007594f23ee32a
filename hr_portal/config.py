"""
Configuration management using Pydantic Settings.
Reads from environment variables (and an optional .env file).
"""

from typing import Literal

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(env_file=".env", case_sensitive=False)

    # Snowflake Configuration (empty account -> in-memory store)
    snowflake_account: str = Field(default="", alias="SNOWFLAKE_ACCOUNT")
    snowflake_user: str = Field(default="", alias="SNOWFLAKE_USER")
    snowflake_password: str = Field(default="", alias="SNOWFLAKE_PASSWORD")
    snowflake_warehouse: str = Field(default="", alias="SNOWFLAKE_WAREHOUSE")
    snowflake_database: str = Field(default="", alias="SNOWFLAKE_DATABASE")
    snowflake_schema: str = Field(default="", alias="SNOWFLAKE_SCHEMA")

    # Application Configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")

    # Authentication
    jwt_secret_key: str = Field(default="change-me-in-production", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=480, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    password_bcrypt_rounds: int = Field(default=12, alias="PASSWORD_BCRYPT_ROUNDS")

    # Session registry controls
    max_sessions: int = Field(default=1000, alias="MAX_SESSIONS")
    session_ttl_seconds: int = Field(default=28800, alias="SESSION_TTL_SECONDS")

    # Leave workflow
    balance_year_policy: Literal["start_date", "approval"] = Field(
        default="start_date", alias="BALANCE_YEAR_POLICY"
    )
    reject_past_start_dates: bool = Field(default=False, alias="REJECT_PAST_START_DATES")

    # Circuit Breaker Configuration
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_timeout: int = Field(default=60, alias="CIRCUIT_BREAKER_TIMEOUT")


# Global settings instance
settings = Settings()
