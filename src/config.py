"""Application settings loaded from the environment.

Uses pydantic-settings for validation; values may also come from a .env file
in the working directory.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for the reply bus (transport, queue names, timeouts)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    queue_provider: str = Field(default="sqs", description="Transport provider name, e.g. sqs or memory")
    application_name: str | None = Field(default=None, description="Prefix for the response queue name")
    twoways_queue_url: str | None = Field(default=None, description="Queue for request/response traffic")
    oneway_queue_url: str | None = Field(default=None, description="Queue for fire-and-forget traffic")
    aws_region: str | None = Field(default=None, description="AWS region of the SQS client")
    sqs_endpoint_url: str | None = Field(default=None, description="SQS endpoint override")
    response_timeout_seconds: float = Field(default=30.0, gt=0)
    orphan_ttl_seconds: float = Field(default=60.0, ge=0)
    failure_suspension_seconds: float = Field(default=300.0, ge=0)
    log_level: str = Field(default="INFO")


def get_settings() -> Settings:
    """Return the loaded settings instance."""
    return Settings()
