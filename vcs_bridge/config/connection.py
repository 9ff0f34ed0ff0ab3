# vcs_bridge/config/connection.py

"""
Connection configuration for a single VCS provider client.
"""

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from ..error_handling.core import RetryConfig
from ..models import ConnectionInfo, VcsProvider
from .base import BaseConfig


class RetryPolicyConfig(BaseModel):
    """Retry executor policy: a bounded attempt count and a fixed wait."""

    max_retries: int = Field(default=5, ge=0, description="Retries after the first attempt")
    retry_interval_seconds: float = Field(
        default=60.0, ge=0, description="Wait between attempts in seconds"
    )

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries, retry_interval=self.retry_interval_seconds
        )


class VcsConnectionConfig(BaseConfig):
    """Validated settings for building one provider client."""

    provider: VcsProvider
    api_endpoint: str | None = Field(default=None, description="Provider API base URL")
    username: str | None = Field(
        default=None, description="Account name, required for Bitbucket Cloud basic auth"
    )
    token: SecretStr | None = Field(default=None, description="Access token or app password")
    project: str | None = Field(
        default=None, description="Optional project or organization scope for the connection"
    )
    retry: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("api_endpoint")
    @classmethod
    def validate_api_endpoint(cls, v: str | None) -> str | None:
        """API endpoints must be absolute http(s) URLs."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("API endpoint must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_provider_requirements(self) -> "VcsConnectionConfig":
        if self.provider == VcsProvider.BITBUCKET_SERVER and not self.api_endpoint:
            raise ValueError("Bitbucket Server requires an API endpoint")
        return self

    def to_connection_info(self) -> ConnectionInfo:
        return ConnectionInfo(
            api_endpoint=self.api_endpoint or "",
            username=self.username or "",
            token=self.token.get_secret_value() if self.token else "",
            project=self.project or "",
        )
