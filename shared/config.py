"""
Shared configuration management for the Federated Login service.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Accepted only when env is "local"
DEFAULT_MASTER_KEY = "change-me"


class ProviderCredentials(BaseModel):
    """Credentials and options for one identity provider.

    Not every provider uses every field: Twitter treats ``client_id`` and
    ``client_secret`` as its consumer key/secret, Microsoft Account owns the
    ``package_sid`` used by single sign-on, and AAD reads ``tenants``.
    """

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    enabled: bool = False
    scope: Optional[str] = None
    display: Optional[str] = None
    access_type: Optional[str] = None
    package_sid: Optional[str] = None
    tenants: List[str] = Field(default_factory=list)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOGIN_",
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Outbound provider calls
    http_timeout: float = 10.0

    # Security
    master_key: str = DEFAULT_MASTER_KEY
    domain_suffix: Optional[str] = None
    min_refresh_interval_minutes: int = 5
    cors_whitelist: List[str] = Field(default_factory=lambda: ["localhost"])

    # Identity store
    users_enabled: bool = False

    # Providers
    google: ProviderCredentials = Field(default_factory=ProviderCredentials)
    facebook: ProviderCredentials = Field(default_factory=ProviderCredentials)
    twitter: ProviderCredentials = Field(default_factory=ProviderCredentials)
    microsoftaccount: ProviderCredentials = Field(default_factory=ProviderCredentials)
    aad: ProviderCredentials = Field(default_factory=ProviderCredentials)

    def provider_credentials(self) -> Dict[str, ProviderCredentials]:
        """Credentials keyed by lower-case provider name."""
        return {
            "google": self.google,
            "facebook": self.facebook,
            "twitter": self.twitter,
            "microsoftaccount": self.microsoftaccount,
            "aad": self.aad,
        }

    @model_validator(mode="after")
    def _require_master_key(self):
        if self.env != "local" and self.master_key == DEFAULT_MASTER_KEY:
            raise ValueError(f"master_key must be configured when env is {self.env!r}")
        return self


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
