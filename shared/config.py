"""
Shared configuration management for the RBAC service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Tuple store
    rbac_database_url: Optional[str] = Field(default=None)
    rbac_policy_path: Optional[str] = Field(default=None)
    rbac_table_name: str = Field(default="rbac_rule")
    rbac_development_policy_path: str = Field(default="./policy.csv")

    # Store connection retry (fixed attempts, fixed delay)
    rbac_connect_attempts: int = Field(default=5, ge=1)
    rbac_connect_delay_seconds: float = Field(default=2.0, ge=0.0)

    # Reload
    rbac_reload_interval_seconds: float = Field(default=0.0, ge=0.0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)

    @property
    def store_backend(self) -> str:
        """Name of the tuple store backend selected by this configuration."""
        if self.env == "development":
            return "file"
        if self.rbac_database_url:
            return "postgres"
        if self.rbac_policy_path:
            return "file"
        return "memory"

    @property
    def policy_path(self) -> Optional[str]:
        """Policy file path in effect for the file backend."""
        if self.env == "development":
            return self.rbac_development_policy_path
        return self.rbac_policy_path


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
