"""
Shared configuration management for the membership POS backend.
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="POS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Hosted datasheet service
    datasheet_api_url: str = Field(default="https://api.vika.cn/fusion/v1")
    datasheet_token: str = Field(default="")
    inventory_datasheet_token: Optional[str] = Field(default=None)
    datasheet_timeout_seconds: float = Field(default=10.0)

    # Datasheets
    members_datasheet_id: str = Field(default="")
    ledger_datasheet_id: str = Field(default="")
    products_datasheet_id: str = Field(default="")
    inventory_datasheet_id: str = Field(default="")
    profile_datasheet_id: str = Field(default="")

    # Views
    ledger_view_id: Optional[str] = Field(default=None)
    products_view_id: Optional[str] = Field(default=None)
    inventory_view_id: Optional[str] = Field(default=None)
    profile_view_id: Optional[str] = Field(default=None)

    # Call governor and read cache
    max_calls_per_second: float = Field(default=1.5)
    cache_ttl_seconds: float = Field(default=30.0)

    # Business rules
    low_stock_threshold: int = Field(default=10)

    @field_validator("max_calls_per_second", "cache_ttl_seconds", "datasheet_timeout_seconds")
    @classmethod
    def _must_be_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @property
    def inventory_token(self) -> str:
        """Token for the inventory sheet, which may live in another space."""
        return self.inventory_datasheet_token or self.datasheet_token


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
