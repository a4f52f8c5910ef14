"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (prefix CERT_DEPLOYER_)
  - Fall back to .env file
  - Validate types and constraints at startup
  - Keep secrets out of source control

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var CERT_DEPLOYER_PLATFORM__BASE_URL maps to platform.base_url,
CERT_DEPLOYER_TARGET__DOMAINS='["a.example.com"]' maps to target.domains, etc.

The engine never sees these classes: to_deploy_config() and the registry
translate them into domain values and constructor arguments.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cert_deployer.domain.models import DeployConfig, DomainMatchPattern

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class PlatformSettings(BaseModel):
    """
    Which platform to deploy to and how to reach it.

    `provider` names a registry entry; `execution_shape` selects direct
    fan-out binding or an asynchronous platform job.
    """

    provider: str = Field(default="http", description="Provider registry name")
    base_url: str = Field(description="Platform REST API base URL")
    api_token: SecretStr | None = Field(default=None, description="Bearer token for the platform API")
    page_size: int = Field(default=100, ge=1, le=1000, description="Page size for inventory listings")
    execution_shape: Literal["fan-out", "async-job"] = Field(
        default="fan-out",
        description="fan-out: bind each target; async-job: submit one platform job and poll it",
    )
    supports_replace: bool = Field(
        default=False, description="Whether the platform can replace certificate content in place"
    )
    name_prefix: str = Field(default="certdeploy", min_length=1, description="Prefix for created certificate names")
    duplicate_id_pattern: str | None = Field(
        default=r"exist\D*?(\d+)",
        description="Regex extracting an existing certificate id from a duplicate-create error",
    )

    @field_validator("duplicate_id_pattern")
    @classmethod
    def validate_pattern(cls, value: str | None) -> str | None:
        """Reject regular expressions that do not compile."""
        if value:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid duplicate_id_pattern {value!r}: {e}") from e
        return value or None


class TargetSettings(BaseModel):
    """
    What to bind the certificate to.

    domain_match_pattern:
      "" / "exact"  — domains and/or resource_ids are used verbatim
      "wildcard"    — "*.example.com" entries are expanded against the inventory
      "certsan"     — every inventory domain the certificate is valid for
    """

    domain_match_pattern: str = Field(default="", description="exact | wildcard | certsan")
    domains: list[str] = Field(default_factory=list)
    resource_ids: list[str] = Field(default_factory=list)
    certificate_id: str | None = Field(default=None, description="Old certificate identity (async-job shape)")
    is_replaced: bool = Field(default=False, description="Replace content in place instead of re-binding")
    resource_products: list[str] = Field(default_factory=list)
    resource_regions: list[str] = Field(default_factory=list)

    @field_validator("domain_match_pattern")
    @classmethod
    def validate_match_pattern(cls, value: str) -> str:
        """Fail at startup on an unknown pattern rather than mid-deployment."""
        parsed = DomainMatchPattern.parse(value)
        if parsed.is_failure():
            raise ValueError(parsed.error().message)
        return value.strip().lower()


class PollingSettings(BaseModel):
    """Fixed-interval polling of asynchronous deployment jobs."""

    interval_seconds: float = Field(default=5.0, ge=0)
    max_attempts: int | None = Field(default=None, ge=1)


class FanOutSettings(BaseModel):
    """Concurrency of the direct fan-out shape; 1 binds targets sequentially."""

    max_workers: int = Field(default=1, ge=1, le=64)


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="CERT_DEPLOYER_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    platform: PlatformSettings
    target: TargetSettings = Field(default_factory=lambda: TargetSettings())
    polling: PollingSettings = Field(default_factory=lambda: PollingSettings())
    fan_out: FanOutSettings = Field(default_factory=lambda: FanOutSettings())

    certificate_path: Path
    private_key_path: Path
    http_timeout_seconds: float = Field(default=60, gt=0)
    deploy_timeout_seconds: float | None = Field(default=None, gt=0)
    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def require_job_configuration(self) -> AppSettings:
        """
        The async-job shape needs the old identity and at least one product.

        Raises ValueError at startup so nothing is uploaded with a job that
        could never be submitted.
        """
        if self.platform.execution_shape != "async-job":
            return self
        missing = [
            name
            for name, present in [
                ("TARGET__CERTIFICATE_ID", bool(self.target.certificate_id)),
                ("TARGET__RESOURCE_PRODUCTS", bool(self.target.resource_products)),
            ]
            if not present
        ]
        if missing:
            raise ValueError("async-job execution requires: " + ", ".join(missing))
        return self

    def to_deploy_config(self) -> DeployConfig:
        """Translate target settings into the engine's per-call DeployConfig."""
        return DeployConfig(
            domain_match_pattern=self.target.domain_match_pattern,
            domains=tuple(self.target.domains),
            resource_ids=tuple(self.target.resource_ids),
            certificate_id=self.target.certificate_id,
            is_replaced=self.target.is_replaced,
            resource_products=tuple(self.target.resource_products),
            resource_regions=tuple(self.target.resource_regions),
        )
