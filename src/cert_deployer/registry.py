"""
Provider registry — maps a configured platform name to a wired executor.

Composition root for platforms: each provider is a factory that builds its
concrete adapters and composes them into a DeploymentExecutor. Providers
are plain functions registered by name; no inheritance is involved.

    registry = default_registry()
    registry.register("my-cdn", build_my_cdn_executor)
    executor = registry.create(settings).value()
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from railway import ErrorCode, ResultFailures
from railway.result import Result

from cert_deployer.adapters.http_platform import HttpPlatformClient
from cert_deployer.config import AppSettings
from cert_deployer.domain.polling import PollingPolicy
from cert_deployer.executor import DeploymentExecutor
from cert_deployer.manager import DedupCertificateManager
from cert_deployer.resolver import DomainResolver

log = structlog.get_logger()

ProviderFactory = Callable[[AppSettings], DeploymentExecutor]


class ProviderRegistry:
    """Name → executor factory."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        key = name.strip().lower()
        if not key:
            raise ValueError("provider name must not be empty")
        if key in self._factories:
            raise ValueError(f"provider '{key}' is already registered")
        self._factories[key] = factory

    def names(self) -> list[str]:
        return sorted(self._factories)

    def create(self, settings: AppSettings) -> Result[DeploymentExecutor]:
        """
        Build the executor for settings.platform.provider.

        Returns CONFIGURATION_ERROR for an unknown name or a factory that fails.
        """
        name = settings.platform.provider.strip().lower()
        factory = self._factories.get(name)
        if factory is None:
            return ResultFailures.configuration_error(
                f"unsupported provider: '{settings.platform.provider}' "
                f"(known: {', '.join(self.names()) or 'none'})"
            )
        return Result.from_computation(
            lambda: factory(settings),
            ErrorCode.CONFIGURATION_ERROR,
            f"Failed to initialize provider '{name}'",
        ).peek(lambda _: log.info("registry.provider_created", provider=name))


def build_http_executor(settings: AppSettings) -> DeploymentExecutor:
    """Generic REST platform: one HttpPlatformClient backs every port."""
    platform = settings.platform
    client = HttpPlatformClient(
        base_url=platform.base_url,
        api_token=platform.api_token.get_secret_value() if platform.api_token else None,
        timeout=settings.http_timeout_seconds,
    )
    manager = DedupCertificateManager(
        client,
        page_size=platform.page_size,
        name_prefix=platform.name_prefix,
        duplicate_id_pattern=platform.duplicate_id_pattern,
        supports_replace=platform.supports_replace,
    )
    polling = PollingPolicy(
        interval_seconds=settings.polling.interval_seconds,
        max_attempts=settings.polling.max_attempts,
    )
    if platform.execution_shape == "async-job":
        return DeploymentExecutor(manager, job_client=client, polling=polling)
    return DeploymentExecutor(
        manager,
        resolver=DomainResolver(page_size=platform.page_size),
        inventory=client,
        binder=client,
        polling=polling,
        max_workers=settings.fan_out.max_workers,
    )


def default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("http", build_http_executor)
    return registry
