"""
Application entry point — one-shot certificate deployment.

Composition root: loads settings, reads the PEM pair, asks the provider
registry for the platform's executor and runs one deploy call.

This is the ONLY place where settings are read and handed to concrete classes.
Everything else depends on Protocol interfaces and domain values.

Responsibilities:
  1. Load and validate configuration from environment (FATAL + exit 1 on error)
  2. Configure structlog
  3. Build the deploy context (overall deadline, SIGINT/SIGTERM cancellation)
  4. Run the deployment inside a LoggingExecutionContext
  5. Log the outcome and exit 0 on success, 1 on failure

When to deploy is decided by whoever invokes this command (cron, CI, ...).
"""

from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path

import structlog
from railway import ErrorCode, LoggingExecutionContext
from railway.result import Result

from cert_deployer import __version__
from cert_deployer.config import AppSettings
from cert_deployer.domain.context import DeployContext
from cert_deployer.domain.models import DeployResult
from cert_deployer.registry import ProviderRegistry, default_registry


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Colored, human-readable console output with ISO timestamps; events below
    `log_level` are filtered before rendering.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def read_pem(path: Path) -> Result[str]:
    """Read a PEM file; an unreadable or empty file is a configuration error."""
    return Result.from_computation(
        lambda: path.read_text(encoding="utf-8"),
        ErrorCode.CONFIGURATION_ERROR,
        f"Cannot read PEM file {path}",
    ).ensure(
        lambda text: bool(text.strip()),
        ErrorCode.CONFIGURATION_ERROR,
        f"PEM file {path} is empty",
    )


def create_context(settings: AppSettings) -> DeployContext:
    if settings.deploy_timeout_seconds is None:
        return DeployContext.background()
    return DeployContext.with_timeout(settings.deploy_timeout_seconds)


def register_cancel_signals(ctx: DeployContext) -> None:
    """Cancel the deployment on SIGINT and SIGTERM; applied binds stay applied."""
    log = structlog.get_logger()

    def _cancel(signum: int, frame: object) -> None:
        log.warning("app.cancel_requested", signal=signal.Signals(signum).name)
        ctx.cancel()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)


def run_deployment(
    settings: AppSettings,
    ctx: DeployContext,
    registry: ProviderRegistry | None = None,
) -> Result[DeployResult]:
    """
    Execute one deployment for the configured platform.

    Flow:
      1. Read certificate and private key files
      2. Build the provider's executor from the registry
      3. executor.deploy(ctx, cert, key, config)
    """
    providers = registry or default_registry()
    config = settings.to_deploy_config()
    return LoggingExecutionContext(operation="deploy").execute(
        lambda: read_pem(settings.certificate_path).flat_map(
            lambda cert_pem: read_pem(settings.private_key_path).flat_map(
                lambda key_pem: providers.create(settings).flat_map(
                    lambda executor: executor.deploy(ctx, cert_pem, key_pem, config)
                )
            )
        )
    )


def _log_outcome(result: Result[DeployResult]) -> None:
    log = structlog.get_logger()
    result.either(
        lambda deployed: log.info(
            "app.deployed",
            cert_id=deployed.upload.cert_id if deployed.upload else None,
            reused=deployed.upload.reused if deployed.upload else None,
            targets=deployed.target_count,
            job_id=deployed.job.job_id if deployed.job else None,
        ),
        lambda error: log.error(
            "app.deploy_failed",
            code=error.code.value,
            error=error.message,
            **dict(error.details),
        ),
    )


def main() -> None:
    """Load settings, deploy once, exit with the outcome."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        provider=settings.platform.provider,
        execution_shape=settings.platform.execution_shape,
        match_pattern=settings.target.domain_match_pattern or "exact",
        deploy_timeout_seconds=settings.deploy_timeout_seconds,
    )

    ctx = create_context(settings)
    register_cancel_signals(ctx)

    result = run_deployment(settings, ctx)
    _log_outcome(result)
    sys.exit(0 if result.is_success() else 1)


if __name__ == "__main__":
    main()
