"""
Deployment executor — drives one deploy call end to end.

Two execution shapes, chosen by the platform's capabilities:

  Direct fan-out (TargetBinder):
    parse → precheck config → upload → resolve targets → bind each target
    Every target is attempted; failures are collected and reported together
    as one PARTIAL_FAILURE. An empty target set is a logged no-op.

  Asynchronous job (DeploymentJobClient):
    parse → precheck config → [upload] → submit job → poll until terminal
    Variant "rebind" uploads a new identity and points resources at it;
    variant "replace" swaps the content behind the old identity. The variant
    is chosen once per call (config.is_replaced) and its submit/status pair
    is used consistently.

Ordering: the upload completes (or fails) before resolution or binding
starts. Each target's own calls stay ordered inside its bind(); targets may
run concurrently when max_workers > 1. The only state they share is the
per-call UploadedCertificateCache.

Cancellation is observed between every step, page, bind and poll. Nothing
is rolled back: already-applied binds stay applied.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from types import MappingProxyType
from typing import Any

import structlog
from railway import ErrorCode, FailureDescription, ResultFailures
from railway.result import Result

from cert_deployer.adapters.pem_parser import parse_certificate
from cert_deployer.domain.context import DeployContext
from cert_deployer.domain.models import (
    Certificate,
    DeployConfig,
    DeploymentJob,
    DeployResult,
    DeployTarget,
    JobProgress,
    JobRequest,
    JobTicket,
    UploadResult,
)
from cert_deployer.domain.polling import PollingPolicy
from cert_deployer.domain.ports import (
    CertificateManager,
    DeploymentJobClient,
    DomainInventory,
    LoggerAware,
    TargetBinder,
)
from cert_deployer.logs import or_discard
from cert_deployer.resolver import DomainResolver

log = structlog.get_logger()


# ─────────────────────── Per-call shared state ───────────────────────


class UploadedCertificateCache:
    """
    cert id → PEM content, shared by the concurrent binds of ONE deploy call.

    Binders use it to decide which other bindings on a target are stale.
    Created fresh by every deploy() and discarded afterwards.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, str] = {}

    def put(self, cert_id: str, pem: str) -> None:
        with self._lock:
            self._entries[cert_id] = pem

    def get(self, cert_id: str) -> str | None:
        with self._lock:
            return self._entries.get(cert_id)

    def get_or_load(self, cert_id: str, loader: Callable[[], Result[str]]) -> Result[str]:
        """Cached PEM, or load it once; concurrent loads of the same id keep the first."""
        cached = self.get(cert_id)
        if cached is not None:
            return Result.success(cached)
        loaded = loader()
        if loaded.is_success():
            with self._lock:
                return Result.success(self._entries.setdefault(cert_id, loaded.value()))
        return loaded

    def __contains__(self, cert_id: object) -> bool:
        with self._lock:
            return cert_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ─────────────────────── Executor ───────────────────────


class DeploymentExecutor:
    """Orchestrates upload, resolution and binding for one platform."""

    def __init__(
        self,
        manager: CertificateManager,
        resolver: DomainResolver | None = None,
        inventory: DomainInventory | None = None,
        binder: TargetBinder | None = None,
        job_client: DeploymentJobClient | None = None,
        polling: PollingPolicy | None = None,
        max_workers: int = 1,
        logger: Any = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._manager = manager
        self._resolver = resolver or DomainResolver()
        self._inventory = inventory
        self._binder = binder
        self._job_client = job_client
        self._polling = polling or PollingPolicy()
        self._max_workers = max_workers
        self._log = log if logger is None else logger

    @property
    def manager(self) -> CertificateManager:
        return self._manager

    def set_logger(self, logger: Any) -> None:
        """
        Swap the diagnostic logger of the executor and every collaborator that
        logs (manager, resolver, platform adapters); None silences them all.
        """
        self._log = or_discard(logger)
        self._manager.set_logger(logger)
        self._resolver.set_logger(logger)
        for adapter in (self._inventory, self._binder, self._job_client):
            if isinstance(adapter, LoggerAware):
                adapter.set_logger(logger)

    def deploy(
        self,
        ctx: DeployContext,
        cert_pem: str,
        key_pem: str,
        config: DeployConfig,
    ) -> Result[DeployResult]:
        """
        Deploy the certificate according to `config`.

        Returns Result[DeployResult] on full success. Otherwise one failure:
        PARSE_ERROR / CONFIGURATION_ERROR before any platform call,
        EXTERNAL_SERVICE_ERROR from the upload or resolution, PARTIAL_FAILURE
        enumerating every failed target, JOB_FAILED with the job's counters,
        CANCELLED when the context is cancelled or its deadline passes.
        """
        if self._job_client is not None:
            return self._deploy_job(ctx, self._job_client, cert_pem, key_pem, config)
        if self._binder is not None:
            return self._deploy_fan_out(ctx, self._binder, cert_pem, key_pem, config)
        return ResultFailures.not_implemented("deployment for this platform")

    # ─────────────────────── Direct fan-out ───────────────────────

    def _deploy_fan_out(
        self,
        ctx: DeployContext,
        binder: TargetBinder,
        cert_pem: str,
        key_pem: str,
        config: DeployConfig,
    ) -> Result[DeployResult]:
        def resolve_and_bind(cert: Certificate, upload: UploadResult) -> Result[DeployResult]:
            return (
                ctx.guard(upload)
                .flat_map(
                    lambda _: self._resolver.resolve(
                        ctx,
                        config.domain_match_pattern,
                        config.domains,
                        cert,
                        self._inventory,
                        config.resource_ids,
                    )
                )
                .flat_map(lambda targets: self.fan_out(ctx, binder, targets, upload, cert_pem))
                .map(lambda bound: DeployResult(upload=upload, targets=tuple(bound)))
            )

        return (
            parse_certificate(cert_pem)
            .flat_map(
                lambda cert: self._resolver.precheck(
                    config.domain_match_pattern, config.domains, config.resource_ids
                ).map(lambda _: cert)
            )
            .flat_map(
                lambda cert: self._manager.upload(ctx, cert_pem, key_pem).flat_map(
                    lambda upload: resolve_and_bind(cert, upload)
                )
            )
        )

    def fan_out(
        self,
        ctx: DeployContext,
        binder: TargetBinder,
        targets: Sequence[DeployTarget],
        upload: UploadResult,
        cert_pem: str,
    ) -> Result[list[DeployTarget]]:
        """
        Bind every target, never stopping at the first failure.

        Returns the bound targets, a PARTIAL_FAILURE joining every per-target
        failure, or CANCELLED when the context ended the sweep early.
        """
        if not targets:
            self._log.info("executor.fanout_noop", cert_id=upload.cert_id)
            return Result.success([])

        cache = UploadedCertificateCache()
        cache.put(upload.cert_id, cert_pem)

        def bind_one(target: DeployTarget) -> Result[DeployTarget] | None:
            if ctx.done:
                return None
            result = Result.from_computation(
                lambda: binder.bind(ctx, target, upload, cache).unwrap(),
                ErrorCode.TECHNICAL_ERROR,
                f"Binding {target.label} failed",
            ).map_failure(lambda err: err.with_prefix(f"[{target.label}]"))
            result.either(
                lambda _: self._log.info("executor.target_bound", target=target.label),
                lambda err: self._log.warning("executor.target_failed", target=target.label, error=err.message),
            )
            return result

        if self._max_workers == 1:
            outcomes = [bind_one(target) for target in targets]
        else:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(targets))) as pool:
                outcomes = list(pool.map(bind_one, targets))

        return self._aggregate(ctx, targets, outcomes)

    def _aggregate(
        self,
        ctx: DeployContext,
        targets: Sequence[DeployTarget],
        outcomes: Sequence[Result[DeployTarget] | None],
    ) -> Result[list[DeployTarget]]:
        bound = [r.value() for r in outcomes if r is not None and r.is_success()]
        failures: list[FailureDescription] = [
            r.error() for r in outcomes if r is not None and r.is_failure()
        ]
        cancelled = ctx.err()

        if cancelled is not None:
            # Targets aborted by the cancellation itself are not target failures.
            real = [f for f in failures if f.code != ErrorCode.CANCELLED]
            if len(bound) + len(real) < len(targets):
                self._log.warning(
                    "executor.fanout_cancelled",
                    bound=len(bound),
                    failed=len(real),
                    skipped=len(targets) - len(bound) - len(real),
                )
                return Result.failure_from(_cancelled_with(cancelled, real))
        if failures:
            return ResultFailures.partial_failure(failures, total=len(targets))
        return Result.success(bound)

    # ─────────────────────── Asynchronous job ───────────────────────

    def _deploy_job(
        self,
        ctx: DeployContext,
        client: DeploymentJobClient,
        cert_pem: str,
        key_pem: str,
        config: DeployConfig,
    ) -> Result[DeployResult]:
        def request_for(_: Certificate) -> Result[JobRequest]:
            return (
                Result.from_optional(config.certificate_id or None, "config `certificateId` is required")
                .ensure(
                    lambda _: any(p.strip() for p in config.resource_products),
                    ErrorCode.CONFIGURATION_ERROR,
                    "config `resourceProducts` is required",
                )
                .map(
                    lambda old_id: JobRequest(
                        old_cert_id=old_id,
                        resource_products=tuple(p.strip() for p in config.resource_products if p.strip()),
                        resource_regions=tuple(r.strip() for r in config.resource_regions if r.strip()),
                    )
                )
            )

        request = parse_certificate(cert_pem).flat_map(request_for)

        if config.is_replaced:
            return request.flat_map(
                lambda req: self.run_job(
                    ctx,
                    submit=lambda: client.submit_replace(ctx, req, cert_pem, key_pem),
                    status=lambda job_id: client.replace_status(ctx, job_id),
                )
            ).map(lambda job: DeployResult(job=job))

        return request.flat_map(
            lambda req: self._manager.upload(ctx, cert_pem, key_pem).flat_map(
                lambda upload: self.run_job(
                    ctx,
                    submit=lambda: client.submit_rebind(ctx, req, upload.cert_id),
                    status=lambda job_id: client.rebind_status(ctx, job_id),
                ).map(lambda job: DeployResult(upload=upload, job=job))
            )
        )

    def run_job(
        self,
        ctx: DeployContext,
        submit: Callable[[], Result[JobTicket]],
        status: Callable[[str], Result[list[JobProgress]]],
    ) -> Result[DeploymentJob]:
        """Submit until accepted, then poll until terminal."""
        return self._submit(ctx, submit).flat_map(lambda job: self._poll(ctx, job, status))

    def _submit(
        self, ctx: DeployContext, submit: Callable[[], Result[JobTicket]]
    ) -> Result[DeploymentJob]:
        for attempt in self._polling.attempts():
            done = ctx.err()
            if done is not None:
                return Result.failure_from(done)
            ticket = submit()
            if ticket.is_failure():
                return Result.failure_from(ticket.error())
            job_id = ticket.value().job_id
            if job_id:
                self._log.info("executor.job_submitted", job_id=job_id, attempts=attempt)
                return Result.success(DeploymentJob(job_id=job_id))
            self._log.info("executor.job_not_accepted", attempt=attempt)
            if self._polling.pause(ctx):
                return Result.failure_from(ctx.err() or _context_ended())
        return ResultFailures.timeout_error(
            f"deployment job was not accepted after {self._polling.max_attempts} attempts"
        )

    def _poll(
        self,
        ctx: DeployContext,
        job: DeploymentJob,
        status: Callable[[str], Result[list[JobProgress]]],
    ) -> Result[DeploymentJob]:
        for _ in self._polling.attempts():
            if self._polling.pause(ctx):
                return Result.failure_from(ctx.err() or _context_ended())
            observed = (
                status(job.job_id)
                .flat_map(
                    lambda shards: Result.from_computation(
                        lambda: JobProgress.combine(shards),
                        ErrorCode.EXTERNAL_SERVICE_ERROR,
                        f"job '{job.job_id}' reported inconsistent counters",
                    )
                )
                .flat_map(job.observe)
            )
            if observed.is_failure():
                return observed
            job = observed.value()
            progress = job.progress
            if job.state.is_terminal:
                if progress.failed:
                    return ResultFailures.job_failed(progress.succeeded, progress.failed, progress.total)
                self._log.info("executor.job_succeeded", job_id=job.job_id, total=progress.total)
                return Result.success(job)
            self._log.info(
                "executor.job_waiting",
                job_id=job.job_id,
                pending=progress.pending,
                running=progress.running,
                succeeded=progress.succeeded,
                failed=progress.failed,
                total=progress.total,
            )
        return ResultFailures.timeout_error(
            f"deployment job '{job.job_id}' did not finish within {self._polling.max_attempts} polls"
        )


def _context_ended() -> FailureDescription:
    return FailureDescription.create(ErrorCode.CANCELLED, "context canceled", reason="cancelled")


def _cancelled_with(
    cancelled: FailureDescription, failures: Sequence[FailureDescription]
) -> FailureDescription:
    """The cancellation failure, still enumerating targets that failed before it."""
    if not failures:
        return cancelled
    joined = FailureDescription.join(ErrorCode.CANCELLED, cancelled.message, failures)
    return replace(joined, details=MappingProxyType({**joined.details, **cancelled.details}))
