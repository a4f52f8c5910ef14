"""
Ports — Protocol-based interfaces for platform adapters.

These define WHAT the engine needs from a platform (contracts) without
specifying HOW it's done (implementation). Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy the contract
simply by implementing the methods — no inheritance. Every method that talks
to the platform receives the DeployContext and must honor its cancellation.

Platform capabilities:
  CertificateStore     → paginated certificate inventory, fetch, create, replace
  DomainInventory      → paginated list of domains the platform hosts
  TargetBinder         → bind one target to an uploaded certificate (fan-out shape)
  DeploymentJobClient  → submit/poll platform-side jobs (async-job shape)
  LoggerAware          → optional: adapters whose diagnostic logger can be swapped

And the engine's own public contract:
  CertificateManager   → idempotent upload + in-place replace
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from railway.result import Result

from cert_deployer.domain.context import DeployContext
from cert_deployer.domain.models import (
    DeployTarget,
    InventoryEntry,
    JobProgress,
    JobRequest,
    JobTicket,
    OperateResult,
    StoredCertificate,
    UploadResult,
)
from cert_deployer.domain.pagination import PageRequest


@runtime_checkable
class CertificateStore(Protocol):
    """
    Port: a platform's certificate store.

    `create_certificate` failures for a duplicate upload are reported as
    failures too; the manager decides whether the message carries an
    existing identity.
    """

    def list_certificates(
        self, ctx: DeployContext, page: PageRequest
    ) -> Result[list[StoredCertificate]]: ...

    def fetch_certificate_pem(self, ctx: DeployContext, cert_id: str) -> Result[str]: ...

    def create_certificate(
        self, ctx: DeployContext, name: str, cert_pem: str, key_pem: str
    ) -> Result[UploadResult]: ...

    def replace_certificate(
        self, ctx: DeployContext, cert_id: str, cert_pem: str, key_pem: str
    ) -> Result[OperateResult]: ...


@runtime_checkable
class DomainInventory(Protocol):
    """Port: the domains hosted on the platform, page by page."""

    def list_domains(
        self, ctx: DeployContext, page: PageRequest
    ) -> Result[list[InventoryEntry]]: ...


@runtime_checkable
class TargetBinder(Protocol):
    """
    Port: point one target at an uploaded certificate.

    `cache` is the per-deploy-call UploadedCertificateCache; binders that
    prune stale bindings read and write it concurrently.
    """

    def bind(
        self,
        ctx: DeployContext,
        target: DeployTarget,
        upload: UploadResult,
        cache: Any,
    ) -> Result[DeployTarget]: ...


@runtime_checkable
class DeploymentJobClient(Protocol):
    """
    Port: platform-side deployment jobs.

    Two variants, never mixed within one deploy call:
      - rebind: point resources at a newly uploaded certificate id
      - replace: swap the content behind the old identity in place
    Status calls return the job's sub-records (one per resource type);
    the engine sums them.
    """

    def submit_rebind(
        self, ctx: DeployContext, request: JobRequest, new_cert_id: str
    ) -> Result[JobTicket]: ...

    def rebind_status(self, ctx: DeployContext, job_id: str) -> Result[list[JobProgress]]: ...

    def submit_replace(
        self, ctx: DeployContext, request: JobRequest, cert_pem: str, key_pem: str
    ) -> Result[JobTicket]: ...

    def replace_status(self, ctx: DeployContext, job_id: str) -> Result[list[JobProgress]]: ...


@runtime_checkable
class LoggerAware(Protocol):
    """Collaborator whose diagnostic logger can be swapped (None silences it)."""

    def set_logger(self, logger: Any) -> None: ...


@runtime_checkable
class CertificateManager(Protocol):
    """
    Port: the engine's certificate-store contract, reusable without the executor.

    upload  → idempotent: equal content yields the same cert id, no duplicate create
    replace → mutates content behind an existing identity; UNSUPPORTED_OPERATION
              where the platform has no such primitive
    """

    def upload(self, ctx: DeployContext, cert_pem: str, key_pem: str) -> Result[UploadResult]: ...

    def replace(
        self, ctx: DeployContext, cert_id: str, cert_pem: str, key_pem: str
    ) -> Result[OperateResult]: ...

    def set_logger(self, logger: Any) -> None: ...
