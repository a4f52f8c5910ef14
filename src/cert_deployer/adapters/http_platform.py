"""
HTTP adapter — a generic REST certificate platform via httpx.

Adapter layer — implements the CertificateStore, DomainInventory,
TargetBinder and DeploymentJobClient ports against one REST API:

  GET    /certificates?page=&size=              certificate inventory
  GET    /certificates/{id}                     certificate content
  POST   /certificates                          create (name, certificate, chain, privateKey)
  PUT    /certificates/{id}                     replace content in place
  GET    /domains?page=&size=                   domain inventory (domain, status)
  GET    /{domains|resources}/{target}/certificates            current bindings
  PUT    /{domains|resources}/{target}/certificates/{certId}   bind
  DELETE /{domains|resources}/{target}/certificates/{certId}   unbind
  POST   /deployments                           submit rebind job
  GET    /deployments/{jobId}                   rebind job sub-records
  POST   /deployments/replace                   submit replace job
  GET    /deployments/replace/{jobId}           replace job sub-records

Wire payloads are validated with pydantic models (camelCase on the wire).
Retry/backoff via tenacity on transient errors (network, timeout). Every
call's timeout is clamped to the deploy context's remaining deadline.
All HTTP errors are captured into Result failures annotated with the
failing operation — no exceptions leak to the engine.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from railway import ErrorCode, FailureDescription, FailureError, ResultFailures
from railway.result import Result
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from cert_deployer.adapters.pem_parser import parse_certificate, split_certificate_chain
from cert_deployer.domain.context import DeployContext
from cert_deployer.domain.models import (
    Certificate,
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
from cert_deployer.logs import or_discard

log = structlog.get_logger()

T = TypeVar("T")


# ─────────────────────── Wire models ───────────────────────


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CertificateSummary(_Wire):
    id: str
    name: str | None = None
    common_name: str | None = None
    dns_names: list[str] | None = None
    not_before: datetime | None = None
    not_after: datetime | None = None
    fingerprint_sha1: str | None = None
    fingerprint_sha256: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    def to_domain(self) -> StoredCertificate:
        return StoredCertificate(
            cert_id=self.id,
            name=self.name,
            common_name=self.common_name,
            dns_names=tuple(self.dns_names) if self.dns_names is not None else None,
            not_before=self.not_before,
            not_after=self.not_after,
            fingerprint_sha1=_hex(self.fingerprint_sha1),
            fingerprint_sha256=_hex(self.fingerprint_sha256),
        )


class CertificateDetail(_Wire):
    id: str
    certificate: str

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class CreatedCertificate(_Wire):
    """Create response; any field beyond id/name is kept as extended data."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    name: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class DomainSummary(_Wire):
    domain: str
    status: str | None = None


class Binding(_Wire):
    certificate_id: str

    @field_validator("certificate_id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class JobAccepted(_Wire):
    job_id: str | None = None

    @field_validator("job_id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class JobRecord(_Wire):
    pending: int = Field(default=0, ge=0)
    running: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)

    def to_domain(self) -> JobProgress:
        return JobProgress(
            pending=self.pending,
            running=self.running,
            succeeded=self.succeeded,
            failed=self.failed,
            total=self.total,
        )


def _hex(value: str | None) -> bytes | None:
    if not value:
        return None
    try:
        return bytes.fromhex(value.replace(":", "").strip())
    except ValueError:
        # not hex; leave the comparison to the certificate content
        return None


def _items(response: httpx.Response, model: type[_Wire]) -> list[Any]:
    payload = response.json()
    raw = payload.get("items", []) if isinstance(payload, dict) else payload
    return [model.model_validate(item) for item in raw or []]


def _error_text(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip()[:200]
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.text.strip()[:200]


# ─────────────────────── Client ───────────────────────


class HttpPlatformClient:
    """
    REST platform client.

    Implements the CertificateStore, DomainInventory, TargetBinder and
    DeploymentJobClient ports. Uses tenacity retry on transient network
    errors only.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        timeout: float = 60,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        logger: Any = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json"}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"
        self._timeout = timeout
        self._clock = clock
        self._log = log if logger is None else logger

    def set_logger(self, logger: Any) -> None:
        """Swap the diagnostic logger; None silences this client."""
        self._log = or_discard(logger)

    # ─────────────────────── Transport ───────────────────────

    def _send(
        self,
        ctx: DeployContext,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        HTTP call with retry — exceptions are mapped by _exchange.

        The retry policy is bound to the deploy context: no attempt starts once
        it is done, and the backoff sleep wakes on cancellation.
        """
        retrying = Retrying(
            stop=stop_any(stop_after_attempt(3), lambda _: ctx.done),
            wait=wait_exponential(multiplier=1, min=0.1, max=30),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            sleep=ctx.wait,
            reraise=True,
        )
        return retrying(self._request, ctx, method, path, params, json)

    def _request(
        self,
        ctx: DeployContext,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
    ) -> httpx.Response:
        ctx.raise_if_done()
        timeout = ctx.clamp_timeout(self._timeout)
        with httpx.Client(base_url=self._base_url, headers=self._headers, timeout=timeout) as client:
            return client.request(method, path, params=params, json=json)

    def _call(
        self,
        ctx: DeployContext,
        operation: str,
        method: str,
        path: str,
        parse: Callable[[httpx.Response], T],
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Result[T]:
        """One platform request: context check, HTTP exchange, response parsing."""
        return ctx.guard(operation).flat_map(
            lambda _: Result.from_computation(
                lambda: self._exchange(ctx, operation, method, path, parse, params, json),
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                f"failed to execute request '{operation}'",
            )
        )

    def _exchange(
        self,
        ctx: DeployContext,
        operation: str,
        method: str,
        path: str,
        parse: Callable[[httpx.Response], T],
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
    ) -> T:
        try:
            response = self._send(ctx, method, path, params, json)
        except httpx.HTTPError as e:
            done = ctx.err()
            if done is not None:
                raise FailureError(done) from e
            raise _upstream(operation, str(e) or type(e).__name__, e) from e

        if response.status_code == httpx.codes.NOT_FOUND:
            raise FailureError(
                FailureDescription.create(
                    ErrorCode.NOT_FOUND,
                    f"failed to execute request '{operation}': HTTP 404: {_error_text(response)}",
                    operation=operation,
                )
            )
        if response.is_error:
            raise _upstream(operation, f"HTTP {response.status_code}: {_error_text(response)}")

        try:
            return parse(response)
        except (ValueError, ValidationError, KeyError, TypeError) as e:
            raise _upstream(operation, f"invalid response: {e}", e) from e

    # ─────────────────────── CertificateStore ───────────────────────

    def list_certificates(
        self, ctx: DeployContext, page: PageRequest
    ) -> Result[list[StoredCertificate]]:
        return self._call(
            ctx,
            "list_certificates",
            "GET",
            "/certificates",
            lambda r: [s.to_domain() for s in _items(r, CertificateSummary)],
            params={"page": page.number, "size": page.size},
        )

    def fetch_certificate_pem(self, ctx: DeployContext, cert_id: str) -> Result[str]:
        return self._call(
            ctx,
            "get_certificate",
            "GET",
            f"/certificates/{cert_id}",
            lambda r: CertificateDetail.model_validate(r.json()).certificate,
        )

    def create_certificate(
        self, ctx: DeployContext, name: str, cert_pem: str, key_pem: str
    ) -> Result[UploadResult]:
        def created(response: httpx.Response) -> UploadResult:
            body = CreatedCertificate.model_validate(response.json())
            return UploadResult(
                cert_id=body.id,
                cert_name=body.name or name,
                extended_data=body.model_extra or {},
            )

        return split_certificate_chain(cert_pem).flat_map(
            lambda chain: self._call(
                ctx,
                "create_certificate",
                "POST",
                "/certificates",
                created,
                json={
                    "name": name,
                    "certificate": chain[0],
                    "chain": chain[1],
                    "privateKey": key_pem,
                },
            )
        )

    def replace_certificate(
        self, ctx: DeployContext, cert_id: str, cert_pem: str, key_pem: str
    ) -> Result[OperateResult]:
        return split_certificate_chain(cert_pem).flat_map(
            lambda chain: self._call(
                ctx,
                "replace_certificate",
                "PUT",
                f"/certificates/{cert_id}",
                lambda r: OperateResult(cert_id=str(r.json().get("id", cert_id))),
                json={"certificate": chain[0], "chain": chain[1], "privateKey": key_pem},
            )
        )

    # ─────────────────────── DomainInventory ───────────────────────

    def list_domains(self, ctx: DeployContext, page: PageRequest) -> Result[list[InventoryEntry]]:
        return self._call(
            ctx,
            "list_domains",
            "GET",
            "/domains",
            lambda r: [
                InventoryEntry(domain=d.domain, status=d.status) for d in _items(r, DomainSummary)
            ],
            params={"page": page.number, "size": page.size},
        )

    # ─────────────────────── TargetBinder ───────────────────────

    def bind(
        self,
        ctx: DeployContext,
        target: DeployTarget,
        upload: UploadResult,
        cache: Any,
    ) -> Result[DeployTarget]:
        """
        Bind `upload` on one target, then unbind stale certificates there.

        A target already bound to the certificate is left untouched. After a
        bind, other bindings whose certificate is expired or covers exactly
        the same DNS names as the new one are removed.
        """
        def bind_and_prune(bound: list[str]) -> Result[DeployTarget]:
            if upload.cert_id in bound:
                self._log.info("platform.already_bound", target=target.label, cert_id=upload.cert_id)
                return Result.success(target)
            others = [cert_id for cert_id in bound if cert_id != upload.cert_id]
            return self._call(
                ctx,
                "bind_certificate",
                "PUT",
                f"{_target_path(target)}/certificates/{upload.cert_id}",
                lambda _: target,
            ).flat_map(lambda _: self._prune(ctx, target, upload, others, cache))

        return self.list_bindings(ctx, target).flat_map(bind_and_prune)

    def list_bindings(self, ctx: DeployContext, target: DeployTarget) -> Result[list[str]]:
        return self._call(
            ctx,
            "list_bindings",
            "GET",
            f"{_target_path(target)}/certificates",
            lambda r: [b.certificate_id for b in _items(r, Binding)],
        )

    def _prune(
        self,
        ctx: DeployContext,
        target: DeployTarget,
        upload: UploadResult,
        others: list[str],
        cache: Any,
    ) -> Result[DeployTarget]:
        if not others:
            return Result.success(target)

        def prune_all(new_cert: Certificate) -> DeployTarget:
            for cert_id in others:
                ctx.raise_if_done()
                if self._is_stale(ctx, cert_id, new_cert, cache):
                    self._call(
                        ctx,
                        "unbind_certificate",
                        "DELETE",
                        f"{_target_path(target)}/certificates/{cert_id}",
                        lambda _: cert_id,
                    ).unwrap()
                    self._log.info("platform.stale_unbound", target=target.label, cert_id=cert_id)
            return target

        return (
            Result.from_optional(
                cache.get(upload.cert_id),
                f"certificate '{upload.cert_id}' is missing from the upload cache",
                ErrorCode.TECHNICAL_ERROR,
            )
            .flat_map(parse_certificate)
            .flat_map(
                lambda new_cert: Result.from_computation(
                    lambda: prune_all(new_cert),
                    ErrorCode.TECHNICAL_ERROR,
                    f"Pruning stale bindings on {target.label} failed",
                )
            )
        )

    def _is_stale(self, ctx: DeployContext, cert_id: str, new_cert: Certificate, cache: Any) -> bool:
        pem = cache.get_or_load(cert_id, lambda: self.fetch_certificate_pem(ctx, cert_id))
        if pem.is_failure() and pem.error().code == ErrorCode.NOT_FOUND:
            return False
        old = parse_certificate(pem.unwrap())
        if old.is_failure():
            self._log.warning("platform.unparsable_binding", cert_id=cert_id, error=old.error().message)
            return False
        old_cert = old.value()
        return old_cert.is_expired(self._clock()) or old_cert.covers_same_names(new_cert)

    # ─────────────────────── DeploymentJobClient ───────────────────────

    def submit_rebind(
        self, ctx: DeployContext, request: JobRequest, new_cert_id: str
    ) -> Result[JobTicket]:
        return self._call(
            ctx,
            "submit_deployment",
            "POST",
            "/deployments",
            _ticket,
            json={
                "oldCertificateId": request.old_cert_id,
                "newCertificateId": new_cert_id,
                "resources": _resources(request),
            },
        )

    def rebind_status(self, ctx: DeployContext, job_id: str) -> Result[list[JobProgress]]:
        return self._call(ctx, "get_deployment", "GET", f"/deployments/{job_id}", _records)

    def submit_replace(
        self, ctx: DeployContext, request: JobRequest, cert_pem: str, key_pem: str
    ) -> Result[JobTicket]:
        return split_certificate_chain(cert_pem).flat_map(
            lambda chain: self._call(
                ctx,
                "submit_replace_deployment",
                "POST",
                "/deployments/replace",
                _ticket,
                json={
                    "oldCertificateId": request.old_cert_id,
                    "certificate": chain[0],
                    "chain": chain[1],
                    "privateKey": key_pem,
                    "resources": _resources(request),
                },
            )
        )

    def replace_status(self, ctx: DeployContext, job_id: str) -> Result[list[JobProgress]]:
        return self._call(
            ctx, "get_replace_deployment", "GET", f"/deployments/replace/{job_id}", _records
        )


def _target_path(target: DeployTarget) -> str:
    if target.domain is not None:
        return f"/domains/{target.domain}"
    return f"/resources/{target.resource_id}"


def _resources(request: JobRequest) -> list[dict[str, Any]]:
    resources: list[dict[str, Any]] = []
    for selector in request.selectors():
        entry: dict[str, Any] = {"product": selector.product}
        if selector.regions:
            entry["regions"] = list(selector.regions)
        resources.append(entry)
    return resources


def _ticket(response: httpx.Response) -> JobTicket:
    return JobTicket(job_id=JobAccepted.model_validate(response.json()).job_id)


def _records(response: httpx.Response) -> list[JobProgress]:
    payload = response.json()
    raw = payload.get("records") if isinstance(payload, dict) else payload
    if not isinstance(raw, list):
        raise ValueError("unexpected deployment job status: no records")
    return [JobRecord.model_validate(item).to_domain() for item in raw]


def _upstream(operation: str, message: str, exception: BaseException | None = None) -> FailureError:
    return FailureError(ResultFailures.upstream_error(operation, message, exception).error())
