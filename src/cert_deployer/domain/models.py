"""
Domain models — immutable data structures for certificates, targets and jobs.

These are pure value objects with no behavior beyond self-validation and a
few derived properties. They flow through one deployment:

    PEM → Certificate → UploadResult → [DeployTarget] → DeployResult
                                     ↘ DeploymentJob (async shape only)

All models are frozen dataclasses (immutable) following functional principles.
DeploymentJob "updates" return a new instance; nothing is persisted.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, StrEnum
from typing import Any

from railway import ErrorCode
from railway.result import Result

# Products whose deployment is scoped to a region; only these carry region selectors.
REGION_SCOPED_PRODUCTS: frozenset[str] = frozenset(
    {"apigateway", "clb", "cos", "tcb", "tke", "tse", "waf"}
)


# ─────────────────────── Certificates ───────────────────────


@dataclass(frozen=True, slots=True)
class Certificate:
    """
    Parsed X.509 certificate (the leaf of the uploaded chain).

    `subject_alt_names` keeps every SAN in certificate order (DNS names,
    IP addresses, e-mails, URIs); `dns_names` and `ip_addresses` are the
    typed subsets used for hostname verification.
    """

    raw_der: bytes = field(repr=False)
    common_name: str | None
    subject_alt_names: tuple[str, ...]
    dns_names: tuple[str, ...]
    ip_addresses: tuple[str, ...]
    not_before: datetime
    not_after: datetime
    issuer_organization: str | None
    serial_number: str
    fingerprint_sha1: bytes = field(repr=False)
    fingerprint_sha256: bytes = field(repr=False)

    def is_expired(self, now: datetime) -> bool:
        return self.not_after <= now

    def covers_same_names(self, other: Certificate) -> bool:
        """True when both certificates list the same DNS names (order and case ignored)."""
        return _name_set(self.dns_names) == _name_set(other.dns_names)


@dataclass(frozen=True, slots=True)
class StoredCertificate:
    """
    One entry of a platform's certificate inventory.

    Platforms report different subsets of metadata; every signal is optional.
    Whatever is present is used as a cheap comparison before the full
    certificate content has to be fetched.
    """

    cert_id: str
    name: str | None = None
    common_name: str | None = None
    dns_names: tuple[str, ...] | None = None
    not_before: datetime | None = None
    not_after: datetime | None = None
    fingerprint_sha1: bytes | None = field(default=None, repr=False)
    fingerprint_sha256: bytes | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class UploadResult:
    """
    Platform identity of an uploaded (or re-used) certificate.

    `reused` is True when an equivalent certificate already existed and no
    create call was made.
    """

    cert_id: str
    cert_name: str | None = None
    extended_data: Mapping[str, Any] = field(default_factory=dict)
    reused: bool = False


@dataclass(frozen=True, slots=True)
class OperateResult:
    """Outcome of an in-place certificate replacement. The identity is preserved."""

    cert_id: str
    extended_data: Mapping[str, Any] = field(default_factory=dict)


# ─────────────────────── Targets ───────────────────────


class DomainMatchPattern(StrEnum):
    """How the set of deploy targets is derived."""

    EXACT = "exact"
    WILDCARD = "wildcard"
    CERTSAN = "certsan"

    @classmethod
    def parse(cls, value: str | None) -> Result[DomainMatchPattern]:
        """An empty value means EXACT; anything unknown is a configuration error."""
        normalized = (value or "").strip().lower()
        if not normalized:
            return Result.success(cls.EXACT)
        try:
            return Result.success(cls(normalized))
        except ValueError:
            return Result.failure(
                ErrorCode.CONFIGURATION_ERROR,
                f"unsupported domain match pattern: '{value}'",
            )


@dataclass(frozen=True, slots=True)
class InventoryEntry:
    """A domain listed by the platform, with its platform-reported status if any."""

    domain: str
    status: str | None = None


@dataclass(frozen=True, slots=True)
class DeployTarget:
    """A resolved binding target: a domain or a platform resource id, never both."""

    domain: str | None = None
    resource_id: str | None = None

    def __post_init__(self) -> None:
        if (self.domain is None) == (self.resource_id is None):
            raise ValueError("DeployTarget needs exactly one of domain or resource_id")

    @classmethod
    def for_domain(cls, domain: str) -> DeployTarget:
        return cls(domain=domain)

    @classmethod
    def for_resource(cls, resource_id: str) -> DeployTarget:
        return cls(resource_id=resource_id)

    @property
    def label(self) -> str:
        return self.domain if self.domain is not None else f"resource:{self.resource_id}"


# ─────────────────────── Asynchronous jobs ───────────────────────


@dataclass(frozen=True, slots=True)
class JobProgress:
    """
    One observation of a job's counters (or one shard of it).

    Invariant: all counters are non-negative and
    pending + running + succeeded + failed == total.
    An empty observation (total == 0) means the platform has not populated
    the job yet; it is never terminal.
    """

    pending: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    total: int = 0

    def __post_init__(self) -> None:
        counters = (self.pending, self.running, self.succeeded, self.failed, self.total)
        if any(c < 0 for c in counters):
            raise ValueError(f"job counters must be non-negative: {self}")
        if self.pending + self.running + self.succeeded + self.failed != self.total:
            raise ValueError(f"job counters do not add up to total: {self}")

    @property
    def is_terminal(self) -> bool:
        return self.total > 0 and self.succeeded + self.failed == self.total

    def __add__(self, other: JobProgress) -> JobProgress:
        return JobProgress(
            pending=self.pending + other.pending,
            running=self.running + other.running,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            total=self.total + other.total,
        )

    @staticmethod
    def combine(shards: Iterable[JobProgress]) -> JobProgress:
        """Sum per-resource-type sub-records into one logical observation."""
        combined = JobProgress()
        for shard in shards:
            combined = combined + shard
        return combined


class JobState(Enum):
    SUBMITTED = "submitted"
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


@dataclass(frozen=True, slots=True)
class JobTicket:
    """Answer to a job submission. No job id means the platform has not accepted it yet."""

    job_id: str | None = None

    @property
    def accepted(self) -> bool:
        return bool(self.job_id)


@dataclass(frozen=True, slots=True)
class DeploymentJob:
    """
    An asynchronous unit of work on the platform, alive for one deploy call.

    State machine: SUBMITTED → {PENDING, RUNNING} → {SUCCEEDED, FAILED}.
    Terminal states are never left and counters never decrease.
    """

    job_id: str
    state: JobState = JobState.SUBMITTED
    progress: JobProgress = field(default_factory=JobProgress)
    observations: int = 0

    def observe(self, progress: JobProgress) -> Result[DeploymentJob]:
        """Apply a new observation, rejecting regressions and post-terminal updates."""
        if self.state.is_terminal:
            return Result.failure(
                ErrorCode.TECHNICAL_ERROR,
                f"job '{self.job_id}' is already {self.state.value}",
            )
        previous = self.progress
        if self.observations and (
            progress.succeeded < previous.succeeded
            or progress.failed < previous.failed
            or progress.total < previous.total
        ):
            return Result.failure(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                f"job '{self.job_id}' counters went backwards: {previous} → {progress}",
            )
        return Result.success(
            replace(
                self,
                state=_state_for(progress),
                progress=progress,
                observations=self.observations + 1,
            )
        )


def _state_for(progress: JobProgress) -> JobState:
    if progress.is_terminal:
        return JobState.FAILED if progress.failed else JobState.SUCCEEDED
    if progress.running:
        return JobState.RUNNING
    return JobState.PENDING


@dataclass(frozen=True, slots=True)
class ResourceSelector:
    """One product (resource type) the job should touch, with its region scope."""

    product: str
    regions: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class JobRequest:
    """What a deployment job submission refers to."""

    old_cert_id: str
    resource_products: tuple[str, ...]
    resource_regions: tuple[str, ...] = ()

    def selectors(self) -> tuple[ResourceSelector, ...]:
        """Regions are attached only to region-scoped products."""
        return tuple(
            ResourceSelector(
                product=product,
                regions=self.resource_regions if product in REGION_SCOPED_PRODUCTS else (),
            )
            for product in self.resource_products
        )


# ─────────────────────── Deploy call ───────────────────────


@dataclass(frozen=True, slots=True)
class DeployConfig:
    """
    Per-call deployment configuration.

    `domain_match_pattern` is kept as the raw configured text so an unknown
    value can be reported verbatim; "" means exact.
    """

    domain_match_pattern: str = ""
    domains: tuple[str, ...] = ()
    resource_ids: tuple[str, ...] = ()
    certificate_id: str | None = None
    is_replaced: bool = False
    resource_products: tuple[str, ...] = ()
    resource_regions: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DeployResult:
    """
    What one deploy call did.

    `upload` is None only for the in-place replace job variant, where the
    platform receives the PEM directly instead of a new certificate id.
    """

    upload: UploadResult | None = None
    targets: tuple[DeployTarget, ...] = ()
    job: DeploymentJob | None = None

    @property
    def target_count(self) -> int:
        return len(self.targets)


def _name_set(names: Iterable[str]) -> frozenset[str]:
    return frozenset(n.strip().lower().rstrip(".") for n in names)
