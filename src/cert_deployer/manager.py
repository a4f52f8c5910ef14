"""
Certificate manager — idempotent upload and in-place replace.

Upload never creates a second platform object for content the platform
already holds. The dedup scan walks the store's paginated inventory and,
for each candidate, compares cheap signals before fetching content:

    fingerprint reported?     → authoritative: equal ⇒ match, different ⇒ skip
    validity window differs?  → skip
    common name differs?      → skip
    DNS name set differs?     → skip
    otherwise                 → fetch PEM, compare ignoring line wrapping

The first match wins and no write happens. Without a match the certificate
is created under a generated name. Some platforms reject a duplicate create
with a message embedding the existing id; that failure is reinterpreted as
a successful dedup.

A false negative here only costs an extra upload; a false positive would bind
the wrong certificate, so anything undecided is treated as "different".
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from railway import ErrorCode, FailureDescription, ResultFailures
from railway.result import Result

from cert_deployer.adapters.pem_parser import parse_certificate
from cert_deployer.domain.context import DeployContext
from cert_deployer.domain.hostname import content_equals
from cert_deployer.domain.models import (
    Certificate,
    OperateResult,
    StoredCertificate,
    UploadResult,
)
from cert_deployer.domain.pagination import Paginated
from cert_deployer.domain.ports import CertificateStore, LoggerAware
from cert_deployer.logs import or_discard

log = structlog.get_logger()

DEFAULT_NAME_PREFIX = "certdeploy"
# First run of digits after "exist" ("certificate already exists: 12345")
DEFAULT_DUPLICATE_ID_PATTERN = r"exist\D*?(\d+)"


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def _names(values: tuple[str, ...]) -> frozenset[str]:
    return frozenset(v.strip().lower() for v in values)


def cheap_verdict(stored: StoredCertificate, cert: Certificate) -> bool | None:
    """
    Compare the metadata a platform reported against the parsed certificate.

    True: same certificate. False: definitely different. None: undecided,
    the content has to be fetched.
    """
    if stored.fingerprint_sha256 is not None:
        return stored.fingerprint_sha256 == cert.fingerprint_sha256
    if stored.fingerprint_sha1 is not None:
        return stored.fingerprint_sha1 == cert.fingerprint_sha1
    if stored.not_before is not None and _as_utc(stored.not_before) != cert.not_before:
        return False
    if stored.not_after is not None and _as_utc(stored.not_after) != cert.not_after:
        return False
    if stored.common_name is not None and (
        stored.common_name.strip().lower() != (cert.common_name or "").strip().lower()
    ):
        return False
    if stored.dns_names is not None and _names(stored.dns_names) != _names(cert.dns_names):
        return False
    return None


class DedupCertificateManager:
    """
    Generic Certificate Manager over any CertificateStore.

    Implements the CertificateManager port.
    """

    def __init__(
        self,
        store: CertificateStore,
        page_size: int = 100,
        name_prefix: str = DEFAULT_NAME_PREFIX,
        duplicate_id_pattern: str | None = DEFAULT_DUPLICATE_ID_PATTERN,
        supports_replace: bool = True,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        logger: Any = None,
    ) -> None:
        self._store = store
        self._page_size = page_size
        self._name_prefix = name_prefix
        self._duplicate_id = (
            re.compile(duplicate_id_pattern, re.IGNORECASE) if duplicate_id_pattern else None
        )
        self._supports_replace = supports_replace
        self._clock = clock
        self._log = log if logger is None else logger

    def set_logger(self, logger: Any) -> None:
        """Swap the diagnostic logger (store included when it logs); None silences both."""
        self._log = or_discard(logger)
        if isinstance(self._store, LoggerAware):
            self._store.set_logger(logger)

    # ─────────────────────── Upload ───────────────────────

    def upload(self, ctx: DeployContext, cert_pem: str, key_pem: str) -> Result[UploadResult]:
        """
        Upload the certificate unless an equivalent one is already stored.

        Returns Result[UploadResult]; `reused` tells whether a create happened.
        Parse and missing-key errors are reported before any platform call.
        """
        return (
            parse_certificate(cert_pem)
            .ensure(
                lambda _: bool(key_pem and key_pem.strip()),
                ErrorCode.CONFIGURATION_ERROR,
                "config `privateKey` is required",
            )
            .flat_map(ctx.guard)
            .flat_map(
                lambda cert: Result.from_computation(
                    lambda: self._upload(ctx, cert, cert_pem, key_pem),
                    ErrorCode.TECHNICAL_ERROR,
                    "Certificate upload failed",
                )
            )
        )

    def _upload(
        self, ctx: DeployContext, cert: Certificate, cert_pem: str, key_pem: str
    ) -> UploadResult:
        existing = self._find_existing(ctx, cert, cert_pem)
        if existing is not None:
            self._log.info(
                "certmgr.upload_skipped_existing",
                cert_id=existing.cert_id,
                cert_name=existing.name,
            )
            return UploadResult(cert_id=existing.cert_id, cert_name=existing.name, reused=True)

        ctx.raise_if_done()
        name = f"{self._name_prefix}-{int(self._clock().timestamp() * 1000)}"
        created = (
            self._store.create_certificate(ctx, name, cert_pem, key_pem)
            .recover_when(self._is_duplicate_create, self._reuse_duplicate)
            .unwrap()
        )
        if not created.reused:
            self._log.info("certmgr.upload_created", cert_id=created.cert_id, cert_name=name)
        return created

    def _find_existing(
        self, ctx: DeployContext, cert: Certificate, cert_pem: str
    ) -> StoredCertificate | None:
        inventory = Paginated(
            ctx,
            lambda page: self._store.list_certificates(ctx, page),
            page_size=self._page_size,
        )
        for stored in inventory:
            match cheap_verdict(stored, cert):
                case True:
                    return stored
                case False:
                    continue
            if self._content_matches(ctx, stored, cert, cert_pem):
                return stored
        return None

    def _content_matches(
        self,
        ctx: DeployContext,
        stored: StoredCertificate,
        cert: Certificate,
        cert_pem: str,
    ) -> bool:
        fetched = self._store.fetch_certificate_pem(ctx, stored.cert_id)
        if fetched.is_failure() and fetched.error().code == ErrorCode.NOT_FOUND:
            self._log.debug("certmgr.candidate_vanished", cert_id=stored.cert_id)
            return False
        stored_pem = fetched.unwrap()
        if content_equals(stored_pem, cert_pem):
            return True
        # Stores that keep only the leaf return a shorter PEM than the uploaded chain.
        return (
            parse_certificate(stored_pem)
            .map(lambda other: other.fingerprint_sha256 == cert.fingerprint_sha256)
            .get_or_else(False)
        )

    def _is_duplicate_create(self, error: FailureDescription) -> bool:
        return (
            self._duplicate_id is not None
            and error.code == ErrorCode.EXTERNAL_SERVICE_ERROR
            and self._duplicate_id.search(error.message) is not None
        )

    def _reuse_duplicate(self, error: FailureDescription) -> Result[UploadResult]:
        assert self._duplicate_id is not None  # guaranteed by _is_duplicate_create
        found = self._duplicate_id.search(error.message)
        assert found is not None
        cert_id = found.group(1) if found.groups() else found.group(0)
        self._log.info("certmgr.upload_duplicate_reused", cert_id=cert_id)
        return Result.success(UploadResult(cert_id=cert_id, reused=True))

    # ─────────────────────── Replace ───────────────────────

    def replace(
        self, ctx: DeployContext, cert_id: str, cert_pem: str, key_pem: str
    ) -> Result[OperateResult]:
        """
        Replace the content behind an existing certificate identity.

        Returns UNSUPPORTED_OPERATION when the platform cannot do this;
        the caller must upload a new identity and re-bind instead.
        """
        if not self._supports_replace:
            return ResultFailures.unsupported("replace")
        return (
            parse_certificate(cert_pem)
            .flat_map(lambda _: Result.from_optional(cert_id or None, "config `certificateId` is required"))
            .flat_map(ctx.guard)
            .flat_map(lambda target_id: self._store.replace_certificate(ctx, target_id, cert_pem, key_pem))
            .peek(lambda result: self._log.info("certmgr.replaced", cert_id=result.cert_id))
        )
