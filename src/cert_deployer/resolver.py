"""
Domain resolver — computes the concrete set of targets for a deployment.

  exact     configured domains / resource ids, verbatim, no inventory call
  wildcard  each configured "*.x" pattern is expanded against the platform's
            domain inventory; non-wildcard domains pass through unchanged
  certsan   configured domains are ignored; every inventory domain the
            certificate is valid for is kept

The inventory is fetched at most once per resolve() call and entries whose
status is ignored (stopped, disabled) are dropped before matching. Output
keeps inventory order with duplicates removed, so a fixed inventory and
pattern always resolve to the same list.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from typing import Any

import structlog
from railway import ErrorCode, ResultFailures
from railway.result import Result

from cert_deployer.domain.context import DeployContext
from cert_deployer.domain.hostname import is_wildcard_match, normalize_hostname, verifies_hostname
from cert_deployer.domain.models import (
    Certificate,
    DeployTarget,
    DomainMatchPattern,
    InventoryEntry,
)
from cert_deployer.domain.pagination import Paginated
from cert_deployer.domain.ports import DomainInventory
from cert_deployer.logs import or_discard

log = structlog.get_logger()

DEFAULT_IGNORED_STATUSES: frozenset[str] = frozenset({"stopped", "disabled"})


def _unique(domains: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for domain in domains:
        key = normalize_hostname(domain)
        if key and key not in seen:
            seen.add(key)
            unique.append(domain.strip())
    return unique


def _is_wildcard(domain: str) -> bool:
    return domain.strip().startswith("*.")


class DomainResolver:
    """Resolves a match pattern into DeployTargets."""

    def __init__(
        self,
        page_size: int = 100,
        ignored_statuses: Collection[str] = DEFAULT_IGNORED_STATUSES,
        logger: Any = None,
    ) -> None:
        self._page_size = page_size
        self._ignored_statuses = frozenset(s.lower() for s in ignored_statuses)
        self._log = log if logger is None else logger

    def set_logger(self, logger: Any) -> None:
        """Swap the diagnostic logger; None silences this resolver."""
        self._log = or_discard(logger)

    # ─────────────────────── Validation ───────────────────────

    def precheck(
        self,
        pattern: str | DomainMatchPattern,
        domains: Sequence[str],
        resource_ids: Sequence[str] = (),
    ) -> Result[DomainMatchPattern]:
        """
        Validate the pattern and its required configuration without any I/O.

        Run before the upload so configuration errors leave no side effects.
        """
        configured = [d for d in domains if d.strip()]
        return DomainMatchPattern.parse(pattern).flat_map(
            lambda parsed: self._require_configuration(parsed, configured, resource_ids)
        )

    @staticmethod
    def _require_configuration(
        pattern: DomainMatchPattern,
        domains: Sequence[str],
        resource_ids: Sequence[str],
    ) -> Result[DomainMatchPattern]:
        match pattern:
            case DomainMatchPattern.EXACT if not domains and not resource_ids:
                return ResultFailures.missing_config("domain")
            case DomainMatchPattern.WILDCARD if not domains:
                return ResultFailures.missing_config("domain")
        return Result.success(pattern)

    # ─────────────────────── Resolution ───────────────────────

    def resolve(
        self,
        ctx: DeployContext,
        pattern: str | DomainMatchPattern,
        domains: Sequence[str],
        certificate: Certificate | None,
        inventory: DomainInventory | None,
        resource_ids: Sequence[str] = (),
    ) -> Result[list[DeployTarget]]:
        """
        Resolve the targets for one deployment.

        Returns NOT_FOUND when a wildcard or the certificate matched nothing,
        CONFIGURATION_ERROR for missing input, CANCELLED when the context is
        done while the inventory is paged.
        """
        return self.precheck(pattern, domains, resource_ids).flat_map(
            lambda parsed: self._resolve(ctx, parsed, _unique(domains), certificate, inventory, resource_ids)
        ).peek(
            lambda targets: self._log.info(
                "resolver.resolved",
                pattern=str(pattern) or DomainMatchPattern.EXACT.value,
                targets=len(targets),
            )
        )

    def _resolve(
        self,
        ctx: DeployContext,
        pattern: DomainMatchPattern,
        domains: list[str],
        certificate: Certificate | None,
        inventory: DomainInventory | None,
        resource_ids: Sequence[str],
    ) -> Result[list[DeployTarget]]:
        match pattern:
            case DomainMatchPattern.EXACT:
                targets = [DeployTarget.for_domain(d) for d in domains]
                targets += [DeployTarget.for_resource(r) for r in dict.fromkeys(resource_ids) if r]
                return Result.success(targets)
            case DomainMatchPattern.WILDCARD:
                return self._resolve_wildcard(ctx, domains, inventory)
            case DomainMatchPattern.CERTSAN:
                return self._resolve_certsan(ctx, certificate, inventory)
        return ResultFailures.configuration_error(f"unsupported domain match pattern: '{pattern}'")

    def _resolve_wildcard(
        self,
        ctx: DeployContext,
        domains: list[str],
        inventory: DomainInventory | None,
    ) -> Result[list[DeployTarget]]:
        if not any(_is_wildcard(d) for d in domains):
            return Result.success([DeployTarget.for_domain(d) for d in domains])

        def expand(entries: list[InventoryEntry]) -> Result[list[DeployTarget]]:
            resolved: list[str] = []
            for domain in domains:
                if not _is_wildcard(domain):
                    resolved.append(domain)
                    continue
                matched = [e.domain for e in entries if is_wildcard_match(domain, e.domain)]
                if not matched:
                    return ResultFailures.not_found(
                        f"could not find any domains matched by wildcard '{domain}'"
                    )
                resolved.extend(matched)
            return Result.success([DeployTarget.for_domain(d) for d in _unique(resolved)])

        return self.snapshot(ctx, inventory).flat_map(expand)

    def _resolve_certsan(
        self,
        ctx: DeployContext,
        certificate: Certificate | None,
        inventory: DomainInventory | None,
    ) -> Result[list[DeployTarget]]:
        def keep_verified(cert: Certificate) -> Result[list[DeployTarget]]:
            return self.snapshot(ctx, inventory).flat_map(
                lambda entries: Result.success(
                    _unique(e.domain for e in entries if verifies_hostname(cert, e.domain))
                ).ensure(
                    bool,
                    ErrorCode.NOT_FOUND,
                    "could not find any domains matched by certificate",
                )
            ).map(lambda matched: [DeployTarget.for_domain(d) for d in matched])

        return Result.from_optional(
            certificate, "a parsed certificate is required for certsan matching"
        ).flat_map(keep_verified)

    # ─────────────────────── Inventory ───────────────────────

    def snapshot(
        self, ctx: DeployContext, inventory: DomainInventory | None
    ) -> Result[list[InventoryEntry]]:
        """Every active inventory entry, all pages, fetched once."""
        return (
            Result.from_optional(inventory, "this platform offers no domain inventory")
            .flat_map(
                lambda source: Paginated(
                    ctx,
                    lambda page: source.list_domains(ctx, page),
                    page_size=self._page_size,
                ).collect()
            )
            .map(self._active)
        )

    def _active(self, entries: list[InventoryEntry]) -> list[InventoryEntry]:
        return [
            e
            for e in entries
            if e.domain.strip() and (e.status or "").strip().lower() not in self._ignored_statuses
        ]
