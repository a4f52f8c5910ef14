"""
Pagination — lazy, restartable iteration over a paginated platform listing.

Platform list calls take a page number/offset and a page size; a page with
fewer items than the page size is the last one. Paginated hides that loop:

    pages = Paginated(ctx, lambda page: store.list_certificates(ctx, page), page_size=100)
    for stored in pages:          # fetches page 1, 2, ... lazily
        ...
    pages.collect()               # Result[list[StoredCertificate]]

The context is checked before every page fetch. A failed fetch or a done
context raises FailureError from the iterator; collect() and any caller
wrapped in Result.from_computation turn it back into the failure.
Iterating again starts over from page 1.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Generic, TypeVar

from railway import ErrorCode
from railway.result import Result

from cert_deployer.domain.context import DeployContext

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class PageRequest:
    """1-based page number plus page size; `offset` for offset-style APIs."""

    number: int
    size: int

    def __post_init__(self) -> None:
        if self.number < 1 or self.size < 1:
            raise ValueError(f"invalid page request: {self.number}/{self.size}")

    @property
    def offset(self) -> int:
        return (self.number - 1) * self.size

    def next(self) -> PageRequest:
        return PageRequest(self.number + 1, self.size)


class Paginated(Generic[T]):
    """Restartable sequence over every item of a paginated listing."""

    def __init__(
        self,
        ctx: DeployContext,
        fetch: Callable[[PageRequest], Result[list[T]]],
        page_size: int = 100,
    ) -> None:
        self._ctx = ctx
        self._fetch = fetch
        self._page_size = page_size

    def pages(self) -> Iterator[list[T]]:
        page = PageRequest(1, self._page_size)
        while True:
            self._ctx.raise_if_done()
            items = self._fetch(page).unwrap()
            yield items
            if len(items) < page.size:
                return
            page = page.next()

    def __iter__(self) -> Iterator[T]:
        for items in self.pages():
            yield from items

    def collect(self) -> Result[list[T]]:
        """Every item of every page, or the first failure."""
        return Result.from_computation(
            lambda: list(self),
            ErrorCode.TECHNICAL_ERROR,
            "Pagination failed",
        )
