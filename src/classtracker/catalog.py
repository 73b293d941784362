"""Catalog query controller: search text, paging, and the catalog cache key."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import structlog

from classtracker.models.catalog import WILDCARD_QUERY, CatalogPage, CatalogQuery
from classtracker.query_cache import Fetcher, QueryOptions, QueryResult

if TYPE_CHECKING:
    from collections.abc import Hashable

    from classtracker.api import ApiClient
    from classtracker.query_cache import QueryCache

log = structlog.get_logger()

DEFAULT_PAGE_SIZE = 50
RETAINED_QUERIES = 16  # pages kept cached after the user moves away from them


def total_pages(found: int, page_size: int) -> int:
    """Number of pages needed for ``found`` results; 0 when there are none."""
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    if found <= 0:
        return 0
    return math.ceil(found / page_size)


def catalog_key(query: CatalogQuery) -> Hashable:
    return ("catalog", query)


class CatalogController:
    """Owns the draft/committed search text and the current page.

    Typing only changes ``draft``. The query sent to the server is built from
    ``committed``, which changes on ``submit()``, so keystrokes never create
    cache entries or requests.
    """

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        default_query: str = WILDCARD_QUERY,
    ) -> None:
        self._api = api
        self._observer = cache.observe(
            QueryOptions(keep_previous_value=True, retain=RETAINED_QUERIES)
        )
        self.page_size = page_size
        self.default_query = default_query
        self.page = 1
        self.draft = ""
        self.committed = ""

    @property
    def query(self) -> CatalogQuery:
        return CatalogQuery(
            page=self.page,
            page_size=self.page_size,
            text=self.committed or self.default_query,
        )

    def _fetcher(self, query: CatalogQuery) -> Fetcher:
        async def fetch() -> CatalogPage:
            return await self._api.get_catalog_page(query)

        return fetch

    def set_draft(self, text: str) -> None:
        self.draft = text

    async def load(self, *, force: bool = False) -> QueryResult:
        query = self.query
        result = await self._observer.load(catalog_key(query), self._fetcher(query), force=force)
        if result.error is not None and result.value is None:
            log.warning(
                "catalog_unavailable",
                page=query.page,
                query=query.text,
                code=result.error.code.value,
            )
        return result

    def resolve(self) -> QueryResult:
        """Non-blocking variant of ``load()`` for callers that render snapshots."""
        query = self.query
        return self._observer.resolve(catalog_key(query), self._fetcher(query))

    async def submit(self) -> QueryResult:
        """Commit the draft, go back to page 1, and refetch even if the key is cached."""
        self.committed = self.draft.strip()
        self.page = 1
        log.info("catalog_search_submitted", query=self.query.text)
        return await self.load(force=True)

    async def go_to_page(self, page: int) -> QueryResult:
        if page < 1:
            raise ValueError("page must be >= 1")
        if self.total_pages and page > self.total_pages:
            raise ValueError(f"page {page} is beyond the last page ({self.total_pages})")
        self.page = page
        return await self.load()

    def current(self) -> QueryResult:
        return self._observer.snapshot()

    def page_or_empty(self) -> CatalogPage:
        value = self.current().value
        return value if value is not None else CatalogPage.empty()

    @property
    def is_loading(self) -> bool:
        return self.current().is_loading

    @property
    def found(self) -> int:
        return self.page_or_empty().found

    @property
    def total_pages(self) -> int:
        return total_pages(self.found, self.page_size)

    @property
    def pager_visible(self) -> bool:
        return self.total_pages > 0

    def close(self) -> None:
        self._observer.close()
