"""
catalog_aggregator.py
=====================
Fans one logical search out to every active catalog and merges the answers.

  - Providers are queried concurrently; one failing source only removes
    its results from the page
  - Items are deduplicated by (source, native id), last writer wins
  - The merged set is sorted by the requested mode and direction
  - ``total`` is the sum of per-source totals, ``has_more`` is true when
    any source reports more pages
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from content_errors import AggregateFailure, ContentError, ProviderUnavailable
from content_models import (
    ALL_PLATFORMS,
    CatalogFilters,
    CatalogItem,
    CatalogPage,
    ItemDetails,
    SortDirection,
    SortMode,
    Source,
)
from content_providers import ContentProvider

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(sort: SortMode):
    if sort is SortMode.POPULAR:
        return lambda item: item.raw_downloads
    if sort is SortMode.UPDATED:
        return lambda item: item.updated or _OLDEST
    return lambda item: item.name.casefold()


def sort_items(
    items: List[CatalogItem],
    sort: SortMode,
    direction: SortDirection,
) -> List[CatalogItem]:
    """Order merged items; missing timestamps sort as oldest."""
    return sorted(items, key=_sort_key(sort), reverse=direction is SortDirection.DESC)


def merge_items(pages: List[CatalogPage]) -> List[CatalogItem]:
    merged: Dict[Tuple[str, str], CatalogItem] = {}
    for page in pages:
        for item in page.items:
            merged[item.key] = item
    return list(merged.values())


# ──────────────────────────────────────────────
#  Superseded-request guard
# ──────────────────────────────────────────────

class SearchGuard:
    """Generation counter telling a caller whether a response is still current."""

    def __init__(self) -> None:
        self._generation = 0

    def begin(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, token: int) -> bool:
        return token == self._generation


# ──────────────────────────────────────────────
#  Aggregator
# ──────────────────────────────────────────────

class CatalogAggregator:
    """
    Single search surface over the provider lookup table.

    Args:
        providers: closed ``Source → ContentProvider`` table
    """

    def __init__(self, providers: Mapping[Source, ContentProvider]) -> None:
        self.providers: Dict[Source, ContentProvider] = dict(providers)
        self.guard = SearchGuard()

    def provider(self, source: Source | str) -> ContentProvider:
        try:
            return self.providers[Source(source)]
        except (KeyError, ValueError):
            raise ProviderUnavailable(str(getattr(source, "value", source)), "no provider registered") from None

    def active_providers(self, filters: CatalogFilters) -> List[ContentProvider]:
        if filters.platform == ALL_PLATFORMS:
            return list(self.providers.values())
        return [self.provider(filters.platform)]

    # ================================================================
    #  SEARCH
    # ================================================================

    async def search_all(self, filters: CatalogFilters) -> CatalogPage:
        """
        Query every active provider and merge the results.

        Raises:
            AggregateFailure: every active provider failed
        """
        providers = self.active_providers(filters)
        logger.info(
            "Searching %d source(s) for '%s' (%s, page %d)",
            len(providers), filters.query, filters.category.value, filters.page,
        )

        results: List[Any] = await asyncio.gather(
            *(p.search(filters) for p in providers),
            return_exceptions=True,
        )

        pages: List[CatalogPage] = []
        failures: Dict[str, BaseException] = {}
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("%s search failed: %s", provider.source.value, result)
                failures[provider.source.value] = result
            else:
                pages.append(result)

        if providers and not pages:
            raise AggregateFailure(failures)

        items = sort_items(merge_items(pages), filters.sort, filters.effective_direction)
        page = CatalogPage(
            items=items,
            total=sum(p.total for p in pages),
            has_more=any(p.has_more for p in pages),
            page=filters.page,
            failed_sources=sorted(failures),
        )
        logger.debug(
            "Merged %d item(s), total=%d, has_more=%s", len(items), page.total, page.has_more,
        )
        return page

    async def search_latest(self, filters: CatalogFilters) -> Optional[CatalogPage]:
        """Like ``search_all`` but returns None if a newer search started meanwhile."""
        token = self.guard.begin()
        page = await self.search_all(filters)
        if not self.guard.is_current(token):
            logger.debug("Discarding superseded search for '%s'", filters.query)
            return None
        return page

    async def load_more(self, filters: CatalogFilters, current: CatalogPage) -> CatalogPage:
        """
        Fetch the page after ``current`` and append the items not seen yet.

        An exhausted source may keep contributing nothing, so the returned
        page can grow by fewer items than the page size.
        """
        following = filters.next_page() if filters.page == current.page else filters
        nxt = await self.search_all(following)
        known = {item.key for item in current.items}
        fresh = [item for item in nxt.items if item.key not in known]
        return CatalogPage(
            items=current.items + fresh,
            total=nxt.total,
            has_more=nxt.has_more,
            page=nxt.page,
            failed_sources=nxt.failed_sources,
        )

    # ================================================================
    #  DETAILS
    # ================================================================

    async def fetch_details(self, item: CatalogItem) -> ItemDetails:
        """Rich details for ``item`` from the catalog that listed it."""
        provider = self.provider(item.source)
        try:
            details = await provider.fetch_details(item.native_id, item)
        except ProviderUnavailable:
            raise
        except ContentError as exc:
            raise ProviderUnavailable(item.source.value, f"{item.name}: {exc}") from exc
        if details is None:
            raise ProviderUnavailable(item.source.value, f"{item.name or item.native_id} not found")
        return details

    async def lookup(self, source: Source | str, native_id: str) -> ItemDetails:
        """Details for an item known only by its composite identity."""
        provider = self.provider(source)
        try:
            details = await provider.fetch_details(native_id)
        except ProviderUnavailable:
            raise
        except ContentError as exc:
            raise ProviderUnavailable(provider.source.value, f"{native_id}: {exc}") from exc
        if details is None:
            raise ProviderUnavailable(provider.source.value, f"{native_id} not found")
        return details
