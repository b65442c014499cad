"""Cursor pagination over Shopify listing endpoints.

Shopify returns a ``Link`` header such as::

    <https://shop.myshopify.com/admin/api/2023-07/orders.json?limit=250&page_info=abc>; rel="next"

The ``page_info`` cursor of the ``next`` relation is fed back until no
``next`` relation remains.
"""

import re
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import parse_qs, urlsplit

import structlog

from order_tagger.infrastructure.shopify.client import ShopifyClient

logger = structlog.get_logger()

MAX_PAGE_SIZE = 250

_LINK_PART = re.compile(r'<([^>]+)>\s*;\s*rel="?([^";]+)"?')

# Parameters Shopify accepts alongside a page_info cursor
_CURSOR_PARAMS = ("limit", "fields")


def parse_next_page_info(link_header: str | None) -> str | None:
    """Extract the ``page_info`` cursor of the ``rel="next"`` link, if any."""
    if not link_header:
        return None
    for part in link_header.split(","):
        match = _LINK_PART.search(part)
        if not match or match.group(2).strip() != "next":
            continue
        query = parse_qs(urlsplit(match.group(1)).query)
        values = query.get("page_info")
        if values:
            return values[0]
    return None


class Paginator:
    """Turns a cursor-paginated listing endpoint into a complete record list."""

    def __init__(self, client: ShopifyClient, page_size: int = MAX_PAGE_SIZE):
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        self.client = client
        self.page_size = page_size

    async def iter_pages(
        self, path: str, resource_key: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield one batch of records per page, in server order."""
        base_params = {**(params or {}), "limit": self.page_size}
        request_params = base_params
        page = 0
        fetched = 0

        while True:
            response = await self.client.get(path, params=request_params)
            batch = response.payload.get(resource_key) or []
            page += 1
            fetched += len(batch)
            logger.debug(
                "Page fetched",
                path=path,
                page=page,
                batch_size=len(batch),
                fetched=fetched,
            )
            yield batch

            cursor = parse_next_page_info(response.link_header)
            if not cursor:
                return
            # Filters and sort order are encoded in the cursor
            request_params = {k: base_params[k] for k in _CURSOR_PARAMS if k in base_params}
            request_params["page_info"] = cursor

    async def fetch_all(
        self, path: str, resource_key: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Fetch every page and return all records in server order."""
        records: list[dict[str, Any]] = []
        async for batch in self.iter_pages(path, resource_key, params):
            records.extend(batch)
        return records
