"""Shopify Admin REST API integration."""

from order_tagger.infrastructure.shopify.client import (
    RETRYABLE_ERRORS,
    ShopifyClient,
    ShopifyResponse,
)
from order_tagger.infrastructure.shopify.pagination import (
    MAX_PAGE_SIZE,
    Paginator,
    parse_next_page_info,
)

__all__ = [
    "MAX_PAGE_SIZE",
    "RETRYABLE_ERRORS",
    "Paginator",
    "ShopifyClient",
    "ShopifyResponse",
    "parse_next_page_info",
]
