"""Shopify Admin REST API client."""

from dataclasses import dataclass
from typing import Any

import httpx
import orjson
import structlog

from order_tagger.config import Settings
from order_tagger.exceptions import ShopifyAPIError, TransientAPIError
from order_tagger.infrastructure.rate_limiter import RateLimiter

logger = structlog.get_logger()

# Failures the rate limiter retries: throttling, 5xx and network-level errors
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (TransientAPIError, httpx.TransportError)


@dataclass(frozen=True)
class ShopifyResponse:
    """Decoded JSON body plus the pagination header."""

    payload: dict[str, Any]
    link_header: str | None = None


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class ShopifyClient:
    """Async Shopify client whose every request goes through a shared ``RateLimiter``."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        limiter: RateLimiter,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.limiter = limiter
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ShopifyClient":
        """Create a client (and, if not given, its limiter) from settings."""
        if limiter is None:
            limiter = RateLimiter.from_settings(settings, retry_on=RETRYABLE_ERRORS)
        return cls(
            base_url=settings.shopify_base_url,
            access_token=settings.access_token,
            limiter=limiter,
            timeout=settings.shopify_api_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ShopifyClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> ShopifyResponse:
        """Issue a single HTTP request and map error statuses to exceptions."""
        response = await self._http.request(method, path, params=params, json=json_body)

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientAPIError(
                response.status_code,
                response.text[:500],
                method=method,
                path=path,
                retry_after=_retry_after(response),
            )
        if response.status_code >= 400:
            raise ShopifyAPIError(response.status_code, response.text[:500], method=method, path=path)

        payload = orjson.loads(response.content) if response.content else {}
        return ShopifyResponse(payload=payload, link_header=response.headers.get("link"))

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> ShopifyResponse:
        """Send a request through the rate limiter, retrying transient failures."""
        return await self.limiter.call(
            self._send,
            method,
            path,
            params=params,
            json_body=json_body,
            label=f"{method} {path}",
        )

    async def get(self, path: str, params: dict[str, Any] | None = None) -> ShopifyResponse:
        return await self.request("GET", path, params=params)

    async def update_order_tags(self, order_id: int | str, tags: list[str]) -> dict[str, Any]:
        """Overwrite an order's tags with ``tags``."""
        tag_string = ", ".join(tags)
        response = await self.request(
            "PUT",
            f"orders/{order_id}.json",
            json_body={"order": {"id": order_id, "tags": tag_string}},
        )
        logger.debug("Order tags written", order_id=order_id, tags=tag_string)
        return response.payload.get("order", {})
