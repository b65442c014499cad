"""Pytest configuration and fixtures."""

import json
import re
import uuid
from collections import defaultdict
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from order_tagger.api.v1.runs import get_run_executor
from order_tagger.config import Settings, get_settings
from order_tagger.infrastructure.shopify import ShopifyClient
from order_tagger.main import create_app
from order_tagger.models import DateWindow, parse_timestamp
from order_tagger.services.order_tagging import OrderTaggingService, run_tagging

SHOP_HOST = "test-shop.myshopify.com"
API_PREFIX = "/admin/api/2023-07/"


class FakeShop:
    """In-memory Shopify Admin API served through ``httpx.MockTransport``.

    Supports the subset the tagger uses: customer and order listings with
    ``Link`` header cursors, the order filters, and order tag updates.
    """

    def __init__(self) -> None:
        self.customers: list[dict[str, Any]] = []
        self.orders: dict[int, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self._cursors: dict[str, tuple[list[dict[str, Any]], int, str]] = {}
        self._failures: dict[tuple[str, str], list[int]] = defaultdict(list)
        self.transport = httpx.MockTransport(self.handle)

    # -- setup helpers -------------------------------------------------------

    def add_customer(self, customer_id: int) -> None:
        self.customers.append({"id": customer_id})

    def add_order(
        self,
        order_id: int,
        customer_id: int | None,
        created_at: str,
        tags: str = "",
    ) -> None:
        self.orders[order_id] = {
            "id": order_id,
            "name": f"#{order_id}",
            "customer": {"id": customer_id} if customer_id is not None else None,
            "created_at": created_at,
            "tags": tags,
        }

    def fail(self, method: str, path: str, status: int, times: int = 1) -> None:
        """Answer the next ``times`` matching requests with ``status``."""
        self._failures[(method, path)].extend([status] * times)

    # -- inspection helpers --------------------------------------------------

    def tags_of(self, order_id: int) -> list[str]:
        return [t.strip() for t in self.orders[order_id]["tags"].split(",") if t.strip()]

    def calls(self, method: str, path: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and (path is None or r.url.path == API_PREFIX + path)
        ]

    @property
    def writes(self) -> list[httpx.Request]:
        return self.calls("PUT")

    # -- transport -----------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(API_PREFIX)

        pending = self._failures.get((request.method, path))
        if pending:
            return httpx.Response(pending.pop(0), json={"errors": "injected failure"})

        if request.method == "GET" and path == "customers.json":
            return self._listing(request, "customers", list(self.customers))
        if request.method == "GET" and path == "orders.json":
            return self._listing(request, "orders", self._filter_orders(request.url.params))

        match = re.fullmatch(r"orders/(\d+)\.json", path)
        if request.method == "PUT" and match:
            order = self.orders[int(match.group(1))]
            order["tags"] = json.loads(request.content)["order"]["tags"]
            return httpx.Response(200, json={"order": order})

        return httpx.Response(404, json={"errors": "Not Found"})

    def _filter_orders(self, params: httpx.QueryParams) -> list[dict[str, Any]]:
        orders = list(self.orders.values())
        if "customer_id" in params:
            wanted = int(params["customer_id"])
            orders = [o for o in orders if o["customer"] and o["customer"]["id"] == wanted]
        if "created_at_min" in params:
            lower = parse_timestamp(params["created_at_min"])
            orders = [o for o in orders if parse_timestamp(o["created_at"]) >= lower]
        if "created_at_max" in params:
            upper = parse_timestamp(params["created_at_max"])
            orders = [o for o in orders if parse_timestamp(o["created_at"]) <= upper]
        return sorted(orders, key=lambda o: parse_timestamp(o["created_at"]))

    def _listing(
        self, request: httpx.Request, key: str, records: list[dict[str, Any]]
    ) -> httpx.Response:
        params = request.url.params
        limit = int(params.get("limit", 50))
        offset = 0
        if "page_info" in params:
            records, offset, key = self._cursors.pop(params["page_info"])

        page = records[offset : offset + limit]
        headers = {}
        if offset + limit < len(records):
            cursor = uuid.uuid4().hex
            self._cursors[cursor] = (records, offset + limit, key)
            url = f"https://{SHOP_HOST}{request.url.path}?limit={limit}&page_info={cursor}"
            headers["Link"] = f'<{url}>; rel="next"'
        return httpx.Response(200, json={key: page}, headers=headers)


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        _env_file=None,
        app_env="test",
        debug=True,
        shop="test-shop",
        access_token="shpat_test_token",
        api_version="2023-07",
        min_request_interval_ms=0,
        max_request_attempts=3,
        retry_base_delay_seconds=0,
    )


@pytest.fixture
def fake_shop() -> FakeShop:
    return FakeShop()


@pytest_asyncio.fixture
async def shopify_client(
    test_settings: Settings, fake_shop: FakeShop
) -> AsyncGenerator[ShopifyClient, None]:
    async with ShopifyClient.from_settings(test_settings, transport=fake_shop.transport) as client:
        yield client


@pytest.fixture
def tagging_service(shopify_client: ShopifyClient) -> OrderTaggingService:
    return OrderTaggingService(shopify_client)


@pytest.fixture
def january_2024() -> DateWindow:
    return DateWindow.parse("2024-01-01", "2024-01-31")


@pytest.fixture
def app(test_settings: Settings, fake_shop: FakeShop) -> Any:
    """Create test application wired to the fake shop."""

    def get_test_settings() -> Settings:
        return test_settings

    def get_test_executor():
        async def execute(window: DateWindow, dry_run: bool):
            return await run_tagging(
                test_settings, window, dry_run=dry_run, transport=fake_shop.transport
            )

        return execute

    app = create_app()
    app.dependency_overrides[get_settings] = get_test_settings
    app.dependency_overrides[get_run_executor] = get_test_executor
    return app


@pytest.fixture
def client(app: Any) -> TestClient:
    """Create synchronous test client."""
    return TestClient(app)


@pytest.fixture
def returning_customer_shop(fake_shop: FakeShop) -> FakeShop:
    """Customer 1 with a first order and a tagged repeat order in January 2024."""
    fake_shop.add_customer(1)
    fake_shop.add_order(101, 1, "2024-01-01T09:30:00Z")
    fake_shop.add_order(102, 1, "2024-01-05T14:00:00Z", tags="vip")
    return fake_shop
