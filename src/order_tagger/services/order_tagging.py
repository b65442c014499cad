"""Order sequence tagging service.

Walks every customer order created inside a date window and rewrites its
classification tags (sequence number plus new/returning marker), going through
a single rate-limited Shopify client for all reads and writes.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
import structlog

from order_tagger.config import Settings
from order_tagger.exceptions import SyncRunError
from order_tagger.infrastructure.shopify import Paginator, ShopifyClient
from order_tagger.models import Customer, DateWindow, Order, format_timestamp, parse_timestamp
from order_tagger.services.tag_calculator import compute_tags, tags_equal

logger = structlog.get_logger()

ORDER_FIELDS = "id,name,customer,created_at,tags"


class RunState(str, Enum):
    """Lifecycle of one tagging run.

    ``PROCESSING`` covers the per-subject loop: for each customer (or window
    order) its prior orders are counted, then its tags are written.
    """

    PENDING = "pending"
    FETCHING_SCOPE = "fetching_scope"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class ScopeStrategy(str, Enum):
    """How the set of orders to tag is enumerated."""

    CUSTOMER = "customer"
    ORDER = "order"


class CountingStrategy(str, Enum):
    """How the number of a customer's earlier orders is determined.

    ``QUERY`` asks the API for every order before the target and is always
    correct. ``POSITION`` uses the order's index in the fetched window, which
    undercounts when the customer ordered before the window starts; only use
    it when the window covers the customers' complete history.
    """

    QUERY = "query"
    POSITION = "position"


class SubjectStatus(str, Enum):
    TAGGED = "tagged"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    FAILED = "failed"


@dataclass
class SubjectResult:
    """Outcome of processing a single order."""

    order_id: int
    customer_id: int | None
    status: SubjectStatus
    tags: list[str] = field(default_factory=list)
    prior_order_count: int | None = None
    error: str | None = None


@dataclass
class RunSummary:
    """Progress and outcome counters of a tagging run."""

    window: DateWindow
    scope_strategy: ScopeStrategy
    counting_strategy: CountingStrategy
    dry_run: bool = False
    state: RunState = RunState.PENDING
    customers_total: int = 0
    customers_processed: int = 0
    orders_seen: int = 0
    tagged: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    requests: int = 0
    retries: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    error: str | None = None

    def record(self, result: SubjectResult) -> None:
        self.orders_seen += 1
        if result.status in (SubjectStatus.TAGGED, SubjectStatus.DRY_RUN):
            self.tagged += 1
        elif result.status is SubjectStatus.UNCHANGED:
            self.unchanged += 1
        elif result.status is SubjectStatus.SKIPPED:
            self.skipped += 1
        else:
            self.record_failure("order", result.order_id, result.error or "unknown error")

    def record_failure(self, subject: str, subject_id: int, error: str) -> None:
        self.failed += 1
        self.failures.append({"subject": subject, "id": subject_id, "error": error})

    def counts(self) -> dict[str, int]:
        return {
            "customers_total": self.customers_total,
            "customers_processed": self.customers_processed,
            "orders_seen": self.orders_seen,
            "tagged": self.tagged,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "failed": self.failed,
            "requests": self.requests,
            "retries": self.retries,
        }

    def to_dict(self) -> dict[str, Any]:
        duration = None
        if self.finished_at is not None:
            duration = round((self.finished_at - self.started_at).total_seconds(), 3)
        return {
            **self.window.to_dict(),
            "scope_strategy": self.scope_strategy.value,
            "counting_strategy": self.counting_strategy.value,
            "dry_run": self.dry_run,
            "state": self.state.value,
            **self.counts(),
            "failures": self.failures,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": duration,
            "error": self.error,
        }


class OrderTaggingService:
    """Recomputes order sequence tags for every customer order in a window."""

    def __init__(
        self,
        client: ShopifyClient,
        paginator: Paginator | None = None,
        *,
        scope_strategy: ScopeStrategy | str = ScopeStrategy.CUSTOMER,
        counting_strategy: CountingStrategy | str = CountingStrategy.QUERY,
        customer_batch_size: int = 50,
        customer_concurrency: int = 1,
        order_batch_size: int = 5,
        skip_unchanged: bool = True,
        isolate_customer_failures: bool = False,
        dry_run: bool = False,
    ):
        self.client = client
        self.paginator = paginator or Paginator(client)
        self.scope_strategy = ScopeStrategy(scope_strategy)
        self.counting_strategy = CountingStrategy(counting_strategy)
        self.customer_batch_size = customer_batch_size
        self.customer_concurrency = customer_concurrency
        self.order_batch_size = order_batch_size
        self.skip_unchanged = skip_unchanged
        self.isolate_customer_failures = isolate_customer_failures
        self.dry_run = dry_run

    @classmethod
    def from_settings(
        cls, settings: Settings, client: ShopifyClient, dry_run: bool = False
    ) -> "OrderTaggingService":
        return cls(
            client,
            Paginator(client, page_size=settings.shopify_page_size),
            scope_strategy=settings.scope_strategy,
            counting_strategy=settings.counting_strategy,
            customer_batch_size=settings.customer_batch_size,
            customer_concurrency=settings.customer_concurrency,
            order_batch_size=settings.order_batch_size,
            skip_unchanged=settings.skip_unchanged,
            isolate_customer_failures=settings.isolate_customer_failures,
            dry_run=dry_run,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_customers(self) -> list[Customer]:
        records = await self.paginator.fetch_all("customers.json", "customers", {"fields": "id"})
        logger.info("Fetched customers", total=len(records))
        return [Customer.from_api(record) for record in records]

    async def fetch_window_orders(
        self, window: DateWindow, customer_id: int | None = None
    ) -> list[Order]:
        """Fetch orders created in ``window``, oldest first."""
        params: dict[str, Any] = {
            "status": "any",
            "order": "created_at asc",
            "fields": ORDER_FIELDS,
            **window.as_params(),
        }
        if customer_id is not None:
            params["customer_id"] = customer_id
        records = await self.paginator.fetch_all("orders.json", "orders", params)
        orders = [Order.from_api(record) for record in records]
        return sorted(orders, key=lambda o: o.created_at)

    async def count_prior_orders(self, order: Order) -> int:
        """Count the customer's orders created strictly before ``order``."""
        params = {
            "customer_id": order.customer_id,
            "status": "any",
            "created_at_max": format_timestamp(order.counting_upper_bound),
            "fields": "id,created_at",
        }
        records = await self.paginator.fetch_all("orders.json", "orders", params)
        return sum(
            1
            for record in records
            if record["id"] != order.id and parse_timestamp(record["created_at"]) < order.created_at
        )

    # -------------------------------------------------------------------------
    # Per-order processing
    # -------------------------------------------------------------------------

    async def process_order(self, order: Order, position: int | None = None) -> SubjectResult:
        """Count, compute and write the classification tags of one order.

        Args:
            order: The order to tag.
            position: Index of the order in its customer's ascending order
                list; only used with position counting.
        """
        if order.customer_id is None:
            logger.info("Order skipped", order_id=order.id, reason="no customer")
            return SubjectResult(order.id, None, SubjectStatus.SKIPPED)

        try:
            if self.counting_strategy is CountingStrategy.POSITION and position is not None:
                prior_count = position
            else:
                prior_count = await self.count_prior_orders(order)

            tags = compute_tags(order.tags, prior_count)

            if self.skip_unchanged and tags_equal(tags, order.tags):
                logger.debug("Order unchanged", order_id=order.id, tags=tags)
                return SubjectResult(
                    order.id, order.customer_id, SubjectStatus.UNCHANGED, tags, prior_count
                )

            if self.dry_run:
                logger.info("Order tagged", order_id=order.id, tags=tags, dry_run=True)
                return SubjectResult(
                    order.id, order.customer_id, SubjectStatus.DRY_RUN, tags, prior_count
                )

            await self.client.update_order_tags(order.id, tags)
            logger.info(
                "Order tagged",
                order_id=order.id,
                customer_id=order.customer_id,
                prior_order_count=prior_count,
                tags=tags,
            )
            return SubjectResult(order.id, order.customer_id, SubjectStatus.TAGGED, tags, prior_count)

        except Exception as e:
            logger.error(
                "Order failed",
                order_id=order.id,
                customer_id=order.customer_id,
                error=str(e),
            )
            return SubjectResult(order.id, order.customer_id, SubjectStatus.FAILED, error=str(e))

    async def _process_sequence(
        self, orders: list[Order], positions: dict[int, int], summary: RunSummary
    ) -> None:
        # One customer's orders must be handled oldest first
        for order in orders:
            result = await self.process_order(order, positions.get(order.id))
            summary.record(result)

    # -------------------------------------------------------------------------
    # Scoping strategies
    # -------------------------------------------------------------------------

    async def _process_customer(
        self, customer: Customer, window: DateWindow, summary: RunSummary
    ) -> None:
        try:
            orders = await self.fetch_window_orders(window, customer_id=customer.id)
        except Exception as e:
            if not self.isolate_customer_failures:
                raise SyncRunError(
                    f"Failed to list orders for customer {customer.id}: {e}", summary
                ) from e
            logger.error("Customer failed", customer_id=customer.id, error=str(e))
            summary.record_failure("customer", customer.id, str(e))
            return

        positions = {order.id: index for index, order in enumerate(orders)}
        await self._process_sequence(orders, positions, summary)
        summary.customers_processed += 1

    async def _run_customer_scope(self, window: DateWindow, summary: RunSummary) -> None:
        try:
            customers = await self.fetch_customers()
        except Exception as e:
            raise SyncRunError(f"Failed to list customers: {e}", summary) from e

        total = len(customers)
        summary.customers_total = total
        summary.state = RunState.PROCESSING
        slots = asyncio.Semaphore(self.customer_concurrency)
        aborted = asyncio.Event()

        async def handle(customer: Customer) -> None:
            async with slots:
                if aborted.is_set():
                    return
                try:
                    await self._process_customer(customer, window, summary)
                except Exception:
                    aborted.set()
                    raise

        for start in range(0, total, self.customer_batch_size):
            batch = customers[start : start + self.customer_batch_size]
            # Let in-flight customers finish before surfacing the first error
            results = await asyncio.gather(
                *(handle(customer) for customer in batch), return_exceptions=True
            )
            errors = [r for r in results if isinstance(r, Exception)]
            if errors:
                raise errors[0]
            logger.info(
                "Batch processed",
                processed=min(start + self.customer_batch_size, total),
                total=total,
                unit="customers",
            )

    async def _run_order_scope(self, window: DateWindow, summary: RunSummary) -> None:
        try:
            orders = await self.fetch_window_orders(window)
        except Exception as e:
            raise SyncRunError(f"Failed to list orders: {e}", summary) from e

        positions: dict[int, int] = {}
        seen_per_customer: dict[int, int] = defaultdict(int)
        for order in orders:
            if order.customer_id is not None:
                positions[order.id] = seen_per_customer[order.customer_id]
                seen_per_customer[order.customer_id] += 1
        summary.customers_total = len(seen_per_customer)
        summary.state = RunState.PROCESSING

        total = len(orders)
        for start in range(0, total, self.order_batch_size):
            batch = orders[start : start + self.order_batch_size]
            # Orders of one customer stay sequential; different customers fan out
            chains: dict[Any, list[Order]] = defaultdict(list)
            for order in batch:
                key = order.customer_id if order.customer_id is not None else ("no-customer", order.id)
                chains[key].append(order)
            await asyncio.gather(
                *(self._process_sequence(chain, positions, summary) for chain in chains.values())
            )
            logger.info(
                "Batch processed",
                processed=min(start + self.order_batch_size, total),
                total=total,
                unit="orders",
            )
        summary.customers_processed = len(seen_per_customer)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def run(self, window: DateWindow) -> RunSummary:
        """Tag every order in ``window``.

        Per-order failures are recorded on the summary and do not stop the
        run. Failing to enumerate the scope, including one customer's window
        orders, aborts it unless ``isolate_customer_failures`` is set.

        Raises:
            SyncRunError: if the run could not complete; ``error.summary``
                holds the progress made before the failure.
        """
        summary = RunSummary(
            window=window,
            scope_strategy=self.scope_strategy,
            counting_strategy=self.counting_strategy,
            dry_run=self.dry_run,
        )
        logger.info(
            "Starting order tagging run",
            **window.to_dict(),
            scope=self.scope_strategy.value,
            counting=self.counting_strategy.value,
            dry_run=self.dry_run,
        )

        summary.state = RunState.FETCHING_SCOPE
        try:
            if self.scope_strategy is ScopeStrategy.CUSTOMER:
                await self._run_customer_scope(window, summary)
            else:
                await self._run_order_scope(window, summary)
        except Exception as e:
            self._finish(summary, RunState.FAILED)
            summary.error = str(e)
            logger.error("Run failed", error=str(e), **summary.counts())
            if isinstance(e, SyncRunError):
                raise
            raise SyncRunError(f"Tagging run failed: {e}", summary) from e

        self._finish(summary, RunState.DONE)
        logger.info("Run completed", **window.to_dict(), **summary.counts())
        return summary

    def _finish(self, summary: RunSummary, state: RunState) -> None:
        summary.state = state
        summary.finished_at = datetime.now(timezone.utc)
        summary.requests = self.client.limiter.stats.dispatched
        summary.retries = self.client.limiter.stats.retries


@asynccontextmanager
async def tagging_service(
    settings: Settings,
    dry_run: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[OrderTaggingService]:
    """Build a service with its own client and rate limiter for one run."""
    async with ShopifyClient.from_settings(settings, transport=transport) as client:
        yield OrderTaggingService.from_settings(settings, client, dry_run=dry_run)


async def run_tagging(
    settings: Settings,
    window: DateWindow,
    dry_run: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RunSummary:
    """Run one tagging pass over ``window`` with settings-driven wiring."""
    async with tagging_service(settings, dry_run=dry_run, transport=transport) as service:
        return await service.run(window)
