"""Order sequence tagging tasks."""

import asyncio

import structlog
from celery import shared_task

from order_tagger.config import get_settings
from order_tagger.exceptions import SyncRunError
from order_tagger.models import DateWindow
from order_tagger.services.order_tagging import run_tagging

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def tag_orders_in_window(self, from_date: str, to_date: str, dry_run: bool = False) -> dict:
    """
    Tag every customer order created between two dates.

    This task:
    1. Lists the shop's customers (or the window's orders)
    2. Counts each order's predecessors for its customer
    3. Writes the sequence number and new/returning marker

    A run that fails while listing its scope is retried; tags already written
    are recomputed identically on the next attempt.

    Args:
        from_date: First day of the window (YYYY-MM-DD)
        to_date: Last day of the window (YYYY-MM-DD)
        dry_run: Compute tags without writing them

    Returns:
        dict: Summary of the run
    """
    window = DateWindow.parse(from_date, to_date)
    logger.info("Starting order tagging task", task_id=self.request.id, **window.to_dict())

    try:
        summary = asyncio.run(run_tagging(get_settings(), window, dry_run=dry_run))
    except SyncRunError as e:
        logger.error("Order tagging task failed", task_id=self.request.id, error=str(e))
        raise self.retry(exc=e)

    return summary.to_dict()
