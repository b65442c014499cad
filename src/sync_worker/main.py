"""Celery application for the tagging worker."""

from celery import Celery
from celery.signals import worker_process_init

from order_tagger.config import get_settings
from order_tagger.observability import configure_logging

settings = get_settings()

# Create Celery app
app = Celery(
    "sync_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "sync_worker.tasks.tag_orders",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=6 * 60 * 60,  # 6 hours
    task_soft_time_limit=6 * 60 * 60 - 300,
    worker_prefetch_multiplier=1,
    # One run at a time keeps the shop under a single request budget
    worker_concurrency=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="sync",
    task_routes={
        "sync_worker.tasks.*": {"queue": "sync"},
    },
)


@worker_process_init.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging()


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "sync"])


if __name__ == "__main__":
    run()
