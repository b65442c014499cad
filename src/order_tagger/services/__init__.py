"""Business logic services."""

from order_tagger.services.order_tagging import (
    CountingStrategy,
    OrderTaggingService,
    RunState,
    RunSummary,
    ScopeStrategy,
    run_tagging,
)
from order_tagger.services.tag_calculator import compute_tags

__all__ = [
    "CountingStrategy",
    "OrderTaggingService",
    "RunState",
    "RunSummary",
    "ScopeStrategy",
    "compute_tags",
    "run_tagging",
]
