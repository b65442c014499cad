"""Order sequence classification tags.

Each order gets its 1-based position in the customer's purchase history as a
numeric tag, plus ``new-customer`` for the first purchase or
``returning-customer`` for every later one. Any prior classification is
stripped first so the calculation can be replayed on already-tagged orders.

Known limitation: a merchant-added tag that is purely numeric (a promo code
like ``2024``) cannot be told apart from a sequence tag and is stripped too.
"""

import re
from collections.abc import Iterable

NEW_CUSTOMER_TAG = "new-customer"
RETURNING_CUSTOMER_TAG = "returning-customer"
CLASSIFICATION_MARKERS = frozenset({NEW_CUSTOMER_TAG, RETURNING_CUSTOMER_TAG})

_NUMERIC_TAG = re.compile(r"\d+", re.ASCII)


def is_classification_tag(tag: str) -> bool:
    return tag in CLASSIFICATION_MARKERS or bool(_NUMERIC_TAG.fullmatch(tag))


def strip_classification(tags: Iterable[str]) -> list[str]:
    """Drop sequence numbers and markers, keeping other tags in order, deduplicated."""
    kept: list[str] = []
    seen: set[str] = set()
    for tag in tags:
        tag = tag.strip()
        if not tag or tag in seen or is_classification_tag(tag):
            continue
        seen.add(tag)
        kept.append(tag)
    return kept


def compute_tags(existing_tags: Iterable[str], prior_order_count: int) -> list[str]:
    """Return the full tag list an order should carry.

    Args:
        existing_tags: The order's current tags.
        prior_order_count: Number of the customer's orders created strictly
            before this one.

    Returns:
        The kept non-classification tags followed by the sequence number and
        the customer marker.
    """
    if prior_order_count < 0:
        raise ValueError("prior_order_count cannot be negative")

    tags = strip_classification(existing_tags)
    if prior_order_count == 0:
        tags.extend(["1", NEW_CUSTOMER_TAG])
    else:
        tags.extend([str(prior_order_count + 1), RETURNING_CUSTOMER_TAG])
    return tags


def tags_equal(left: Iterable[str], right: Iterable[str]) -> bool:
    """Compare tag collections the way Shopify does: as sets of trimmed strings."""
    return {t.strip() for t in left if t.strip()} == {t.strip() for t in right if t.strip()}
