"""Unit tests for order sequence tag computation."""

import pytest

from order_tagger.services.tag_calculator import (
    NEW_CUSTOMER_TAG,
    RETURNING_CUSTOMER_TAG,
    compute_tags,
    is_classification_tag,
    strip_classification,
    tags_equal,
)

TAG_SETS = [
    [],
    ["vip"],
    ["1", "new-customer"],
    ["vip", "2", "returning-customer"],
    ["7", "returning-customer", "wholesale", "12"],
    ["new-customer", "returning-customer"],
    [" gift ", "gift", "", "3"],
    ["2024", "promo"],
]
PRIOR_COUNTS = [0, 1, 2, 9]


def numeric_tags(tags: list[str]) -> list[str]:
    return [t for t in tags if t.isdigit()]


class TestComputeTags:
    """Tests for the classification rule."""

    def test_first_order(self) -> None:
        assert compute_tags([], 0) == ["1", NEW_CUSTOMER_TAG]

    def test_second_order_keeps_merchant_tags(self) -> None:
        assert compute_tags(["vip"], 1) == ["vip", "2", RETURNING_CUSTOMER_TAG]

    def test_replaces_stale_classification(self) -> None:
        """An order re-tagged after a partial run loses its old sequence number."""
        assert compute_tags(["3", "returning-customer", "gift"], 0) == ["gift", "1", NEW_CUSTOMER_TAG]

    def test_numeric_merchant_tag_is_stripped(self) -> None:
        """Purely numeric tags are indistinguishable from sequence numbers."""
        assert compute_tags(["2024", "promo"], 4) == ["promo", "5", RETURNING_CUSTOMER_TAG]

    def test_alphanumeric_tags_survive(self) -> None:
        assert compute_tags(["SUMMER24", "24h"], 0) == ["SUMMER24", "24h", "1", NEW_CUSTOMER_TAG]

    def test_duplicates_and_whitespace_collapse(self) -> None:
        assert compute_tags([" gift ", "gift", ""], 0) == ["gift", "1", NEW_CUSTOMER_TAG]

    def test_negative_count_rejected(self) -> None:
        with pytest.raises(ValueError):
            compute_tags([], -1)

    def test_accepts_any_iterable(self) -> None:
        assert set(compute_tags({"vip"}, 2)) == {"vip", "3", RETURNING_CUSTOMER_TAG}


class TestComputeTagsProperties:
    """Invariants that must hold for every tag set and prior count."""

    @pytest.mark.parametrize("tags", TAG_SETS)
    @pytest.mark.parametrize("prior", PRIOR_COUNTS)
    def test_idempotent(self, tags: list[str], prior: int) -> None:
        once = compute_tags(tags, prior)
        assert compute_tags(once, prior) == once

    @pytest.mark.parametrize("tags", TAG_SETS)
    def test_new_customer_classification(self, tags: list[str]) -> None:
        result = compute_tags(tags, 0)
        assert "1" in result
        assert NEW_CUSTOMER_TAG in result
        assert RETURNING_CUSTOMER_TAG not in result
        assert numeric_tags(result) == ["1"]

    @pytest.mark.parametrize("tags", TAG_SETS)
    @pytest.mark.parametrize("prior", [1, 2, 9])
    def test_returning_customer_classification(self, tags: list[str], prior: int) -> None:
        result = compute_tags(tags, prior)
        assert numeric_tags(result) == [str(prior + 1)]
        assert result.count(RETURNING_CUSTOMER_TAG) == 1
        assert NEW_CUSTOMER_TAG not in result

    @pytest.mark.parametrize("tags", TAG_SETS)
    @pytest.mark.parametrize("prior", PRIOR_COUNTS)
    def test_stripping_is_total(self, tags: list[str], prior: int) -> None:
        kept = compute_tags(tags, prior)[:-2]
        assert not any(is_classification_tag(t) for t in kept)

    @pytest.mark.parametrize("tags", TAG_SETS)
    @pytest.mark.parametrize("prior", PRIOR_COUNTS)
    def test_other_tags_preserved(self, tags: list[str], prior: int) -> None:
        expected = {t.strip() for t in tags if t.strip() and not is_classification_tag(t.strip())}
        assert set(compute_tags(tags, prior)[:-2]) == expected


class TestHelpers:
    def test_is_classification_tag(self) -> None:
        assert is_classification_tag("12")
        assert is_classification_tag("new-customer")
        assert is_classification_tag("returning-customer")
        assert not is_classification_tag("12a")
        assert not is_classification_tag("vip")
        assert not is_classification_tag("١٢")  # non-ASCII digits are not sequence numbers

    def test_strip_classification_keeps_order(self) -> None:
        assert strip_classification(["b", "1", "a", "new-customer", "c"]) == ["b", "a", "c"]

    def test_tags_equal_ignores_order(self) -> None:
        assert tags_equal(["1", "new-customer"], ["new-customer", " 1"])
        assert not tags_equal(["1", "new-customer"], ["2", "returning-customer"])
