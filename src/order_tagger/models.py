"""Domain records read from the Shopify API."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any


def parse_tags(raw: str | None) -> list[str]:
    """Split Shopify's comma-separated tag string."""
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def parse_timestamp(value: str) -> datetime:
    """Parse a Shopify ISO-8601 timestamp into an aware UTC datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way Shopify's date filters expect it."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class Customer:
    id: int

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Customer":
        return cls(id=data["id"])


@dataclass(frozen=True)
class Order:
    """An order with the fields the tagger needs."""

    id: int
    customer_id: int | None
    created_at: datetime
    tags: list[str] = field(default_factory=list)
    name: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Order":
        customer = data.get("customer") or {}
        return cls(
            id=data["id"],
            customer_id=customer.get("id"),
            created_at=parse_timestamp(data["created_at"]),
            tags=parse_tags(data.get("tags")),
            name=data.get("name"),
        )

    @property
    def counting_upper_bound(self) -> datetime:
        """Latest creation time an earlier order can have.

        Shopify's ``created_at_max`` filter is inclusive, so the order itself
        is excluded by stepping back one second.
        """
        return self.created_at - timedelta(seconds=1)


@dataclass(frozen=True)
class DateWindow:
    """Inclusive calendar-day range, evaluated in UTC."""

    from_date: date
    to_date: date

    def __post_init__(self) -> None:
        if self.from_date > self.to_date:
            raise ValueError(
                f"from_date {self.from_date.isoformat()} is after to_date {self.to_date.isoformat()}"
            )

    @classmethod
    def parse(cls, from_date: str | date, to_date: str | date) -> "DateWindow":
        if isinstance(from_date, str):
            from_date = date.fromisoformat(from_date)
        if isinstance(to_date, str):
            to_date = date.fromisoformat(to_date)
        return cls(from_date=from_date, to_date=to_date)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.from_date, time(0, 0, 0), tzinfo=timezone.utc)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.to_date, time(23, 59, 59), tzinfo=timezone.utc)

    def as_params(self) -> dict[str, str]:
        return {
            "created_at_min": format_timestamp(self.starts_at),
            "created_at_max": format_timestamp(self.ends_at),
        }

    def to_dict(self) -> dict[str, str]:
        return {"from_date": self.from_date.isoformat(), "to_date": self.to_date.isoformat()}
