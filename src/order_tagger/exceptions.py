"""Error taxonomy for tagging runs."""

from typing import Any


class OrderTaggerError(Exception):
    """Base class for all order tagger errors."""


class ShopifyAPIError(OrderTaggerError):
    """The Shopify API rejected a request (non-retryable 4xx)."""

    def __init__(self, status_code: int, detail: str = "", method: str = "", path: str = ""):
        self.status_code = status_code
        self.detail = detail
        self.method = method
        self.path = path
        super().__init__(f"Shopify API error {status_code} on {method} {path}: {detail}".strip())


class TransientAPIError(ShopifyAPIError):
    """Throttling (429) or server-side (5xx) failure worth retrying."""

    def __init__(
        self,
        status_code: int,
        detail: str = "",
        method: str = "",
        path: str = "",
        retry_after: float | None = None,
    ):
        super().__init__(status_code, detail, method=method, path=path)
        self.retry_after = retry_after


class RetryExhaustedError(OrderTaggerError):
    """A request kept failing until its attempt budget ran out."""

    def __init__(self, label: str, attempts: int, last_error: BaseException):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{label} failed after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )


class SyncRunError(OrderTaggerError):
    """A tagging run could not enumerate its scope and was aborted."""

    def __init__(self, message: str, summary: Any = None):
        super().__init__(message)
        self.summary = summary
