"""Shared request gate: concurrency cap, dispatch spacing and retry with backoff.

Every outbound Shopify call, read or write, passes through one ``RateLimiter``
instance so the aggregate request rate of a run stays under the API ceiling no
matter how many subjects are processed concurrently.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

import structlog

from order_tagger.exceptions import RetryExhaustedError

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT = 2
DEFAULT_MIN_INTERVAL_SECONDS = 0.5


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts a call gets and how long to wait between them.

    Only errors listed in ``retry_on`` are retried; the default retries nothing.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    backoff: Literal["exponential", "linear"] = "exponential"
    factor: float = 2.0
    max_delay: float = 30.0
    retry_on: tuple[type[BaseException], ...] = ()

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        if self.backoff == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay * self.factor ** (attempt - 1)
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, float(retry_after))
        return min(delay, self.max_delay)


@dataclass(frozen=True)
class AttemptEvent:
    """One dispatched attempt, reported to the ``on_attempt`` hook."""

    label: str
    attempt: int
    dispatched_at: float
    succeeded: bool
    error: BaseException | None = None
    next_delay: float | None = None


@dataclass
class CallOutcome(Generic[T]):
    """Result of a gated call: either a value or the terminal failure."""

    label: str
    attempts: int
    value: T | None = None
    error: BaseException | None = None
    exhausted: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the terminal failure."""
        if self.error is None:
            return self.value  # type: ignore[return-value]
        if self.exhausted:
            raise RetryExhaustedError(self.label, self.attempts, self.error) from self.error
        raise self.error


@dataclass
class _Stats:
    dispatched: int = 0
    retries: int = 0
    failures: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0


class RateLimiter:
    """Async request gate owned by a tagging run.

    Callers beyond ``max_concurrent`` queue on a semaphore; dispatches are
    serialized through a lock that enforces ``min_interval`` seconds between
    consecutive request starts. Both primitives wake waiters in FIFO order, so
    excess requests are delayed, never rejected.
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        min_interval: float = DEFAULT_MIN_INTERVAL_SECONDS,
        retry_policy: RetryPolicy | None = None,
        on_attempt: Callable[[AttemptEvent], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_interval < 0:
            raise ValueError("min_interval cannot be negative")
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self.retry_policy = retry_policy or RetryPolicy()
        self.on_attempt = on_attempt
        self._clock = clock
        self._sleep = sleep
        self._slots = asyncio.Semaphore(max_concurrent)
        self._dispatch_lock = asyncio.Lock()
        self._next_dispatch_at = 0.0
        self.stats = _Stats()

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "RateLimiter":
        """Build a limiter from application settings."""
        policy = RetryPolicy(
            max_attempts=settings.max_request_attempts,
            base_delay=settings.retry_base_delay_seconds,
            backoff=settings.retry_backoff,
            max_delay=settings.retry_max_delay_seconds,
            retry_on=kwargs.pop("retry_on", ()),
        )
        return cls(
            max_concurrent=settings.max_concurrent_requests,
            min_interval=settings.min_request_interval_ms / 1000,
            retry_policy=policy,
            **kwargs,
        )

    async def _wait_for_dispatch(self) -> float:
        """Block until this caller may start a request; returns the dispatch time."""
        async with self._dispatch_lock:
            while (wait := self._next_dispatch_at - self._clock()) > 0:
                await self._sleep(wait)
            dispatched_at = self._clock()
            self._next_dispatch_at = dispatched_at + self.min_interval
            return dispatched_at

    async def _attempt(
        self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> tuple[float, T | None, Exception | None]:
        async with self._slots:
            dispatched_at = await self._wait_for_dispatch()
            self.stats.dispatched += 1
            self.stats.in_flight += 1
            self.stats.peak_in_flight = max(self.stats.peak_in_flight, self.stats.in_flight)
            try:
                return dispatched_at, await fn(*args, **kwargs), None
            except Exception as e:
                return dispatched_at, None, e
            finally:
                self.stats.in_flight -= 1

    def _report(self, event: AttemptEvent) -> None:
        if self.on_attempt is not None:
            self.on_attempt(event)

    async def execute(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        label: str | None = None,
        **kwargs: Any,
    ) -> CallOutcome[T]:
        """Run ``fn`` through the gate, retrying retryable failures.

        Never raises for failures of ``fn``; the terminal failure is carried
        by the returned ``CallOutcome``.
        """
        policy = self.retry_policy
        label = label or getattr(fn, "__name__", "request")

        attempt = 0
        while True:
            attempt += 1
            dispatched_at, value, error = await self._attempt(fn, *args, **kwargs)
            if error is not None:
                retryable = policy.is_retryable(error)
                if not retryable or attempt >= policy.max_attempts:
                    self.stats.failures += 1
                    self._report(AttemptEvent(label, attempt, dispatched_at, False, error=error))
                    logger.warning(
                        "Request failed",
                        request=label,
                        attempts=attempt,
                        retryable=retryable,
                        error_type=type(error).__name__,
                        error=str(error),
                    )
                    return CallOutcome(label=label, attempts=attempt, error=error, exhausted=retryable)

                delay = policy.delay_for(attempt, error)
                self.stats.retries += 1
                self._report(AttemptEvent(label, attempt, dispatched_at, False, error=error, next_delay=delay))
                logger.info(
                    "Request retry scheduled",
                    request=label,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay_seconds=round(delay, 3),
                    error_type=type(error).__name__,
                )
                if delay > 0:
                    await self._sleep(delay)
                continue

            self._report(AttemptEvent(label, attempt, dispatched_at, True))
            return CallOutcome(label=label, attempts=attempt, value=value)

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        label: str | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``fn`` through the gate and return its value.

        Raises:
            RetryExhaustedError: if every attempt failed with a retryable error.
            Exception: the original error if it was not retryable.
        """
        outcome = await self.execute(fn, *args, label=label, **kwargs)
        return outcome.unwrap()
