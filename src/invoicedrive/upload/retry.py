"""Bounded exponential backoff around fallible async operations.

Built on tenacity's :class:`~tenacity.AsyncRetrying`.  Every raised
exception is run through :func:`~invoicedrive.upload.errors.classify`
before tenacity decides whether to retry, so the retry decision is made
from ``ClassifiedError.retryable`` alone.

Delay before retry *n* (1-based)::

    min(base_delay * backoff_multiplier ** (n - 1), max_delay)

multiplied by ``1 + random() * 0.5`` when the error kind is QUOTA, to
desynchronize concurrent clients hitting the same limit.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
)

from invoicedrive.models import StorageConfig
from invoicedrive.upload.errors import ClassifiedError, ErrorKind, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUOTA_JITTER = 0.5


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings.

    Attributes:
        max_retries: Retries after the first attempt (total invocations is
            ``max_retries + 1``).
        base_delay: Seconds before the first retry.
        max_delay: Cap on the un-jittered delay.
        backoff_multiplier: Growth factor between retries.
        deadline: Optional overall budget in seconds; once exceeded no
            further attempts are made.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    backoff_multiplier: float = 2.0
    deadline: float | None = None

    @classmethod
    def from_config(cls, config: StorageConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            backoff_multiplier=config.backoff_multiplier,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass(frozen=True)
class RetryEvent:
    """Observation emitted before each backoff sleep."""

    operation_name: str
    attempt: int
    max_attempts: int
    delay: float
    error: ClassifiedError


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ClassifiedError) and exc.retryable


class RetryExecutor:
    """Run an async operation with classified, bounded exponential backoff.

    Usage::

        executor = RetryExecutor(RetryPolicy(max_retries=3))
        file_id = await executor.execute_with_retry(
            lambda: client.create_file(folder_id, name, data),
            "create_file",
        )

    Args:
        policy: Backoff settings.
        sleep: Awaitable sleep used between attempts (injectable for tests).
        jitter: Zero-argument callable returning a float in ``[0, 1)``.
        on_retry: Optional observer called with a :class:`RetryEvent`
            before every sleep.  It cannot alter control flow; exceptions it
            raises are logged and dropped.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
        on_retry: Callable[[RetryEvent], None] | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._jitter = jitter
        self._on_retry = on_retry

    def compute_delay(self, attempt: int, kind: ErrorKind) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        p = self.policy
        delay = min(p.base_delay * p.backoff_multiplier ** (attempt - 1), p.max_delay)
        if kind == ErrorKind.QUOTA:
            delay *= 1 + self._jitter() * QUOTA_JITTER
        return delay

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
    ) -> T:
        """Invoke *operation* until it succeeds or retrying is pointless.

        Raises:
            ClassifiedError: The last failure, once it is non-retryable or
                the attempt budget is spent.  ``attempts`` records how many
                invocations were made.
        """
        policy = self.policy
        stop = stop_after_attempt(policy.max_attempts)
        if policy.deadline is not None:
            stop = stop | stop_after_delay(policy.deadline)

        attempts = 0

        def _wait(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception()  # type: ignore[union-attr]
            return self.compute_delay(retry_state.attempt_number, error.kind)

        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()  # type: ignore[union-attr]
            delay = retry_state.next_action.sleep  # type: ignore[union-attr]
            logger.warning(
                "%s failed (attempt %d/%d, %s), retrying in %.2fs: %s",
                operation_name,
                retry_state.attempt_number,
                policy.max_attempts,
                error.kind.value,
                delay,
                error.message,
            )
            if self._on_retry is not None:
                event = RetryEvent(
                    operation_name=operation_name,
                    attempt=retry_state.attempt_number,
                    max_attempts=policy.max_attempts,
                    delay=delay,
                    error=error,
                )
                try:
                    self._on_retry(event)
                except Exception:
                    logger.debug("on_retry observer raised", exc_info=True)

        retrying = AsyncRetrying(
            stop=stop,
            wait=_wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    try:
                        return await operation()
                    except ClassifiedError:
                        raise
                    except Exception as exc:
                        raise classify(exc) from exc
        except ClassifiedError as error:
            error.attempts = attempts
            if not error.retryable:
                logger.info(
                    "%s failed with non-retryable %s error after %d attempt(s)",
                    operation_name,
                    error.kind.value,
                    attempts,
                )
            else:
                logger.error(
                    "%s gave up after %d attempt(s): %s",
                    operation_name,
                    attempts,
                    error.message,
                )
            raise

        # AsyncRetrying either returns from inside the loop or re-raises.
        raise RuntimeError(f"{operation_name}: retry loop exited without a result")
