"""Bounded retry executor for fallible async operations.

Every retry is announced through ``on_retry`` before the delay, carrying the
1-based retry number and the configured maximum, so the UI can show that a
retry is in flight. Attempt bookkeeping is returned as a ``RetryOutcome``
value instead of being hidden in recursion depth.
"""

import asyncio
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_incrementing,
)

from wfp.errors import EmptyResponseError, TransportError

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (TransportError, EmptyResponseError)


@dataclass(frozen=True)
class RetryNotice:
    attempt: int  # 1-based number of the retry about to happen
    max_retries: int
    delay: float
    error: BaseException


@dataclass
class RetryOutcome:
    value: Any = None
    error: BaseException | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class RetryPolicy:
    """Run an operation up to ``max_attempts`` times with fixed or linear delays."""

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        max_attempts: int,
        base_delay: float = 1.0,
        *,
        backoff: str = "fixed",
        wait: Callable | None = None,
        on_retry: Callable[[RetryNotice], None] | None = None,
        retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    ) -> RetryOutcome:
        """Invoke ``operation`` until it succeeds or ``max_attempts`` calls failed.

        Errors outside ``retry_on`` propagate immediately. Retryable errors
        never escape: the terminal one is returned in the outcome.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")

        if wait is None:
            if backoff == "linear":
                wait = wait_incrementing(start=base_delay, increment=base_delay)
            else:
                wait = wait_fixed(base_delay)

        def _announce(retry_state) -> None:
            error = retry_state.outcome.exception()
            delay = retry_state.next_action.sleep
            print(
                f"[WFP] Attempt {retry_state.attempt_number}/{max_attempts} failed: "
                f"{error!r}. Retrying in {delay:.0f}s...",
                file=sys.stderr,
            )
            if on_retry is not None:
                on_retry(RetryNotice(
                    attempt=retry_state.attempt_number,
                    max_retries=max_attempts - 1,
                    delay=delay,
                    error=error,
                ))

        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait,
            retry=retry_if_exception_type(retry_on),
            before_sleep=_announce,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    value = await operation()
        except retry_on as exc:
            return RetryOutcome(error=exc, attempts=attempts)
        return RetryOutcome(value=value, attempts=attempts)
