"""Per-node retry policy for provider calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from infralayer.config.settings import Settings
from infralayer.core.errors import ProviderFatalError, ProviderTransientError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient provider errors.

    Delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)`` capped at
    ``max_delay``, plus uniform jitter in ``[0, jitter]``. ``sleep`` is
    injectable so tests can run with a deterministic clock.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        )

    def _wait(self) -> Any:
        wait = wait_exponential(multiplier=self.base_delay, max=self.max_delay)
        if self.jitter > 0:
            wait = wait + wait_random(0, self.jitter)
        return wait

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        description: str = "",
        on_attempt: Callable[[int], None] | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``func`` retrying transient errors.

        Raises ``ProviderFatalError`` once every attempt is used up; any
        non-transient error propagates from the first attempt.
        """

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "retry_scheduled",
                target=description,
                attempt=state.attempt_number,
                max_attempts=self.max_attempts,
                delay=round(state.next_action.sleep, 3) if state.next_action else None,
                error=str(exc),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception_type(ProviderTransientError),
            sleep=self.sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    if on_attempt is not None:
                        on_attempt(attempt.retry_state.attempt_number)
                    result = await func(*args, **kwargs)
        except ProviderTransientError as exc:
            raise ProviderFatalError(
                f"{description or 'provider call'} failed after "
                f"{self.max_attempts} attempts: {exc.message}",
                {"attempts": self.max_attempts},
            ) from exc
        return result
