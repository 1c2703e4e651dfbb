from dataclasses import dataclass
from typing import Tuple, Type

from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from openbook.errors import RemoteFetchError


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff shared by idempotent reads and confirmation polling.

    Attempt ``n`` waits ``base_delay * multiplier ** (n - 1)`` seconds, capped at
    ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    def retrying(
        self,
        retry_on: Tuple[Type[BaseException], ...] = (RemoteFetchError,),
        max_attempts: int = None,
    ) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max_attempts or self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay, exp_base=self.multiplier, max=self.max_delay
            ),
            retry=retry_if_exception_type(retry_on),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def call(self, fn, *args, retry_on=(RemoteFetchError,), **kwargs):
        async for attempt in self.retrying(retry_on):
            with attempt:
                return await fn(*args, **kwargs)


def _log_retry(retry_state):
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.debug(
        "Retrying {} (attempt {}): {}",
        getattr(retry_state.fn, "__name__", "call"),
        retry_state.attempt_number,
        exc,
    )
