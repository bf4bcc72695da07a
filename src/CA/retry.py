"""
Retry policy shared by the store adapters and the page fetcher.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Tuple, Type

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .errors import TransientNetworkError, TransientStoreError


@dataclass
class RetryPolicy:
    """
    Exponential backoff with jitter, bounded by a maximum number of attempts.

    The delay before attempt n+1 is roughly base_delay * multiplier**(n-1)
    plus up to `jitter` seconds, capped at max_delay.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    jitter: float = 0.5
    max_delay: float = 30.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientStoreError, TransientNetworkError)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    @classmethod
    def none(cls) -> "RetryPolicy":
        """A policy that makes exactly one attempt."""
        return cls(max_attempts=1, base_delay=0, jitter=0)

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential_jitter(
                initial=self.base_delay,
                exp_base=self.multiplier,
                jitter=self.jitter,
                max=self.max_delay,
            ),
            retry=retry_if_exception_type(self.retry_on),
            sleep=self.sleep,
            reraise=True,
        )

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Call fn, retrying on the policy's retryable exceptions."""
        return self.retrying()(fn, *args, **kwargs)
