from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_chain, wait_fixed

DEFAULT_LOOKUP_BACKOFF: tuple[float, ...] = (1.0, 1.5, 2.0, 3.0, 5.0, 8.0)


class LookupPending(Exception):
    """The looked-up value is not visible yet; try again after the next delay."""


@dataclass(frozen=True)
class RetryPolicy:
    """Table-driven retry schedule for eventually consistent reads.

    The first attempt runs immediately; attempt ``n + 1`` runs after
    ``delays[n - 1]`` seconds. ``sleep`` is injectable so tests never wait.
    """

    delays: tuple[float, ...] = DEFAULT_LOOKUP_BACKOFF
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_delays(cls, delays: Sequence[float], **kwargs) -> "RetryPolicy":
        return cls(delays=tuple(float(d) for d in delays), **kwargs)

    @property
    def max_attempts(self) -> int:
        return len(self.delays) + 1

    def retrying(self) -> AsyncRetrying:
        """Build a tenacity loop that retries on any exception.

        Exhaustion raises ``tenacity.RetryError``.
        """
        wait = wait_chain(*(wait_fixed(d) for d in self.delays)) if self.delays else wait_fixed(0)
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait,
            retry=retry_if_exception_type(Exception),
            sleep=self.sleep,
            reraise=False,
        )
