"""
A generic, time-budgeted retry loop.

The caller provides three functions:

- the work, an async callable performing one attempt; it either returns a
  result or raises;
- the classifier, which maps the outcome of an attempt (``None`` on success,
  the raised exception otherwise) to an :class:`Action`;
- the backoff, which computes the next delay from the previous one.

Delays are in seconds. The sleep function is injectable so that tests do not
have to wait.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable

from status_relay.log import logger


class Action(Enum):
    SUCCESS = "success"
    HARD_FAIL = "hard-fail"
    SOFT_FAIL = "soft-fail"


BackoffFn = Callable[[bool, float, float, BaseException | None], float]
ClassifierFn = Callable[[BaseException | None], Action]
WorkFn = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]


def constant_backoff(
    first: bool, previous: float, limit: float, err: BaseException | None
) -> float:
    return previous


def exponential_backoff(
    first: bool, previous: float, limit: float, err: BaseException | None
) -> float:
    if first:
        return previous
    return min(2 * previous, limit)


def simple_classifier(err: BaseException | None) -> Action:
    if err is not None:
        return Action.SOFT_FAIL
    return Action.SUCCESS


class Retry:
    def __init__(
        self,
        up_to: float,
        first_delay: float,
        backoff_limit: float,
        sleep: SleepFn | None = None,
    ):
        if first_delay <= 0:
            raise ValueError("first_delay must be positive")
        if backoff_limit <= 0:
            raise ValueError("backoff_limit must be positive")
        self.up_to = up_to
        self.first_delay = first_delay
        self.backoff_limit = backoff_limit
        self.sleep = sleep if sleep is not None else asyncio.sleep

    async def do(
        self, backoff: BackoffFn, classifier: ClassifierFn, work: WorkFn
    ) -> Any:
        delay = self.first_delay
        total_delay = 0.0

        attempt = 1
        while True:
            result = None
            error: Exception | None = None
            try:
                result = await work()
            except Exception as e:
                error = e

            action = classifier(error)
            if action is Action.SUCCESS:
                logger.info(
                    "retry: success: attempt=%d total_delay=%.1fs", attempt, total_delay
                )
                return result
            if action is Action.HARD_FAIL:
                assert error is not None
                raise error

            assert error is not None
            delay = backoff(attempt == 1, delay, self.backoff_limit, error)
            if total_delay + delay > self.up_to:
                logger.error(
                    "retry: would wait for too long: attempt=%d delay=%.1fs "
                    "total_delay=%.1fs up_to=%.1fs",
                    attempt,
                    delay,
                    total_delay + delay,
                    self.up_to,
                )
                raise error
            total_delay += delay
            logger.info(
                "retry: waiting: attempt=%d delay=%.1fs total_delay=%.1fs",
                attempt,
                delay,
                total_delay,
            )
            await self.sleep(delay)
            attempt += 1
