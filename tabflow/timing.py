# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Clock abstraction and retry helper.

Every wait in tabflow (debounce, poll interval, retry delay, sync
scheduling) goes through a Clock so tests can drive virtual time.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class Clock(Protocol):
    """Monotonic time source with an awaitable sleep (seconds)."""

    def now(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Clock backed by time.monotonic and asyncio.sleep."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


_default_clock: Optional[SystemClock] = None


def get_default_clock() -> SystemClock:
    """Get the shared system clock."""
    global _default_clock
    if _default_clock is None:
        _default_clock = SystemClock()
    return _default_clock


async def with_retry(
    action: Callable[[], Awaitable[T]],
    *,
    retries: int,
    delay_ms: float,
    clock: Clock,
    description: str = "operation",
    log: Optional[logging.Logger] = None,
) -> T:
    """Run an async action, retrying on failure with a fixed delay.

    Args:
        action: Zero-argument coroutine factory
        retries: Number of retries after the first attempt
        delay_ms: Fixed delay between attempts
        clock: Clock used for the delay
        description: Label used in log messages
        log: Logger override

    Returns:
        The action's result

    Raises:
        The last exception once retries are exhausted
    """
    log = log or logger
    attempt = 0
    while True:
        try:
            return await action()
        except Exception as e:
            attempt += 1
            if attempt > retries:
                log.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            log.warning(f"{description} failed (attempt {attempt}/{retries + 1}): {e}")
            await clock.sleep(delay_ms / 1000)
