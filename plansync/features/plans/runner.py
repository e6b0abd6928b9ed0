"""
Bounded execution of blocking store calls.

Each call runs in a worker thread and is awaited with a timeout, so one slow
backend path cannot stall the whole cascade. Cancelling the awaiting task stops
waiting; a write the thread already committed is not rolled back.
"""
import asyncio
from typing import Any, Callable, Optional, TypeVar

from plansync.features.plans.store import StoreTimeoutError

T = TypeVar("T")


class StoreCallRunner:
    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        call = asyncio.to_thread(fn, *args, **kwargs)
        if self.timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            name = getattr(fn, "__name__", "store call")
            raise StoreTimeoutError(f"{name} exceeded {self.timeout}s") from exc
