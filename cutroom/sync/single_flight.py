from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Collapse concurrent calls for the same key into one underlying operation.

    The first caller starts the operation and parks it in a pending cell; callers that
    arrive while it is pending await the same future and observe the same value or the
    same exception. The cell is emptied when the operation finishes, whatever the
    outcome, so a failure never leaves the key permanently busy.

    Callers await through `asyncio.shield`, so cancelling one waiter does not cancel the
    shared operation for the others.
    """

    def __init__(self) -> None:
        self._pending: Dict[Hashable, "asyncio.Future[T]"] = {}
        self.started = 0

    def in_flight(self, key: Hashable) -> bool:
        return key in self._pending

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        fut = self._pending.get(key)
        if fut is None:
            fut = asyncio.ensure_future(fn())
            self.started += 1
            self._pending[key] = fut
            fut.add_done_callback(lambda f, k=key: self._release(k, f))
        return await asyncio.shield(fut)

    async def settle(self, key: Hashable) -> None:
        """Wait for the pending operation under `key` to finish, ignoring its outcome."""
        fut = self._pending.get(key)
        if fut is not None:
            await asyncio.wait([fut])

    def _release(self, key: Hashable, fut: "asyncio.Future[T]") -> None:
        if self._pending.get(key) is fut:
            del self._pending[key]
        # Mark the exception retrieved even when every waiter was cancelled.
        if not fut.cancelled():
            fut.exception()
