import asyncio
from collections.abc import Coroutine, Hashable
from typing import Any

from sanic.log import logger


class Worker:
    """Runs submitted coroutines in the background with bounded concurrency.

    Work sharing a key runs one at a time, in submission order. At most
    ``max_concurrency`` pieces of work run at once overall.
    """

    def __init__(self, max_concurrency: int = 8):
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, key: Hashable, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        # Take the key's lock slot now so that ordering follows submission
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1

        task = asyncio.create_task(self._run(key, lock, coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda _: self._release(key))
        return task

    def _release(self, key: Hashable) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    async def _run(self, key: Hashable, lock: asyncio.Lock, coro: Coroutine[Any, Any, Any]):
        try:
            async with lock:
                async with self._semaphore:
                    return await coro
        except Exception:
            logger.exception("Unhandled error while processing %s", key)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for submitted work to finish. Returns False on timeout."""
        if not self._tasks:
            return True
        logger.info("Waiting for %d pending pipeline runs", len(self._tasks))
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("%d pipeline runs still pending at shutdown", len(pending))
            return False
        return True
