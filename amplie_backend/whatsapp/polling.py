from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from .observability import Observability

InstanceKey = tuple[str, str]


class KeyedLock:
    """One asyncio.Lock per (tenant_id, instance_name).

    A lock lives while someone holds or waits for it and is dropped when the
    last user leaves.
    """

    def __init__(self) -> None:
        self._locks: dict[InstanceKey, asyncio.Lock] = {}
        self._users: dict[InstanceKey, int] = {}

    @asynccontextmanager
    async def hold(self, key: InstanceKey) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __contains__(self, key: InstanceKey) -> bool:
        return key in self._locks


class PairingPollers:
    """At most one running pairing poll per instance key."""

    def __init__(self, *, obs: Optional[Observability] = None):
        self._tasks: dict[InstanceKey, asyncio.Task] = {}
        self._obs = obs

    def start(self, key: InstanceKey, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(factory())
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._on_done(k, t))
        return task

    def get(self, key: InstanceKey) -> Optional[asyncio.Task]:
        """Running task for the key, or the last finished one (its outcome stays readable)."""
        return self._tasks.get(key)

    def is_running(self, key: InstanceKey) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def cancel(self, key: InstanceKey) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def cancel_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_done(self, key: InstanceKey, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        err = task.exception()
        if err is not None and self._obs is not None:
            self._obs.debug("whatsapp.pairing.poll_finished", tenant=key[0], instance=key[1], outcome=type(err).__name__)
