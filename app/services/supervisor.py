from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable


log = logging.getLogger(__name__)


class TaskSupervisor:
    """
    Keeps at most one asyncio task per key.

    All bookkeeping happens synchronously between awaits, which makes the
    lookup-or-create in start() atomic on a single event loop.
    """

    def __init__(self, name: str = "supervisor"):
        self._name = name
        self._tasks: dict[str, asyncio.Task] = {}

    def active(self) -> list[str]:
        return list(self._tasks)

    def start(self, key: str, factory: Callable[[], Awaitable[None]]) -> bool:
        """Start factory() under key unless a task for key is already running."""
        if key in self._tasks:
            return False
        task = asyncio.create_task(factory(), name=f"{self._name}:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, key=key: self._on_done(key, t))
        return True

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            log.info("%s: task %s cancelled", self._name, key)
            return
        exc = task.exception()
        if exc is not None:
            log.error("%s: task %s crashed", self._name, key, exc_info=exc)

    async def cancel(self, key: str) -> bool:
        task = self._tasks.get(key)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def wait(self, keys: list[str], *, timeout: float | None = None) -> list[str]:
        """Wait for the tasks under keys; returns the keys still running after timeout."""
        tasks = {self._tasks[k]: k for k in keys if k in self._tasks}
        if not tasks:
            return []
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return [tasks[t] for t in pending]
