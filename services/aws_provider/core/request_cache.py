"""
Request Cache - in-flight deduplication of identical outbound calls.

Maps (service, method, canonical params, region) to one asyncio.Task.
Every caller sharing a key awaits the same task and gets its own deep copy
of the value.
"""

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

logger = logging.getLogger("aws_provider.request_cache")


def canonical_params(params: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(params or {}, sort_keys=True, default=str, separators=(",", ":"))


@dataclass(frozen=True)
class RequestKey:
    service: str
    method: str
    params: str
    region: Optional[str]

    @classmethod
    def build(
        cls,
        service: str,
        method: str,
        params: Optional[Mapping[str, Any]],
        region: Optional[str],
    ) -> "RequestKey":
        return cls(service, method, canonical_params(params), region)


class RequestCache:
    """
    Process-local, unbounded map of request keys to tasks.

    Note: lookup and insert happen without an intervening await, so on a
    single event loop two callers can never both start the same call.
    Failed tasks are evicted once settled; successful ones are kept for the
    lifetime of the cache.
    """

    def __init__(self):
        self._tasks: Dict[RequestKey, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, key: RequestKey) -> bool:
        return key in self._tasks

    def get_or_create(
        self, key: RequestKey, factory: Callable[[], Awaitable[Any]]
    ) -> asyncio.Task:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda done: self._evict_failed(key, done))
            logger.debug(f"Cache miss: {key.service}.{key.method} ({key.region})")
        return task

    async def fetch(self, key: RequestKey, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Await the shared task for ``key`` and return a private copy of its value.

        The shield keeps one caller's cancellation from cancelling the call
        every other caller is waiting on.
        """
        task = self.get_or_create(key, factory)
        result = await asyncio.shield(task)
        return copy.deepcopy(result)

    def _evict_failed(self, key: RequestKey, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is not None:
            if self._tasks.get(key) is task:
                del self._tasks[key]
                logger.debug(f"Evicted failed entry: {key.service}.{key.method}")

    def clear(self) -> None:
        self._tasks.clear()
