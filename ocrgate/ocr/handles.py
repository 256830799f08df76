from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)


class HandleCache:
    """Keyed cache of expensive handles with single-flight initialization.

    The first caller for a key builds the handle while holding that key's
    lock; concurrent callers for the same key wait and reuse the result.
    Failed builds are not cached, so the next caller retries.
    """

    def __init__(self, name: str = "handles") -> None:
        self._name = name
        self._handles: dict[Hashable, Any] = {}
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def peek(self, key: Hashable) -> Any | None:
        return self._handles.get(key)

    def keys(self) -> list[Hashable]:
        return list(self._handles)

    async def get_or_create(
        self,
        key: Hashable,
        build: Callable[[], Any | Awaitable[Any]],
    ) -> Any:
        if key in self._handles:
            return self._handles[key]

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another task may have finished building while we waited
            if key in self._handles:
                return self._handles[key]
            handle = build()
            if inspect.isawaitable(handle):
                handle = await handle
            self._handles[key] = handle
            logger.debug("handle_created", extra={"cache": self._name, "key": str(key)})
            return handle

    async def clear(
        self,
        release: Callable[[Any], Any | Awaitable[Any]] | None = None,
    ) -> None:
        """Drop every handle, calling *release* on each. Safe on an empty cache.

        Each key's lock is taken before its handle is dropped, so a build
        that is still running finishes first and its handle is released
        here too. Locks are kept so later callers stay single-flight.
        """
        handles = []
        for key, lock in list(self._locks.items()):
            async with lock:
                if key in self._handles:
                    handles.append((key, self._handles.pop(key)))
        if release is None:
            return
        for key, handle in handles:
            try:
                outcome = release(handle)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.warning(
                    "handle_release_failed",
                    extra={"cache": self._name, "key": str(key), "error": str(exc)},
                )
