"""Bounded fan-out over async workers.

``for_each_limit`` runs a worker over every item with at most ``limit``
invocations in flight. It keeps a fixed pool of runner tasks pulling from a
shared iterator rather than spawning one task per item, so memory stays flat
for very long inputs (including async iterators such as the record reader).

On the first failure no further items are started, the in-flight ones are
allowed to finish, and the first exception is raised once everything has
settled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Awaitable, Callable, Iterable
from typing import Any, TypeVar

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class _ItemSource:
    """Hands out items from a sync or async iterable to concurrent runners."""

    def __init__(self, items: Iterable[Any] | AsyncIterable[Any]) -> None:
        if isinstance(items, AsyncIterable):
            self._async_iterator = aiter(items)
            self._iterator = None
        else:
            self._async_iterator = None
            self._iterator = iter(items)
        self._lock = asyncio.Lock()
        self._exhausted = False

    async def next(self) -> tuple[bool, Any]:
        if self._exhausted:
            return False, None
        if self._iterator is not None:
            try:
                return True, next(self._iterator)
            except StopIteration:
                self._exhausted = True
                return False, None
        # Async generators cannot be advanced by two runners at once.
        async with self._lock:
            if self._exhausted:
                return False, None
            try:
                return True, await anext(self._async_iterator)
            except StopAsyncIteration:
                self._exhausted = True
                return False, None


async def for_each_limit(
    items: Iterable[T] | AsyncIterable[T],
    limit: int,
    worker: Callable[[T], Awaitable[Any]],
    *,
    on_complete: Callable[[], None] | None = None,
) -> int:
    """Run ``worker`` over ``items`` with at most ``limit`` concurrent calls.

    ``on_complete`` is called once per finished item, whether it succeeded or
    failed. Returns the number of items processed.
    """
    if limit < 1:
        msg = f"Concurrency limit must be at least 1, got {limit}"
        raise ValueError(msg)

    source = _ItemSource(items)
    errors: list[BaseException] = []
    processed = 0

    async def run() -> None:
        nonlocal processed
        while not errors:
            try:
                has_item, item = await source.next()
            except Exception as e:  # noqa: BLE001 - re-raised after the pool drains
                logger.debug(f"Item source failed, draining in-flight items: {e!r}")
                errors.append(e)
                return
            if not has_item or errors:
                return
            try:
                await worker(item)
            except Exception as e:  # noqa: BLE001 - re-raised after the pool drains
                if not errors:
                    logger.debug(f"Worker failed, draining in-flight items: {e!r}")
                errors.append(e)
            finally:
                processed += 1
                if on_complete is not None:
                    on_complete()

    await asyncio.gather(*(run() for _ in range(limit)))
    if errors:
        raise errors[0]
    return processed


async def map_limit(
    items: Iterable[T],
    limit: int,
    worker: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Like ``for_each_limit`` but collects results in input order."""
    indexed = list(enumerate(items))
    results: list[Any] = [None] * len(indexed)

    async def run(entry: tuple[int, T]) -> None:
        index, item = entry
        results[index] = await worker(item)

    await for_each_limit(indexed, limit, run)
    return results
