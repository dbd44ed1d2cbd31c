"""
Cadence — ProfileStore implementations and factory.

``build_store_factory`` returns a zero-argument callable producing an async
context manager that yields a ready ``ProfileStore``.  Request handlers and
background jobs each open their own scope, so a job never shares a session
with the request that scheduled it.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable

from app.config import Settings
from app.store.base import ProfileStore
from app.store.memory import InMemoryProfileStore

StoreFactory = Callable[[], AsyncContextManager[ProfileStore]]


def memory_store_factory(store: InMemoryProfileStore) -> StoreFactory:
    """Factory whose every scope yields the same shared in-memory store."""

    @asynccontextmanager
    async def _scope() -> AsyncIterator[ProfileStore]:
        yield store

    return _scope


def build_store_factory(settings: Settings) -> StoreFactory:
    if settings.uses_memory_store:
        return memory_store_factory(InMemoryProfileStore())

    from app.store.sql import sql_store_scope

    return sql_store_scope


__all__ = [
    "ProfileStore",
    "InMemoryProfileStore",
    "StoreFactory",
    "build_store_factory",
    "memory_store_factory",
]
