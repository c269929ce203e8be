"""Awaitable facade over the blocking Repository."""
import asyncio
import functools
from typing import Any

from taskflow.services.repository import Repository


class AsyncRepository:
    """
    Expose every Repository operation as a coroutine run in a worker thread.

    Each call owns its transaction inside the worker. Cancelling the awaiting
    task does not interrupt the worker, so the transaction still commits or
    rolls back as a whole and no partial state becomes visible.
    """

    def __init__(self, repository: Repository):
        self.repository = repository

    @property
    def manager(self):
        return self.repository.manager

    @property
    def metrics(self):
        return self.repository.metrics

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        attribute = getattr(self.repository, name)
        if not callable(attribute):
            return attribute

        @functools.wraps(attribute)
        async def call_in_thread(*args, **kwargs):
            return await asyncio.to_thread(attribute, *args, **kwargs)

        return call_in_thread
