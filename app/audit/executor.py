"""Audit executor interface used by the queue."""

import asyncio
import functools
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict


class AuditExecutor(ABC):
    """Runs one audit for a URL. The queue enforces the timeout."""

    @abstractmethod
    async def execute(self, url: str, options: Dict[str, Any]) -> Any:
        """Return the audit result or raise on failure."""
        ...


class FunctionExecutor(AuditExecutor):
    """Adapts a plain function into an executor.

    fn: callable(url, options) -> result
        Either a coroutine function, awaited directly, or a synchronous
        function, called in a thread executor to avoid blocking the event loop.
    """

    def __init__(self, fn: Callable[[str, Dict[str, Any]], Any]):
        self._fn = fn
        self._is_async = inspect.iscoroutinefunction(fn)

    async def execute(self, url: str, options: Dict[str, Any]) -> Any:
        if self._is_async:
            return await self._fn(url, options)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._fn, url, options))
