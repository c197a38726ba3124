"""Debouncer: coalesce rapid calls into one deferred call with the last arguments."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class Debouncer:
    """Explicit timer state for a debounced coroutine function.

    Each call cancels the previously scheduled call and schedules func with
    the new arguments after `delay` seconds. Superseded calls never run.
    Failures in func are logged; nobody is waiting on the result.
    """

    def __init__(self, delay: float, func: Callable[..., Awaitable[Any]]) -> None:
        self._delay = delay
        self._func = func
        self._handle: asyncio.TimerHandle | None = None
        self._pending: tuple[tuple, dict] | None = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._pending = (args, kwargs)
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Drop the scheduled call, if any. In-flight calls are left alone."""
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending = None

    async def flush(self) -> None:
        """Run the scheduled call now and wait for every in-flight call."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._pending is not None:
            args, kwargs = self._pending
            self._pending = None
            await self._run(args, kwargs)
        if self._running:
            await asyncio.gather(*self._running)

    def _fire(self) -> None:
        self._handle = None
        if self._pending is None:
            return
        args, kwargs = self._pending
        self._pending = None
        task = asyncio.get_running_loop().create_task(self._run(args, kwargs))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, args: tuple, kwargs: dict) -> None:
        try:
            await self._func(*args, **kwargs)
        except Exception:
            logger.exception("Debounced call to %r failed", self._func)
