"""Fire-and-forget message ports connecting isolated execution contexts."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, List, Set

log = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


class ContextInvalidatedError(RuntimeError):
    """Raised when posting to a port whose owning context has gone away."""


class MessagePort:
    """Asynchronous mailbox with per-port FIFO delivery and no acknowledgement.

    ``post`` never runs listeners inline: every delivery is scheduled on the
    running loop with ``call_soon`` so the sender cannot observe the receiver
    and ordering is only guaranteed between messages of the same port.
    Coroutine listeners are wrapped into tasks.  A listener failing is logged
    and does not affect other listeners or the sender.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def post(self, message: Any) -> None:
        if self._closed:
            raise ContextInvalidatedError(f"port '{self.name}' is closed")
        if not self._listeners:
            log.debug("Dropping message on port %s: no listeners", self.name)
            return
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners):
            loop.call_soon(self._deliver, listener, message)

    def close(self) -> None:
        self._closed = True
        self._listeners.clear()
        for task in list(self._tasks):
            task.cancel()

    async def drain(self) -> None:
        """Wait until every scheduled delivery on this port has finished."""

        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    def _deliver(self, listener: Listener, message: Any) -> None:
        if self._closed:
            return
        try:
            result = listener(message)
        except Exception:
            log.exception("Listener on port %s failed", self.name)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Async listener on port %s failed: %s", self.name, exc, exc_info=exc)
