import asyncio
from collections import defaultdict
from collections.abc import Callable, Coroutine, Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from workbench.logging import get_logger

type Handler[T] = Callable[[T], Coroutine[Any, Any, None]]

_logger = get_logger(__name__)


class Channel:
    """In-process event bus between the session, the tooling registry and the HTTP layer.

    publish() never blocks the publisher: each handler runs in its own task and
    a failing handler is logged and forgotten. drain() waits for in-flight
    handlers, which shutdown and tests rely on.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._inflight: set[asyncio.Task] = set()

    def subscribe[T](self, event_type: type[T], handler: Handler[T]) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe[T](self, event_type: type[T], handler: Handler[T]) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    @contextmanager
    def subscribed(self, pairs: Iterable[tuple[type, Handler]]) -> Iterator[None]:
        pairs = list(pairs)
        for event_type, handler in pairs:
            self.subscribe(event_type, handler)
        try:
            yield
        finally:
            for event_type, handler in pairs:
                self.unsubscribe(event_type, handler)

    def publish(self, event: object) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            task = asyncio.create_task(self._deliver(handler, event))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _deliver(self, handler: Handler, event: object) -> None:
        try:
            await handler(event)
        except Exception:
            _logger.exception("%s handler %s failed", type(event).__name__, handler.__qualname__)
