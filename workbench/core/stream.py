import asyncio
from collections import deque


class EventStream[T]:
    """
    Per-run, single-consumer async queue.

    The producer (the dispatcher or executor) calls put() and finally close();
    the consumer drains it with `async for`. Items are delivered in put() order.
    """

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._waiter: asyncio.Future[None] | None = None
        self._closed = False
        self._iterating = False
        self.received = 0

    def put(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("Cannot put to a closed stream")
        self._items.append(item)
        self.received += 1
        self._wake()

    def close(self) -> None:
        self._closed = True
        self._wake()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._items)

    def _wake(self) -> None:
        if self._waiter and not self._waiter.done():
            self._waiter.set_result(None)

    def __aiter__(self):
        if self._iterating:
            raise RuntimeError("Stream can only be iterated once")
        self._iterating = True
        return self

    async def __anext__(self) -> T:
        while not self._items:
            if self._closed:
                raise StopAsyncIteration
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
        return self._items.popleft()
