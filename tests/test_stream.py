import asyncio

import pytest

from workbench.core.stream import EventStream


class TestEventStream:
    @pytest.mark.asyncio
    async def test_delivers_in_order_then_stops(self):
        stream: EventStream[int] = EventStream()

        async def produce():
            for i in range(3):
                stream.put(i)
                await asyncio.sleep(0)
            stream.close()

        task = asyncio.create_task(produce())
        assert [item async for item in stream] == [0, 1, 2]
        await task
        assert stream.received == 3

    @pytest.mark.asyncio
    async def test_put_after_close_fails(self):
        stream: EventStream[int] = EventStream()
        stream.close()
        with pytest.raises(RuntimeError):
            stream.put(1)

    @pytest.mark.asyncio
    async def test_single_consumer(self):
        stream: EventStream[int] = EventStream()
        aiter(stream)
        with pytest.raises(RuntimeError):
            aiter(stream)
