import pytest

from workbench.channel import Channel
from workbench.events.internal import DataChanged, ToolingChanged


class TestChannel:
    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_others(self):
        channel = Channel()
        seen = []

        async def broken(event: DataChanged) -> None:
            raise RuntimeError("boom")

        async def ok(event: DataChanged) -> None:
            seen.append(event.batch_id)

        channel.subscribe(DataChanged, broken)
        channel.subscribe(DataChanged, ok)
        channel.publish(DataChanged(batch_id="b1", kinds=("todo",)))
        await channel.drain()

        assert seen == ["b1"]

    @pytest.mark.asyncio
    async def test_dispatch_is_by_exact_type(self):
        channel = Channel()
        seen = []

        async def on_tooling(event: ToolingChanged) -> None:
            seen.append(event)

        channel.subscribe(ToolingChanged, on_tooling)
        channel.publish(DataChanged(batch_id="b1"))
        await channel.drain()

        assert seen == []

    @pytest.mark.asyncio
    async def test_subscribed_scope(self):
        channel = Channel()
        seen = []

        async def on_change(event: DataChanged) -> None:
            seen.append(event.batch_id)

        with channel.subscribed([(DataChanged, on_change)]):
            channel.publish(DataChanged(batch_id="inside"))
            await channel.drain()
        channel.publish(DataChanged(batch_id="outside"))
        await channel.drain()

        assert seen == ["inside"]
