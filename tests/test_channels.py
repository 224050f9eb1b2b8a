import sys

import pytest

from workbench.agent.channels import ExecChannel
from workbench.agent.errors import ChannelUnavailable, DispatchError
from workbench.constants import EXEC_OUTPUT_LIMIT

# the current interpreter stands in for the codex binary; the trailing "-" lands in sys.argv


class TestExecChannel:
    @pytest.mark.asyncio
    async def test_prompt_goes_through_stdin(self):
        channel = ExecChannel(sys.executable, ["-c", "import sys; print(sys.stdin.read().upper())"])
        ready = []

        output = await channel.complete("plan my day", on_ready=lambda: ready.append(True))

        assert output.strip() == "PLAN MY DAY"
        assert ready == [True]

    @pytest.mark.asyncio
    async def test_oversized_output_fails(self):
        channel = ExecChannel(sys.executable, ["-c", f"print('x' * {EXEC_OUTPUT_LIMIT + 10})"])
        with pytest.raises(DispatchError, match="exceeded"):
            await channel.complete("hello")

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        channel = ExecChannel(sys.executable, ["-c", "import sys; sys.stderr.write('bad flag'); sys.exit(2)"])
        with pytest.raises(DispatchError, match="exited with 2: bad flag"):
            await channel.complete("hello")

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        channel = ExecChannel(str(tmp_path / "no-codex"), ["exec"])
        with pytest.raises(ChannelUnavailable):
            await channel.complete("hello")
