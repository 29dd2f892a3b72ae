from __future__ import annotations

import asyncio
import os
import sys
from typing import List

import pytest
import pytest_asyncio

from serverpilot_ai.remote.channel import ChannelEvent, ChannelEventType, RemoteCommandChannel
from serverpilot_ai.remote.session import SessionConfig, SubprocessSession

pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or not os.path.exists("/bin/sh"),
    reason="needs a POSIX /bin/sh",
)


@pytest.fixture
def data_events() -> List[str]:
    return []


@pytest_asyncio.fixture
async def local_channel(data_events):
    ch = RemoteCommandChannel(session_factory=SubprocessSession, command_timeout=10.0)

    async def _listener(event: ChannelEvent) -> None:
        if event.type is ChannelEventType.data and event.data:
            data_events.append(event.data)

    ch.add_listener(_listener)
    await ch.connect(SessionConfig(host="localhost", local=True))
    yield ch
    await ch.disconnect()


@pytest.mark.asyncio
async def test_local_shell_runs_commands_and_reports_exit_status(local_channel):
    result = await local_channel.run_command("echo hi")
    assert result.output == "hi"
    assert result.exit_code == 0

    result = await local_channel.run_command("sh -c 'exit 3'")
    assert result.exit_code == 3
    assert local_channel.os_info is not None


@pytest.mark.asyncio
async def test_local_shell_recovers_after_timeout(local_channel):
    result = await local_channel.run_command("sleep 30", timeout=0.5)
    assert result.timed_out
    assert result.exit_code == -1

    result = await local_channel.run_command("echo after", timeout=5.0)
    assert result.output == "after"
    assert result.exit_code == 0
    assert local_channel.is_connected


@pytest.mark.asyncio
async def test_local_shell_recovers_after_cancel(local_channel, data_events):
    task = asyncio.create_task(local_channel.run_command("echo started; sleep 30"))

    async def _started() -> None:
        while not any("started" in chunk for chunk in data_events):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_started(), 5.0)
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert local_channel.lease_owner is None

    result = await local_channel.run_command("echo after", timeout=5.0)
    assert result.output == "after"
    assert result.exit_code == 0


@pytest.mark.asyncio
async def test_local_shell_closes_on_disconnect():
    session = SubprocessSession(SessionConfig(host="localhost", local=True))
    await session.start()
    assert session.is_open

    await session.close()

    assert not session.is_open
