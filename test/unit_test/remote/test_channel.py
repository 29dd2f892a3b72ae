from __future__ import annotations

import asyncio
from typing import List

import pytest
import pytest_asyncio

from serverpilot_ai.core.errors import ChannelBusyError, ConnectionLostError
from serverpilot_ai.remote.channel import ChannelEvent, ChannelEventType, RemoteCommandChannel


async def _until(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def events() -> List[ChannelEvent]:
    return []


@pytest_asyncio.fixture
async def channel(session_factory, session_config, events):
    ch = RemoteCommandChannel(session_factory=session_factory, command_timeout=5.0)

    async def _listener(event: ChannelEvent) -> None:
        events.append(event)

    ch.add_listener(_listener)
    await ch.connect(session_config)
    yield ch
    await ch.disconnect()


@pytest.mark.asyncio
async def test_connect_detects_os_and_emits_connected(channel, events):
    assert channel.is_connected
    info = channel.os_info
    assert info is not None
    assert info.type == "linux"
    assert info.distribution == "Debian"
    assert info.version == "12"
    assert info.codename == "bookworm"
    assert info.architecture == "x86_64"
    assert info.hostname == "web-01"

    connected = [e for e in events if e.type == ChannelEventType.connected]
    assert len(connected) == 1
    assert connected[0].os_info == info


@pytest.mark.asyncio
async def test_connect_twice_is_rejected(channel, session_config):
    with pytest.raises(ChannelBusyError):
        await channel.connect(session_config)


@pytest.mark.asyncio
async def test_run_command_captures_output_and_exit_code(channel, fake_session):
    fake_session.replies["df -h"] = ("Filesystem Size\n/dev/sda1 20G", 0)
    fake_session.replies["false"] = ("", 1)

    ok = await channel.run_command("df -h")
    assert ok.succeeded
    assert ok.output == "Filesystem Size\n/dev/sda1 20G"

    failed = await channel.run_command("false")
    assert failed.exit_code == 1
    assert not failed.succeeded


@pytest.mark.asyncio
async def test_run_command_reassembles_split_chunks(channel, fake_session):
    fake_session.chunk_size = 3
    fake_session.replies["cat /etc/hostname"] = ("web-01.example.internal", 0)

    result = await channel.run_command("cat /etc/hostname")
    assert result.exit_code == 0
    assert result.output == "web-01.example.internal"


@pytest.mark.asyncio
async def test_run_command_streams_output_to_callback(channel, fake_session):
    fake_session.replies["seq"] = ("\n".join(str(i) for i in range(200)), 0)
    seen: List[str] = []

    async def _on_output(text: str) -> None:
        seen.append(text)

    result = await channel.run_command("seq", on_output=_on_output)
    assert result.succeeded
    assert seen
    assert "".join(seen).replace("\n", "") == result.output.replace("\n", "")


@pytest.mark.asyncio
async def test_run_command_timeout_interrupts_and_releases_lease(channel, fake_session):
    fake_session.hang.add("sleep 999")

    result = await channel.run_command("sleep 999", timeout=0.05)
    assert result.timed_out
    assert result.exit_code == -1
    assert "Command timed out after 0.05s" in result.output
    assert fake_session.interrupts == 1
    assert channel.lease_owner is None


@pytest.mark.asyncio
async def test_timeout_waits_for_shell_to_answer_before_next_command(channel, fake_session):
    fake_session.hang.add("sleep 999")
    fake_session.replies["echo after"] = ("after", 0)

    await channel.run_command("sleep 999", timeout=0.05)
    assert fake_session.commands[-2:] == ["sleep 999", ":"]

    result = await channel.run_command("echo after")
    assert result.output == "after"
    assert result.exit_code == 0


@pytest.mark.asyncio
async def test_timeout_still_returns_when_shell_stays_silent(session_factory, session_config, fake_session):
    ch = RemoteCommandChannel(session_factory=session_factory, resync_timeout=0.05)
    await ch.connect(session_config)
    fake_session.hang.update({"sleep 999", ":"})

    result = await ch.run_command("sleep 999", timeout=0.05)

    assert result.timed_out
    assert ch.lease_owner is None
    await ch.disconnect()


@pytest.mark.asyncio
async def test_cancelling_run_command_interrupts_and_releases_lease(channel, fake_session):
    fake_session.hang.add("tail -f /var/log/syslog")
    task = asyncio.create_task(channel.run_command("tail -f /var/log/syslog"))
    await _until(lambda: channel.lease_owner is not None)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert fake_session.interrupts == 1
    assert channel.lease_owner is None


@pytest.mark.asyncio
async def test_interactive_write_rejected_while_leased(channel, fake_session):
    fake_session.hang.add("sleep 999")
    task = asyncio.create_task(channel.run_command("sleep 999", timeout=5.0))
    await _until(lambda: channel.lease_owner is not None)

    with pytest.raises(ChannelBusyError):
        await channel.write("ls\n")

    task.cancel()
    await asyncio.wait({task})

    await channel.write("ls\n")
    assert fake_session.writes[-1] == b"ls\n"


@pytest.mark.asyncio
async def test_interactive_output_is_forwarded_as_data_events(channel, events):
    await channel.write("whoami\n")
    await _until(lambda: any(e.type == ChannelEventType.data and "whoami" in (e.data or "") for e in events))


@pytest.mark.asyncio
async def test_resize_reaches_session(channel, fake_session):
    await channel.resize(200, 50)
    assert fake_session.geometry == (200, 50)


@pytest.mark.asyncio
async def test_connection_loss_fails_outstanding_command(channel, fake_session, events):
    fake_session.hang.add("sleep 999")
    task = asyncio.create_task(channel.run_command("sleep 999", timeout=5.0))
    await _until(lambda: channel.lease_owner is not None)

    fake_session.drop()

    with pytest.raises(ConnectionLostError):
        await task
    await _until(lambda: any(e.type == ChannelEventType.disconnected for e in events))

    types = [e.type for e in events]
    assert types.index(ChannelEventType.error) < types.index(ChannelEventType.disconnected)
    assert not channel.is_connected


@pytest.mark.asyncio
async def test_disconnect_emits_disconnected(channel, events):
    await channel.disconnect()
    assert not channel.is_connected
    assert events[-1].type == ChannelEventType.disconnected


@pytest.mark.asyncio
async def test_write_without_session_raises(session_factory):
    ch = RemoteCommandChannel(session_factory=session_factory)
    with pytest.raises(ConnectionLostError):
        await ch.write("ls\n")
