import asyncio
import json

import pytest
from httpx import AsyncClient

from serverpilot_ai.remote.session import SessionConfig
from serverpilot_ai.server.api.v1 import session

pytestmark = pytest.mark.asyncio

BASE = "http://localhost/api/v1/session"


async def test_status_before_connect(client: AsyncClient):
    response = await client.get(f"{BASE}/status")
    assert response.status_code == 200
    assert response.json() == {"connected": False, "os_info": None, "busy": False}


async def test_connect_local_shell(client: AsyncClient, fake_channel):
    response = await client.post(f"{BASE}/connect", json={"local": True, "cols": 100, "rows": 30})

    assert response.status_code == 200
    data = response.json()
    assert data["connected"] is True
    assert data["os_info"]["distribution"] == "Ubuntu"
    assert fake_channel.config.local is True
    assert fake_channel.config.host == "localhost"
    assert (fake_channel.config.cols, fake_channel.config.rows) == (100, 30)


async def test_connect_ssh_options_are_forwarded(client: AsyncClient, fake_channel):
    body = {
        "host": "10.0.0.12",
        "port": 2222,
        "username": "deploy",
        "identity_file": "/home/deploy/.ssh/id_ed25519",
        "ssh_options": ["StrictHostKeyChecking=accept-new"],
    }
    response = await client.post(f"{BASE}/connect", json=body)

    assert response.status_code == 200
    config = fake_channel.config
    assert config.host == "10.0.0.12"
    assert config.port == 2222
    assert config.username == "deploy"
    assert config.ssh_options == ["StrictHostKeyChecking=accept-new"]


async def test_connect_twice_conflicts(client: AsyncClient):
    await client.post(f"{BASE}/connect", json={"local": True})
    response = await client.post(f"{BASE}/connect", json={"local": True})

    assert response.status_code == 409
    assert response.json()["error_type"] == "ChannelBusyError"


async def test_write_and_resize(client: AsyncClient, fake_channel):
    await client.post(f"{BASE}/connect", json={"local": True})

    write = await client.post(f"{BASE}/write", json={"data": "uptime\n"})
    resize = await client.post(f"{BASE}/resize", json={"cols": 200, "rows": 50})

    assert write.status_code == 204
    assert resize.status_code == 204
    assert fake_channel.writes == ["uptime\n"]
    assert fake_channel.geometry == (200, 50)


async def test_write_while_plan_command_runs_conflicts(client: AsyncClient, fake_channel):
    await client.post(f"{BASE}/connect", json={"local": True})
    fake_channel.lease_owner = "marker"

    status = await client.get(f"{BASE}/status")
    response = await client.post(f"{BASE}/write", json={"data": "ls\n"})

    assert status.json()["busy"] is True
    assert response.status_code == 409
    assert fake_channel.writes == []


async def test_write_without_session(client: AsyncClient):
    response = await client.post(f"{BASE}/write", json={"data": "ls\n"})
    assert response.status_code == 409
    assert response.json()["error_type"] == "ConnectionLostError"


async def test_resize_rejects_zero_geometry(client: AsyncClient):
    response = await client.post(f"{BASE}/resize", json={"cols": 0, "rows": 24})
    assert response.status_code == 422


async def test_disconnect(client: AsyncClient, fake_channel):
    await client.post(f"{BASE}/connect", json={"local": True})
    response = await client.post(f"{BASE}/disconnect")

    assert response.status_code == 200
    assert response.json()["connected"] is False
    assert not fake_channel.is_connected


async def test_event_stream_forwards_channel_events(workspace, fake_channel, mock_request):
    response = await session.stream_session_events(mock_request, workspace)
    events = response.body_iterator.__aiter__()
    first = asyncio.ensure_future(events.__anext__())
    while workspace.session_events.subscriber_count == 0:
        await asyncio.sleep(0.005)

    await fake_channel.connect(SessionConfig(host="localhost", local=True))
    message = await asyncio.wait_for(first, 2.0)
    await events.aclose()

    assert message["event"] == "connected"
    data = json.loads(message["data"])
    assert data["type"] == "connected"
    assert data["os_info"]["codename"] == "jammy"


async def test_event_stream_stops_on_client_disconnect(workspace, fake_channel, mock_request):
    mock_request.is_disconnected.return_value = True
    response = await session.stream_session_events(mock_request, workspace)
    collected = []

    async def _consume():
        async for message in response.body_iterator:
            collected.append(message)

    consumer = asyncio.ensure_future(_consume())
    while workspace.session_events.subscriber_count == 0:
        await asyncio.sleep(0.005)
    await fake_channel.disconnect()
    await asyncio.wait_for(consumer, 2.0)

    assert collected == []
