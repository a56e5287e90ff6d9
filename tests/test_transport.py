from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from pystatesync import HttpTransport, StateStore, StateStoreConfig, SyncOrchestrator, SyncStatus
from pystatesync.exceptions import TransportError
from pystatesync.models.sync import BatchReply, SyncChange

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


async def _start(handler: Handler, path: str = "/sync/batch") -> TestServer:
    app = web.Application()
    app.router.add_post(path, handler)
    server = TestServer(app)
    await server.start_server()
    return server


def _change(key: str, value: Any, version: int = 1) -> SyncChange:
    return SyncChange(key=key, value=value, version=version, timestamp=datetime(2026, 1, 1, tzinfo=UTC))


@pytest.mark.asyncio
async def test_send_batch_posts_changes_and_parses_reply() -> None:
    received: list[dict[str, Any]] = []

    async def handler(request: web.Request) -> web.Response:
        received.append(await request.json())
        assert request.headers["x-api-key"] == "k"
        return web.json_response(
            {
                "success": ["a"],
                "conflicts": [{"key": "b", "serverValue": 1, "clientValue": 2, "serverTimestamp": 1767225600}],
                "errors": [],
            }
        )

    server = await _start(handler)
    try:
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(str(server.make_url("/")), session, headers={"x-api-key": "k"})
            reply = await transport.send_batch([_change("a", {"x": 1}), _change("b", 2, version=2)])
    finally:
        await server.close()

    assert isinstance(reply, BatchReply)
    assert reply.success == ["a"]
    assert reply.conflicts[0].key == "b"
    assert reply.conflicts[0].server_value == 1
    assert reply.conflicts[0].server_timestamp == datetime(2026, 1, 1, tzinfo=UTC)
    changes = received[0]["changes"]
    assert [change["key"] for change in changes] == ["a", "b"]
    assert changes[0]["value"] == {"x": 1}
    assert changes[1]["version"] == 2
    assert changes[0]["source"] == "client"


@pytest.mark.asyncio
async def test_non_200_raises_transport_error() -> None:
    async def handler(request: web.Request) -> web.Response:
        return web.Response(status=503, text="maintenance")

    server = await _start(handler)
    try:
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(str(server.make_url("/")), session)
            with pytest.raises(TransportError) as excinfo:
                await transport.send_batch([_change("a", 1)])
    finally:
        await server.close()

    assert excinfo.value.status_code == 503
    assert excinfo.value.endpoint == "/sync/batch"
    assert "maintenance" in str(excinfo.value)


@pytest.mark.asyncio
async def test_invalid_json_raises_transport_error() -> None:
    async def handler(request: web.Request) -> web.Response:
        return web.Response(text="not json")

    server = await _start(handler)
    try:
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(str(server.make_url("/")), session)
            with pytest.raises(TransportError, match="Invalid JSON"):
                await transport.send_batch([_change("a", 1)])
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_non_object_reply_raises_transport_error() -> None:
    async def handler(request: web.Request) -> web.Response:
        return web.json_response([1, 2])

    server = await _start(handler)
    try:
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(str(server.make_url("/")), session)
            with pytest.raises(TransportError, match="JSON object"):
                await transport.send_batch([_change("a", 1)])
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_connection_error_raises_transport_error() -> None:
    async def handler(request: web.Request) -> web.Response:
        return web.json_response({})

    server = await _start(handler)
    base_url = str(server.make_url("/"))
    await server.close()

    async with aiohttp.ClientSession() as session:
        transport = HttpTransport(base_url, session)
        with pytest.raises(TransportError) as excinfo:
            await transport.send_batch([_change("a", 1)])

    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, aiohttp.ClientError)


@pytest.mark.asyncio
async def test_orchestrator_over_http() -> None:
    batches: list[list[dict[str, Any]]] = []

    async def handler(request: web.Request) -> web.Response:
        body = await request.json()
        batches.append(body["changes"])
        return web.json_response({"success": [change["key"] for change in body["changes"]]})

    server = await _start(handler, path="/api/sync")
    try:
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(str(server.make_url("/")), session, endpoint="/api/sync")
            orch = SyncOrchestrator(transport, state_store=StateStore(StateStoreConfig(auto_sync=False)))
            orch.state_store.set_state("a", [1, 2])
            report = await orch.sync()
    finally:
        await server.close()

    assert report is not None
    assert report.status == SyncStatus.SUCCESS
    assert report.success == ["a"]
    assert batches[0][0]["value"] == [1, 2]
    assert batches[0][0]["delta"] is None
