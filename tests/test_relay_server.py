"""Tests for the relay HTTP server."""

from __future__ import annotations

from typing import Any

import pytest
from aiohttp.test_utils import TestClient, TestServer

from hookrelay.server import build_relay_app
from hookrelay.service import RelayService
from hookrelay.settings import parse_settings
from hookrelay.shutdown import request_shutdown, reset_shutdown

from tests.factories import (
    NOW,
    FakeClock,
    FakeUpstream,
    MemoryBanStore,
    delivered,
    queued,
)

HOOK = "/api/webhooks/123/tok_abc"


def _make_service(
    upstream: FakeUpstream | None = None,
    banned: tuple[str, ...] = (),
    **overrides: Any,
) -> tuple[RelayService, FakeUpstream]:
    upstream = upstream or FakeUpstream()
    service = RelayService(
        parse_settings(overrides),
        upstream=upstream,
        ban_store=MemoryBanStore(banned),
        clock=FakeClock(),
    )
    return service, upstream


@pytest.mark.anyio
async def test_health_endpoint():
    service, _ = _make_service()
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        resp = await cl.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok", "endpoints": 0}


@pytest.mark.anyio
async def test_delivery_forwarded_returns_200():
    service, upstream = _make_service()
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        resp = await cl.post(
            HOOK,
            data=b'{"content": "hello"}',
            headers={"User-Agent": "GitHub-Hookshot/1"},
        )
        assert resp.status == 200
    assert upstream.calls == [("123", "tok_abc", b'{"content": "hello"}')]
    assert service.store.get("123").source_tag == "GitHub-Hookshot/1"


@pytest.mark.anyio
async def test_deliveries_sharing_an_id_are_sent_with_their_own_tokens():
    upstream = FakeUpstream(default=delivered(limit=5, remaining=4, reset_at=NOW + 5))
    service, _ = _make_service(upstream=upstream)
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        for token, body in (("legit-secret", b"a"), ("attacker-guess", b"b")):
            resp = await cl.post(f"/api/webhooks/123/{token}", data=body)
            assert resp.status == 200
    assert upstream.calls == [
        ("123", "legit-secret", b"a"),
        ("123", "attacker-guess", b"b"),
    ]


@pytest.mark.anyio
async def test_queued_delivery_returns_200():
    upstream = FakeUpstream(default=delivered(limit=5, remaining=0, reset_at=NOW + 5))
    service, _ = _make_service(upstream=upstream)
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        assert (await cl.post(HOOK, data=b"1")).status == 200
        assert (await cl.post(HOOK, data=b"2")).status == 200
    assert len(upstream.calls) == 1
    assert queued(service.store.get("123")) == [b"2"]


@pytest.mark.anyio
async def test_overflow_returns_429():
    upstream = FakeUpstream(default=delivered(limit=5, remaining=0, reset_at=NOW + 5))
    service, _ = _make_service(upstream=upstream, limits={"max_queue_size": 1})
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        await cl.post(HOOK, data=b"sent")
        await cl.post(HOOK, data=b"queued")
        resp = await cl.post(HOOK, data=b"dropped")
        assert resp.status == 429
        assert await resp.text() == "Error: Too many requests!"
    assert service.store.get("123").error_count == 1


@pytest.mark.anyio
async def test_banned_returns_403_without_upstream_call():
    service, upstream = _make_service(banned=("123",))
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        resp = await cl.post(HOOK, data=b"{}")
        assert resp.status == 403
    assert upstream.calls == []


@pytest.mark.anyio
async def test_oversized_body_returns_413():
    service, upstream = _make_service(server={"max_body_bytes": 1024})
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        resp = await cl.post(HOOK, data=b"x" * 2048)
        assert resp.status == 413
    assert upstream.calls == []


@pytest.mark.anyio
async def test_unsafe_path_segment_returns_404():
    service, upstream = _make_service()
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        resp = await cl.post("/api/webhooks/12.3/tok", data=b"{}")
        assert resp.status == 404
    assert upstream.calls == []


@pytest.mark.anyio
async def test_status_reports_queue_and_names():
    upstream = FakeUpstream(
        default=delivered(limit=5, remaining=0, reset_at=NOW + 5),
        names={"123": "Deploys"},
    )
    service, _ = _make_service(upstream=upstream)
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        await cl.post(HOOK, data=b"1")
        await cl.post(HOOK, data=b"2")
        first = await (await cl.get("/")).json()
        second = await (await cl.get("/")).json()
    assert first == second
    endpoint = first["endpoints"]["123"]
    assert endpoint["name"] == "Deploys"
    assert endpoint["queued"] == 1
    assert endpoint["remaining"] == 0
    assert endpoint["limit"] == 5
    assert first["counts"] == {"123": 1}
    assert first["errors"] == {"123": 0}
    assert upstream.name_lookups == ["123"]


@pytest.mark.anyio
async def test_history_endpoint():
    service, _ = _make_service()
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        await cl.post(HOOK, data=b"abc", headers={"User-Agent": "curl/8"})
        data = await (await cl.get("/history")).json()
    [entry] = data["history"]
    assert entry["identity"] == "123"
    assert entry["source"] == "curl/8"
    assert entry["size"] == 3


@pytest.mark.anyio
async def test_shutdown_rejects_new_deliveries():
    service, upstream = _make_service()
    request_shutdown()
    try:
        async with TestClient(TestServer(build_relay_app(service))) as cl:
            resp = await cl.post(HOOK, data=b"{}")
            assert resp.status == 503
    finally:
        reset_shutdown()
    assert upstream.calls == []


@pytest.mark.anyio
async def test_internal_error_returns_500():
    class ExplodingUpstream(FakeUpstream):
        async def forward(self, identity, token, payload):
            raise RuntimeError("boom")

    service, _ = _make_service(upstream=ExplodingUpstream())
    async with TestClient(TestServer(build_relay_app(service))) as cl:
        resp = await cl.post(HOOK, data=b"{}")
        assert resp.status == 500
        assert await resp.text() == "internal error"
