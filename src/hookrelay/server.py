"""Inbound delivery HTTP server (aiohttp-based, runs as an anyio task)."""

from __future__ import annotations

import json
import re

import anyio
from aiohttp import web

from .admission import RejectReason
from .logging import get_logger
from .service import RelayService
from .shutdown import is_shutting_down, watch_signals

logger = get_logger(__name__)

_SAFE_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def _json_response(data: object, status: int = 200) -> web.Response:
    return web.Response(
        status=status,
        text=json.dumps(data),
        content_type="application/json",
    )


def build_relay_app(service: RelayService) -> web.Application:
    """Build the aiohttp application for the relay."""
    max_body = service.settings.server.max_body_bytes

    async def handle_health(request: web.Request) -> web.Response:
        return _json_response({"status": "ok", "endpoints": len(service.store)})

    async def handle_status(request: web.Request) -> web.Response:
        resolve = request.query.get("names", "1") != "0"
        status = await service.status(resolve_names=resolve)
        return _json_response(status.as_dict())

    async def handle_history(request: web.Request) -> web.Response:
        return _json_response({"history": service.history.as_dicts()})

    async def handle_delivery(request: web.Request) -> web.Response:
        hook_id = request.match_info["hook_id"]
        hook_token = request.match_info["hook_token"]
        if not (_SAFE_SEGMENT_RE.match(hook_id) and _SAFE_SEGMENT_RE.match(hook_token)):
            return web.Response(status=404, text="not found")
        if is_shutting_down():
            return web.Response(status=503, text="shutting down")

        try:
            return await _process_delivery(request, hook_id, hook_token)
        except Exception:
            logger.exception("relay.delivery.internal_error", hook_id=hook_id)
            return web.Response(status=500, text="internal error")

    async def _process_delivery(
        request: web.Request, hook_id: str, hook_token: str
    ) -> web.Response:
        if request.content_length and request.content_length > max_body:
            return web.Response(status=413, text="payload too large")

        raw_body = await request.read()
        if len(raw_body) > max_body:
            return web.Response(status=413, text="payload too large")

        source = request.headers.get("User-Agent") or None
        result = await service.submit(hook_id, hook_token, raw_body, source=source)

        if result.reason is RejectReason.BANNED:
            return web.Response(status=403, text="Error: Banned!")
        if result.reason is RejectReason.OVERFLOW:
            return web.Response(status=429, text="Error: Too many requests!")
        return web.Response(status=200)

    app = web.Application(client_max_size=max_body)
    app.router.add_get("/", handle_status)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/history", handle_history)
    app.router.add_post("/api/webhooks/{hook_id}/{hook_token}", handle_delivery)
    return app


async def run_relay_server(service: RelayService) -> None:
    """Run the HTTP listener until cancelled."""
    settings = service.settings.server
    app = build_relay_app(service)

    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    try:
        site = web.TCPSite(runner, settings.host, settings.port)
        await site.start()
        logger.info("relay.server.started", host=settings.host, port=settings.port)
        # Block until cancelled by structured concurrency.
        await anyio.sleep_forever()
    finally:
        with anyio.CancelScope(shield=True):
            await runner.cleanup()


async def serve(service: RelayService) -> None:
    """Run listener, drain loop and analytics worker until a stop signal."""
    async with anyio.create_task_group() as tg:
        tg.start_soon(service.run)
        tg.start_soon(run_relay_server, service)
        tg.start_soon(watch_signals, tg.cancel_scope)
    logger.info("relay.stopped")
