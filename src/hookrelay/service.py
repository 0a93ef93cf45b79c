"""Wires the relay components together for one process."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

import anyio

from .admission import AdmissionController, AdmissionResult
from .analytics import AnalyticsEmitter
from .bans import BanEnforcer, BanRegistry, BanStore, JsonBanStore
from .drain import DrainScheduler
from .history import RequestHistory
from .logging import get_logger
from .settings import RelaySettings
from .state import EndpointStore
from .status import StatusSnapshot, resolve_display_names, snapshot
from .upstream import Upstream, UpstreamClient

logger = get_logger(__name__)


class RelayService:
    """Owns all mutable relay state; one instance per process (or per test)."""

    def __init__(
        self,
        settings: RelaySettings,
        *,
        upstream: Upstream | None = None,
        ban_store: BanStore | None = None,
        analytics: AnalyticsEmitter | None = None,
        config_path: Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        limits = settings.limits

        self._owned_upstream: UpstreamClient | None = None
        if upstream is None:
            self._owned_upstream = UpstreamClient(
                settings.upstream.url_template,
                timeout=settings.upstream.request_timeout_s,
            )
            upstream = self._owned_upstream
        self.upstream = upstream
        self.analytics = analytics or AnalyticsEmitter(settings.analytics)

        if ban_store is None:
            ban_store = JsonBanStore(settings.resolve_bans_path(config_path))
        self.store = EndpointStore()
        self.registry = BanRegistry.load(ban_store)
        self.history = RequestHistory(settings.history_size)

        self.enforcer = BanEnforcer(
            self.registry,
            self.upstream,
            self.analytics,
            notice=limits.ban_notice,
        )
        self.controller = AdmissionController(
            self.store,
            self.registry,
            self.upstream,
            self.enforcer,
            self.analytics,
            limits,
            history=self.history,
            clock=clock,
        )
        self.drain = DrainScheduler(self.store, self.controller, limits, clock=clock)

    async def submit(
        self,
        identity: str,
        token: str,
        payload: bytes,
        *,
        source: str | None = None,
    ) -> AdmissionResult:
        return await self.controller.submit(identity, token, payload, source=source)

    async def status(self, *, resolve_names: bool = True) -> StatusSnapshot:
        if resolve_names:
            await resolve_display_names(self.store, self.upstream)
        return snapshot(self.store, self.registry)

    async def run(self) -> None:
        """Run the drain loop and analytics worker until cancelled."""
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self.drain.run)
                tg.start_soon(self.analytics.run)
        finally:
            with anyio.CancelScope(shield=True):
                await self.aclose()

    async def aclose(self) -> None:
        self.analytics.close()
        if self._owned_upstream is not None:
            await self._owned_upstream.close()
        pending = sum(len(state.queue) for state in self.store)
        if pending:
            logger.warning("relay.closed_with_backlog", queued=pending)
