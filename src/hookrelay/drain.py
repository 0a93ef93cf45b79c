"""Periodic reclaim of expired windows and backlog flushing."""

from __future__ import annotations

import time
from collections.abc import Callable

import anyio

from .admission import AdmissionController
from .logging import get_logger
from .settings import LimitSettings
from .state import EndpointState, EndpointStore

logger = get_logger(__name__)


class DrainScheduler:
    def __init__(
        self,
        store: EndpointStore,
        controller: AdmissionController,
        limits: LimitSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._controller = controller
        self._limits = limits
        self._clock = clock

    async def tick(self, now: float | None = None) -> int:
        """Drain every endpoint whose window has elapsed.

        Returns the number of endpoints visited. Endpoints drain
        concurrently; each one under its own lock.
        """
        if now is None:
            now = self._clock()
        due = [s for s in self._store if not s.banned and s.window_expired(now)]
        if not due:
            return 0
        async with anyio.create_task_group() as tg:
            for state in due:
                tg.start_soon(self._drain, state, now)
        return len(due)

    async def _drain(self, state: EndpointState, now: float) -> None:
        async with state.lock:
            # Re-check: an admission may have moved the window while we waited.
            if state.banned or not state.window_expired(now):
                return
            state.remaining = state.limit
            state.reset_at = None

            # Cap attempts so requeued payloads are retried next window.
            attempts = len(state.queue)
            sent = 0
            while state.remaining > 0 and state.queue and sent < attempts:
                if self._limits.drain_order == "lifo":
                    delivery = state.queue.pop()
                else:
                    delivery = state.queue.popleft()
                await self._controller.forward_locked(state, delivery)
                sent += 1

            if not state.queue and self._limits.reset_errors_on_drain:
                state.error_count = 0

            if sent:
                logger.info(
                    "drain.flushed",
                    hook_id=state.identity,
                    sent=sent,
                    queued=len(state.queue),
                    remaining=state.remaining,
                )

    async def run(self) -> None:
        """Tick every ``drain_interval_s`` until cancelled."""
        logger.info("drain.started", interval=self._limits.drain_interval_s)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("drain.tick_failed")
            await anyio.sleep(self._limits.drain_interval_s)
