"""Fire-and-forget analytics events (Google Analytics measurement protocol)."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Protocol

import anyio
import httpx
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .logging import get_logger
from .settings import AnalyticsSettings

logger = get_logger(__name__)

# Namespace for deriving a stable anonymous client id per hook id.
_CLIENT_ID_NAMESPACE = uuid.UUID("6f1c1c0e-3a5b-4e0b-9a43-7d4b8a3c2f10")


@dataclass(frozen=True, slots=True)
class AnalyticsEvent:
    identity: str
    category: str
    action: str


class Analytics(Protocol):
    def emit(self, identity: str, category: str, action: str) -> None: ...


def track_request_success(analytics: Analytics, identity: str) -> None:
    analytics.emit(identity, "Request", "Success")


def track_request_failed(analytics: Analytics, identity: str) -> None:
    analytics.emit(identity, "Request", "Failed")


def track_user_banned(analytics: Analytics, identity: str) -> None:
    analytics.emit(identity, "User", "Banned")


class NullAnalytics:
    def emit(self, identity: str, category: str, action: str) -> None:
        logger.debug(
            "analytics.event",
            hook_id=identity,
            category=category,
            action=action,
        )


class AnalyticsEmitter:
    """Buffers events and posts them from a background worker.

    ``emit`` never blocks: when the buffer is full the event is dropped
    and logged. Without a tracking id events are only logged.
    """

    def __init__(
        self,
        settings: AnalyticsSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        send, receive = anyio.create_memory_object_stream[AnalyticsEvent](
            max_buffer_size=settings.buffer_size
        )
        self._send: MemoryObjectSendStream[AnalyticsEvent] = send
        self._receive: MemoryObjectReceiveStream[AnalyticsEvent] = receive

    @property
    def enabled(self) -> bool:
        return self._settings.ga_id is not None

    def emit(self, identity: str, category: str, action: str) -> None:
        logger.debug(
            "analytics.event",
            hook_id=identity,
            category=category,
            action=action,
        )
        if not self.enabled:
            return
        event = AnalyticsEvent(identity=identity, category=category, action=action)
        try:
            self._send.send_nowait(event)
        except anyio.WouldBlock:
            logger.warning("analytics.dropped", hook_id=identity, action=action)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("analytics.closed", hook_id=identity, action=action)

    def _params(self, event: AnalyticsEvent) -> dict[str, str]:
        assert self._settings.ga_id is not None
        return {
            "v": "1",
            "tid": self._settings.ga_id,
            "cid": str(uuid.uuid5(_CLIENT_ID_NAMESPACE, event.identity)),
            "uid": event.identity,
            "t": "event",
            "ec": event.category,
            "ea": event.action,
        }

    async def _post(self, client: httpx.AsyncClient, event: AnalyticsEvent) -> None:
        try:
            resp = await client.post(self._settings.endpoint, data=self._params(event))
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "analytics.send_failed",
                hook_id=event.identity,
                error=type(exc).__name__,
            )

    async def run(self) -> None:
        """Drain the event buffer until :meth:`close` is called."""
        if not self.enabled:
            return
        client = self._client or httpx.AsyncClient(timeout=self._settings.timeout_s)
        try:
            async with self._receive:
                async for event in self._receive:
                    await self._post(client, event)
        finally:
            if self._client is None:
                await client.aclose()

    def close(self) -> None:
        self._send.close()
