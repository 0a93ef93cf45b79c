"""Per-endpoint admission: forward now, queue, or reject."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .analytics import Analytics, track_request_failed, track_request_success
from .bans import BanEnforcer, BanRegistry
from .history import RequestHistory
from .logging import get_logger
from .settings import LimitSettings
from .state import EndpointState, EndpointStore, QueuedDelivery
from .upstream import Outcome, RateLimitSignals, Upstream

logger = get_logger(__name__)

Clock = Callable[[], float]


class AdmissionKind(str, Enum):
    FORWARDED = "forwarded"
    QUEUED = "queued"
    REJECTED = "rejected"


class RejectReason(str, Enum):
    BANNED = "banned"
    OVERFLOW = "overflow"


@dataclass(frozen=True, slots=True)
class AdmissionResult:
    kind: AdmissionKind
    reason: RejectReason | None = None
    outcome: Outcome | None = None

    @property
    def accepted(self) -> bool:
        return self.kind is not AdmissionKind.REJECTED


class AdmissionController:
    """Budget-gated forwarding with a bounded per-endpoint backlog.

    All work on one endpoint runs under that endpoint's lock, including
    the upstream call, so a decrement and the header overwrite that
    follows it never interleave with a drain or another admission.
    """

    def __init__(
        self,
        store: EndpointStore,
        registry: BanRegistry,
        upstream: Upstream,
        enforcer: BanEnforcer,
        analytics: Analytics,
        limits: LimitSettings,
        *,
        history: RequestHistory | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self._registry = registry
        self._upstream = upstream
        self._enforcer = enforcer
        self._analytics = analytics
        self._limits = limits
        self._history = history
        self._clock = clock

    async def submit(
        self,
        identity: str,
        token: str,
        payload: bytes,
        *,
        source: str | None = None,
    ) -> AdmissionResult:
        if identity in self._registry:
            logger.info("admission.rejected", hook_id=identity, reason="banned")
            return AdmissionResult(AdmissionKind.REJECTED, RejectReason.BANNED)

        state = self._store.get_or_create(identity, token)
        if self._history is not None:
            self._history.record(identity, source, len(payload))

        async with state.lock:
            if state.banned:
                return AdmissionResult(AdmissionKind.REJECTED, RejectReason.BANNED)
            if source:
                state.source_tag = source

            if state.remaining > 0:
                delivery = QueuedDelivery(token, payload)
                outcome = await self.forward_locked(state, delivery)
                return AdmissionResult(AdmissionKind.FORWARDED, outcome=outcome)

            if len(state.queue) >= self._limits.max_queue_size:
                state.error_count += 1
                logger.warning(
                    "admission.overflow",
                    hook_id=identity,
                    queued=len(state.queue),
                    errors=state.error_count,
                )
                track_request_failed(self._analytics, identity)
                if state.error_count >= self._limits.ban_threshold:
                    await self._enforcer.enforce(state, token=token)
                return AdmissionResult(AdmissionKind.REJECTED, RejectReason.OVERFLOW)

            state.queue.append(QueuedDelivery(token, payload))
            logger.debug("admission.queued", hook_id=identity, queued=len(state.queue))
            return AdmissionResult(AdmissionKind.QUEUED)

    async def forward_locked(
        self, state: EndpointState, delivery: QueuedDelivery
    ) -> Outcome:
        """Spend one budget slot on ``delivery``. Caller holds ``state.lock``.

        Throttled and transport failures go back on the queue; a hard
        upstream rejection drops the payload. If the call is cancelled
        the payload is requeued and the window is scheduled to reopen
        before the cancellation propagates.
        """
        state.remaining -= 1
        try:
            result = await self._upstream.forward(
                state.identity, delivery.token, delivery.payload
            )
        except BaseException:
            state.queue.append(delivery)
            self.apply_signals(state, RateLimitSignals())
            logger.info(
                "admission.interrupted",
                hook_id=state.identity,
                queued=len(state.queue),
            )
            raise
        self.apply_signals(state, result.signals)

        if result.outcome is Outcome.DELIVERED:
            track_request_success(self._analytics, state.identity)
        elif result.outcome.retryable:
            state.queue.append(delivery)
            logger.info(
                "admission.requeued",
                hook_id=state.identity,
                outcome=result.outcome.value,
                queued=len(state.queue),
            )
        else:
            track_request_failed(self._analytics, state.identity)
            logger.warning(
                "admission.dropped",
                hook_id=state.identity,
                status=result.status,
            )
        return result.outcome

    def apply_signals(self, state: EndpointState, signals: RateLimitSignals) -> None:
        """Overwrite the local window from authoritative upstream headers."""
        if signals.limit is not None:
            state.limit = max(0, signals.limit)
        if signals.remaining is not None:
            state.remaining = max(0, signals.remaining)
        if signals.reset_at is not None:
            state.reset_at = signals.reset_at

        # An exhausted budget with no reported reset would strand the queue.
        if state.remaining == 0 and state.reset_at is None:
            state.reset_at = self._clock() + self._limits.fallback_window_s
        if state.reset_at is not None and state.limit < 1:
            state.limit = 1
