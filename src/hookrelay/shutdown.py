"""Graceful shutdown: stop admitting, give in-flight forwards a moment, exit."""

from __future__ import annotations

import signal
import threading

import anyio

from .logging import get_logger

logger = get_logger(__name__)

# Set once a stop signal arrives; the delivery route answers 503 from then on.
_stopping = threading.Event()

# Queued payloads are not persisted and are lost on exit.
GRACE_PERIOD_S: float = 2.0


def request_shutdown() -> None:
    """Stop admitting deliveries. Idempotent."""
    if _stopping.is_set():
        return
    _stopping.set()
    logger.info("shutdown.requested")


def is_shutting_down() -> bool:
    return _stopping.is_set()


def reset_shutdown() -> None:
    _stopping.clear()


async def watch_signals(
    scope: anyio.CancelScope, *, grace_period: float = GRACE_PERIOD_S
) -> None:
    """Cancel ``scope`` ``grace_period`` seconds after SIGINT or SIGTERM."""
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("shutdown.signal", signal=signal.Signals(signum).name)
            request_shutdown()
            break
    await anyio.sleep(grace_period)
    scope.cancel()
