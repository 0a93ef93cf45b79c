"""Read-only snapshot of every known endpoint."""

from __future__ import annotations

from dataclasses import asdict, dataclass

import anyio

from .bans import BanRegistry
from .logging import get_logger
from .state import EndpointState, EndpointStore
from .upstream import NameLookupError, Upstream

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class EndpointStatus:
    name: str | None
    source: str | None
    queued: int
    errors: int
    limit: int
    remaining: int
    reset_at: float | None
    banned: bool


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    endpoints: dict[str, EndpointStatus]
    banned: list[str]

    def as_dict(self) -> dict:
        return {
            "endpoints": {key: asdict(value) for key, value in self.endpoints.items()},
            "counts": {key: value.queued for key, value in self.endpoints.items()},
            "errors": {key: value.errors for key, value in self.endpoints.items()},
            "banned": list(self.banned),
        }


async def _resolve_name(state: EndpointState, upstream: Upstream) -> None:
    try:
        name = await upstream.fetch_display_name(state.identity, state.token)
    except NameLookupError as exc:
        logger.debug(
            "status.name_lookup_failed", hook_id=state.identity, error=str(exc)
        )
        return
    state.name_checked = True
    if name is not None:
        state.display_name = name
        logger.debug("status.name_resolved", hook_id=state.identity, name=name)


async def resolve_display_names(store: EndpointStore, upstream: Upstream) -> None:
    """Fetch names for endpoints without an answer yet; answers are cached."""
    pending = [s for s in store if not s.name_checked]
    if not pending:
        return
    async with anyio.create_task_group() as tg:
        for state in pending:
            tg.start_soon(_resolve_name, state, upstream)


def snapshot(store: EndpointStore, registry: BanRegistry) -> StatusSnapshot:
    endpoints = {
        state.identity: EndpointStatus(
            name=state.display_name,
            source=state.source_tag,
            queued=len(state.queue),
            errors=state.error_count,
            limit=state.limit,
            remaining=state.remaining,
            reset_at=state.reset_at,
            banned=state.banned or state.identity in registry,
        )
        for state in store
    }
    return StatusSnapshot(endpoints=endpoints, banned=list(registry))
