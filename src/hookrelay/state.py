"""In-memory per-endpoint rate-limit state."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field

import anyio

from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class QueuedDelivery:
    """A held payload and the token its caller presented."""

    token: str
    payload: bytes


@dataclass(slots=True)
class EndpointState:
    """Rate-limit window, backlog and error accounting for one endpoint.

    ``reset_at`` is ``None`` while no window is pending. Every mutation
    must happen while holding ``lock``. ``token`` is the most recently
    presented token and is only used for metadata lookups and the ban
    notice; payloads are always forwarded with their own token.
    """

    identity: str
    token: str
    limit: int = 0
    remaining: int = 1
    reset_at: float | None = None
    queue: deque[QueuedDelivery] = field(default_factory=deque)
    error_count: int = 0
    banned: bool = False
    display_name: str | None = None
    source_tag: str | None = None
    name_checked: bool = False
    lock: anyio.Lock = field(default_factory=anyio.Lock, repr=False, compare=False)

    def window_expired(self, now: float) -> bool:
        return self.reset_at is not None and now >= self.reset_at


class EndpointStore:
    """Keyed store of :class:`EndpointState`, one per hook id.

    The store only inserts; serializing access to an entry is the
    caller's job (see ``EndpointState.lock``).
    """

    def __init__(self) -> None:
        self._states: dict[str, EndpointState] = {}

    def get(self, identity: str) -> EndpointState | None:
        return self._states.get(identity)

    def get_or_create(self, identity: str, token: str) -> EndpointState:
        state = self._states.get(identity)
        if state is None:
            state = EndpointState(identity=identity, token=token)
            self._states[identity] = state
            logger.debug("endpoint.created", hook_id=identity)
        else:
            state.token = token
        return state

    def __iter__(self) -> Iterator[EndpointState]:
        return iter(list(self._states.values()))

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, identity: object) -> bool:
        return identity in self._states
