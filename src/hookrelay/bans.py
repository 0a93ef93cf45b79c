"""Ban list persistence and enforcement."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Protocol

import anyio
import anyio.to_thread
import msgspec

from .analytics import Analytics, track_user_banned
from .config import ConfigError
from .logging import get_logger
from .state import EndpointState
from .upstream import Upstream

logger = get_logger(__name__)


class BanStore(Protocol):
    def load(self) -> list[str]: ...

    def save(self, identities: list[str]) -> None: ...


class JsonBanStore:
    """Ban list kept as a JSON array of hook ids.

    Every save replaces the whole file (temp file + rename).
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> list[str]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            logger.info("bans.store.missing", path=str(self.path))
            return []
        except OSError as exc:
            raise ConfigError(f"Failed to read ban list {self.path}: {exc}") from exc
        if not raw.strip():
            return []
        try:
            return msgspec.json.decode(raw, type=list[str])
        except msgspec.DecodeError as exc:
            raise ConfigError(f"Malformed ban list {self.path}: {exc}") from None

    def save(self, identities: list[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = msgspec.json.format(msgspec.json.encode(identities), indent=2)
        fd, tmp = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class BanRegistry:
    """Ordered set of banned hook ids, authoritative for admission."""

    def __init__(self, store: BanStore, identities: Iterable[str] = ()) -> None:
        self._store = store
        self._banned: dict[str, None] = dict.fromkeys(identities)
        self._persist_lock = anyio.Lock()

    @classmethod
    def load(cls, store: BanStore) -> BanRegistry:
        registry = cls(store, store.load())
        logger.info("bans.loaded", count=len(registry))
        return registry

    def __contains__(self, identity: object) -> bool:
        return identity in self._banned

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._banned))

    def __len__(self) -> int:
        return len(self._banned)

    async def add(self, identity: str) -> bool:
        """Ban ``identity`` and persist; ``False`` if it was already banned.

        A failed write is logged and the in-memory ban stands.
        """
        if identity in self._banned:
            return False
        self._banned[identity] = None
        await self._persist()
        return True

    async def _persist(self) -> None:
        async with self._persist_lock:
            snapshot = list(self._banned)
            try:
                await anyio.to_thread.run_sync(self._store.save, snapshot)
            except Exception:
                logger.exception("bans.persist_failed", count=len(snapshot))
            else:
                logger.debug("bans.persisted", count=len(snapshot))


class BanEnforcer:
    """Promotes an endpoint to the terminal banned state."""

    def __init__(
        self,
        registry: BanRegistry,
        upstream: Upstream,
        analytics: Analytics,
        *,
        notice: str,
    ) -> None:
        self._registry = registry
        self._upstream = upstream
        self._analytics = analytics
        self._notice = msgspec.json.encode({"content": notice})

    async def enforce(
        self, state: EndpointState, *, token: str | None = None
    ) -> None:
        """Ban ``state``. Caller must hold ``state.lock``.

        The notice goes out with ``token``, the token of the delivery that
        tripped the threshold, or the last one seen when not given.
        """
        if state.banned:
            return
        state.banned = True
        dropped = len(state.queue)
        state.queue.clear()
        logger.warning(
            "bans.banned",
            hook_id=state.identity,
            errors=state.error_count,
            dropped=dropped,
        )
        await self._send_notice(state, token or state.token)
        await self._registry.add(state.identity)
        track_user_banned(self._analytics, state.identity)

    async def _send_notice(self, state: EndpointState, token: str) -> None:
        try:
            result = await self._upstream.forward(
                state.identity, token, self._notice
            )
        except Exception:
            logger.exception("bans.notice_failed", hook_id=state.identity)
            return
        logger.info(
            "bans.notice_sent",
            hook_id=state.identity,
            outcome=result.outcome.value,
        )
