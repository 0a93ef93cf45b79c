"""Ring buffer of recent deliveries, kept for diagnostics only."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict, dataclass


@dataclass(frozen=True, slots=True)
class RequestHistoryEntry:
    at: float
    identity: str
    source: str | None
    size: int


class RequestHistory:
    def __init__(self, capacity: int = 100) -> None:
        self._entries: deque[RequestHistoryEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def record(
        self,
        identity: str,
        source: str | None,
        size: int,
        *,
        at: float | None = None,
    ) -> None:
        self._entries.append(
            RequestHistoryEntry(
                at=time.time() if at is None else at,
                identity=identity,
                source=source,
                size=size,
            )
        )

    def entries(self) -> list[RequestHistoryEntry]:
        """Oldest first."""
        return list(self._entries)

    def as_dicts(self) -> list[dict]:
        return [asdict(entry) for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
