"""HTTP client for the rate-limited upstream API."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import anyio
import httpx

from .logging import get_logger

logger = get_logger(__name__)

RATE_LIMIT_PREFIX = "x-ratelimit-"
LIMIT_HEADER = RATE_LIMIT_PREFIX + "limit"
REMAINING_HEADER = RATE_LIMIT_PREFIX + "remaining"
RESET_HEADER = RATE_LIMIT_PREFIX + "reset"


class NameLookupError(Exception):
    """A display-name lookup got no usable answer from upstream."""


class Outcome(str, Enum):
    DELIVERED = "delivered"
    THROTTLED = "throttled"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"

    @property
    def retryable(self) -> bool:
        return self in (Outcome.THROTTLED, Outcome.TRANSPORT_ERROR)


@dataclass(frozen=True, slots=True)
class RateLimitSignals:
    """Rate-limit headers from one response; ``None`` means not reported."""

    limit: int | None = None
    remaining: int | None = None
    reset_at: float | None = None


@dataclass(frozen=True, slots=True)
class ForwardResult:
    outcome: Outcome
    signals: RateLimitSignals = RateLimitSignals()
    status: int | None = None


class Upstream(Protocol):
    async def forward(
        self, identity: str, token: str, payload: bytes
    ) -> ForwardResult: ...

    async def fetch_display_name(self, identity: str, token: str) -> str | None: ...


def _parse_number(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        number = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_rate_limit_headers(headers: Mapping[str, str]) -> RateLimitSignals:
    """Extract window size, remaining budget and reset time.

    Absent or non-numeric headers are ignored rather than read as zero.
    """
    lower = {k.lower(): v for k, v in headers.items()}
    limit = _parse_number(lower.get(LIMIT_HEADER))
    remaining = _parse_number(lower.get(REMAINING_HEADER))
    reset_at = _parse_number(lower.get(RESET_HEADER))
    return RateLimitSignals(
        limit=int(limit) if limit is not None else None,
        remaining=int(remaining) if remaining is not None else None,
        reset_at=reset_at,
    )


def classify_status(status: int) -> Outcome:
    if 200 <= status < 300:
        return Outcome.DELIVERED
    if status == 429:
        return Outcome.THROTTLED
    return Outcome.REJECTED


class UpstreamClient:
    """Forwards payloads to ``url_template`` formatted with id and token.

    Stateless per call: the caller owns writing the returned signals back
    into endpoint state.
    """

    def __init__(
        self,
        url_template: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url_template = url_template
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def url_for(self, identity: str, token: str) -> str:
        return self._url_template.format(id=identity, token=token)

    async def forward(
        self, identity: str, token: str, payload: bytes
    ) -> ForwardResult:
        url = self.url_for(identity, token)
        try:
            # Hard deadline on top of httpx's per-phase timeouts so a stalled
            # call can never pin a spent budget slot.
            with anyio.fail_after(self._timeout):
                resp = await self._client.post(
                    url,
                    content=payload,
                    headers={
                        "User-Agent": "",
                        "Content-Type": "application/json",
                    },
                )
        except TimeoutError:
            logger.warning("upstream.timeout", hook_id=identity, timeout=self._timeout)
            return ForwardResult(outcome=Outcome.TRANSPORT_ERROR)
        except httpx.HTTPError as exc:
            logger.warning(
                "upstream.transport_error",
                hook_id=identity,
                error=type(exc).__name__,
            )
            return ForwardResult(outcome=Outcome.TRANSPORT_ERROR)

        outcome = classify_status(resp.status_code)
        signals = parse_rate_limit_headers(resp.headers)
        if outcome is Outcome.REJECTED:
            logger.info(
                "upstream.rejected",
                hook_id=identity,
                status=resp.status_code,
            )
        else:
            logger.debug(
                "upstream.response",
                hook_id=identity,
                status=resp.status_code,
                outcome=outcome.value,
            )
        return ForwardResult(outcome=outcome, signals=signals, status=resp.status_code)

    async def fetch_display_name(self, identity: str, token: str) -> str | None:
        """Look up the endpoint's human-readable name.

        Returns ``None`` when upstream answers but has no name for the
        endpoint (including a 4xx). Raises :class:`NameLookupError` when
        no answer was obtained, so the caller can retry later.
        """
        try:
            with anyio.fail_after(self._timeout):
                resp = await self._client.get(self.url_for(identity, token))
        except (TimeoutError, httpx.HTTPError) as exc:
            raise NameLookupError(f"{type(exc).__name__} fetching name") from exc
        if 400 <= resp.status_code < 500:
            return None
        if not resp.is_success:
            raise NameLookupError(f"upstream returned {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise NameLookupError("upstream returned a non-JSON body") from exc
        name = data.get("name") if isinstance(data, dict) else None
        return name if isinstance(name, str) and name else None

    async def close(self) -> None:
        await self._client.aclose()
