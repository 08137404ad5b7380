"""vaultsim.core.client

HTTP access for live price sources.

One GET per call, no retries. A failed call is a source with no data: every
transport, status, size or shape problem surfaces as ``PriceSourceError``
and the resolver moves on to the next source.

Two guards protect the upstream APIs during a fan-out:
- a pacer spacing requests at most ``rate_limit_rps`` per second
- a circuit breaker that stops calling after repeated failures
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from vaultsim.core.exceptions import PriceSourceError

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 4 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class ClientConfig:
    rate_limit_rps: float = 1.0
    timeout_s: float = 20.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_s: float = 30.0


class RequestPacer:
    """Hands out send slots no closer than ``1 / rate_per_s`` apart."""

    def __init__(self, rate_per_s: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval_s = 1.0 / max(rate_per_s, 0.001)
        self._clock = clock
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.interval_s
        if slot > now:
            await asyncio.sleep(slot - now)


class CircuitBreaker:
    """Open after ``threshold`` consecutive failures; half-open after cooldown."""

    def __init__(self, threshold: int, cooldown_s: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.threshold = max(int(threshold), 1)
        self.cooldown_s = cooldown_s
        self._clock = clock
        self.consecutive_failures = 0
        self.opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        if self.opened_at is None:
            return False
        if self._clock() - self.opened_at >= self.cooldown_s:
            # half-open: let the next call through, one more failure re-opens
            self.opened_at = None
            self.consecutive_failures = self.threshold - 1
            return False
        return True

    def record(self, ok: bool) -> None:
        if ok:
            self.consecutive_failures = 0
            self.opened_at = None
            return
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.threshold and self.opened_at is None:
            self.opened_at = self._clock()
            logger.warning("circuit_breaker_opened", extra={"failures": self.consecutive_failures})


class DataClient:
    def __init__(self, config: ClientConfig | None = None, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config or ClientConfig()
        self.pacer = RequestPacer(self.config.rate_limit_rps)
        self.breaker = CircuitBreaker(self.config.circuit_breaker_threshold, self.config.circuit_breaker_cooldown_s)
        self._http = httpx.AsyncClient(timeout=self.config.timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> DataClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def get(self, url: str, *, params: Mapping[str, Any] | None = None, headers: Mapping[str, str] | None = None) -> httpx.Response:
        if self.breaker.is_open:
            raise PriceSourceError(f"circuit open, skipping {url}")

        await self.pacer.wait()
        try:
            resp = await self._http.get(url, params=params, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            self.breaker.record(ok=False)
            raise PriceSourceError(f"HTTP {e.response.status_code} from {url}") from e
        except httpx.HTTPError as e:
            self.breaker.record(ok=False)
            raise PriceSourceError(f"{type(e).__name__} calling {url}: {e}") from e

        self.breaker.record(ok=True)
        return resp

    async def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        expected: type | tuple[type, ...] = dict,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> Any:
        """GET and decode a JSON document of the ``expected`` type."""

        resp = await self.get(url, params=params, headers=headers)
        if len(resp.content) > max_bytes:
            raise PriceSourceError(f"response from {url} exceeds {max_bytes} bytes")
        try:
            data = resp.json()
        except ValueError as e:
            raise PriceSourceError(f"response from {url} is not JSON") from e
        if not isinstance(data, expected):
            raise PriceSourceError(f"unexpected JSON shape from {url}: {type(data).__name__}")
        return data
