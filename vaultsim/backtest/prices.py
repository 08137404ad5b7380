"""vaultsim.backtest.prices

Price series resolution.

Per asset, in priority order:
1. stablecoins get a flat 1.0 series, no external call
2. live sources are tried in order; empty or failing means "next"
3. a synthetic random walk, flagged as fallback

The resolver never raises for missing data. It degrades and says so.
"""

from __future__ import annotations

import asyncio
import logging
import math
import zlib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

from vaultsim.backtest.models import AssetAllocation
from vaultsim.core.cache import TTLCache

if TYPE_CHECKING:
    from vaultsim.core.config import Config

logger = logging.getLogger(__name__)

STABLECOINS = ("USDC", "USDT", "DAI")
STABLECOIN_PRICE = 1.0

WALK_STEP = 0.02  # max per-tick move, either direction
WALK_BAND = 0.30  # clamp to base +/- 30%

SOURCE_STABLECOIN = "stablecoin"
SOURCE_SYNTHETIC = "synthetic"


@dataclass(frozen=True, slots=True)
class PricePoint:
    timestamp: int  # epoch ms
    price: float


@dataclass(frozen=True, slots=True)
class PriceSeries:
    """Parallel timestamp/price arrays, in the order the source produced them."""

    timestamps: np.ndarray  # int64, (N,)
    prices: np.ndarray  # float64, (N,)

    @classmethod
    def from_points(cls, points: Iterable[PricePoint]) -> PriceSeries:
        kept = [p for p in points if math.isfinite(p.price)]
        return cls(
            timestamps=np.array([p.timestamp for p in kept], dtype=np.int64),
            prices=np.array([p.price for p in kept], dtype=np.float64),
        )

    @classmethod
    def empty(cls) -> PriceSeries:
        return cls(timestamps=np.zeros(0, dtype=np.int64), prices=np.zeros(0, dtype=np.float64))

    def __len__(self) -> int:
        return int(self.timestamps.shape[0])

    def nearest(self, t_ms: int) -> float | None:
        """Price of the point closest in time to ``t_ms``.

        Ties go to the earliest point in series order (argmin returns the
        first minimum).
        """

        if self.timestamps.size == 0:
            return None
        idx = int(np.argmin(np.abs(self.timestamps - np.int64(t_ms))))
        return float(self.prices[idx])

    def points(self) -> list[PricePoint]:
        return [PricePoint(int(t), float(p)) for t, p in zip(self.timestamps, self.prices, strict=True)]


@dataclass(frozen=True, slots=True)
class ResolvedSeries:
    asset_code: str
    series: PriceSeries
    source: str
    used_fallback: bool = False


@runtime_checkable
class PriceSource(Protocol):
    """A live price-history collaborator.

    Returns an empty list when it has nothing for the asset. May raise; the
    resolver treats an exception as an empty answer.
    """

    name: str

    async def fetch(self, asset: AssetAllocation, start_ms: int, end_ms: int, resolution_ms: int) -> list[PricePoint]: ...


def tick_times(start_ms: int, end_ms: int, resolution_ms: int) -> np.ndarray:
    """Every tick from start to end inclusive, stepping by resolution."""

    if resolution_ms <= 0:
        raise ValueError("resolution_ms must be > 0")
    if end_ms < start_ms:
        return np.zeros(0, dtype=np.int64)
    return np.arange(start_ms, end_ms + 1, resolution_ms, dtype=np.int64)


def stablecoin_series(start_ms: int, end_ms: int, resolution_ms: int, *, price: float = STABLECOIN_PRICE) -> PriceSeries:
    times = tick_times(start_ms, end_ms, resolution_ms)
    return PriceSeries(timestamps=times, prices=np.full(times.shape[0], float(price), dtype=np.float64))


def random_walk_series(
    base_price: float,
    start_ms: int,
    end_ms: int,
    resolution_ms: int,
    *,
    rng: np.random.Generator,
) -> PriceSeries:
    """Bounded multiplicative random walk starting at ``base_price``.

    Each step multiplies by ``1 + u`` with ``u ~ U[-0.02, 0.02]`` and clamps
    to ``[0.7 * base, 1.3 * base]``.
    """

    times = tick_times(start_ms, end_ms, resolution_ms)
    n = int(times.shape[0])
    prices = np.empty(n, dtype=np.float64)
    if n == 0:
        return PriceSeries(timestamps=times, prices=prices)

    lo = base_price * (1.0 - WALK_BAND)
    hi = base_price * (1.0 + WALK_BAND)
    moves = rng.uniform(-WALK_STEP, WALK_STEP, size=n - 1)

    price = float(base_price)
    prices[0] = price
    for i, u in enumerate(moves, start=1):
        price = min(hi, max(lo, price * (1.0 + float(u))))
        prices[i] = price
    return PriceSeries(timestamps=times, prices=prices)


class PriceSeriesResolver:
    def __init__(
        self,
        sources: Sequence[PriceSource] = (),
        *,
        stablecoins: Iterable[str] = STABLECOINS,
        base_prices: dict[str, float] | None = None,
        default_base_price: float = 1.0,
        seed: int | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self.sources = list(sources)
        self.stablecoins = frozenset(s.upper() for s in stablecoins)
        self.base_prices = {k.upper(): float(v) for k, v in (base_prices or {}).items()}
        self.default_base_price = float(default_base_price)
        self.seed = seed
        self.cache = cache

    @classmethod
    def from_config(cls, config: Config, *, sources: Sequence[PriceSource] = (), cache: TTLCache | None = None) -> PriceSeriesResolver:
        """Resolver with configured fallbacks.

        Without an explicit cache, one is created when ``prices.cache_ttl_s``
        is positive. Reuse the resolver across runs to benefit from it.
        """

        p = config.prices
        if cache is None and p.cache_ttl_s > 0:
            cache = TTLCache(default_ttl_s=p.cache_ttl_s)
        return cls(
            sources,
            stablecoins=p.stablecoins,
            base_prices=p.base_prices,
            default_base_price=p.default_base_price,
            seed=p.seed,
            cache=cache,
        )

    def rng_for(self, asset_code: str) -> np.random.Generator:
        """Per-asset generator.

        Seeded runs derive one stream per asset code, so the walk for an asset
        does not depend on which other assets are resolved or in what order.
        """

        if self.seed is None:
            return np.random.default_rng()
        return np.random.default_rng([int(self.seed), zlib.crc32(asset_code.encode("utf-8"))])

    def base_price(self, asset_code: str) -> float:
        return self.base_prices.get(asset_code.upper(), self.default_base_price)

    def synthetic(self, asset_code: str, start_ms: int, end_ms: int, resolution_ms: int) -> ResolvedSeries:
        series = random_walk_series(
            self.base_price(asset_code),
            start_ms,
            end_ms,
            resolution_ms,
            rng=self.rng_for(asset_code),
        )
        logger.warning("synthetic_prices_used", extra={"asset": asset_code, "points": len(series)})
        return ResolvedSeries(asset_code=asset_code, series=series, source=SOURCE_SYNTHETIC, used_fallback=True)

    async def resolve(self, asset: AssetAllocation, start_ms: int, end_ms: int, resolution_ms: int) -> ResolvedSeries:
        code = asset.asset_code
        if code.upper() in self.stablecoins:
            return ResolvedSeries(
                asset_code=code,
                series=stablecoin_series(start_ms, end_ms, resolution_ms),
                source=SOURCE_STABLECOIN,
            )

        key = (code, asset.asset_issuer, start_ms, end_ms, resolution_ms)
        if self.cache is not None:
            hit = self.cache.get(key)
            if hit is not None:
                return hit

        for source in self.sources:
            try:
                points = await source.fetch(asset, start_ms, end_ms, resolution_ms)
            except Exception as e:  # noqa: BLE001 - a failing source is a source with no data
                logger.warning(
                    "price_source_failed",
                    extra={"asset": code, "source": source.name, "error": f"{type(e).__name__}: {e}"},
                )
                continue

            series = PriceSeries.from_points(points or [])
            if len(series) == 0:
                logger.info("price_source_empty", extra={"asset": code, "source": source.name})
                continue

            resolved = ResolvedSeries(asset_code=code, series=series, source=source.name)
            if self.cache is not None:
                self.cache.set(key, resolved)
            return resolved

        return self.synthetic(code, start_ms, end_ms, resolution_ms)

    async def _resolve_isolated(self, asset: AssetAllocation, start_ms: int, end_ms: int, resolution_ms: int) -> ResolvedSeries:
        try:
            return await self.resolve(asset, start_ms, end_ms, resolution_ms)
        except Exception:  # noqa: BLE001 - one asset must not sink the others
            logger.exception("asset_resolution_failed", extra={"asset": asset.asset_code})
            return self.synthetic(asset.asset_code, start_ms, end_ms, resolution_ms)

    async def resolve_all(
        self,
        assets: Sequence[AssetAllocation],
        start_ms: int,
        end_ms: int,
        resolution_ms: int,
    ) -> dict[str, ResolvedSeries]:
        """Resolve every distinct asset concurrently and wait for all of them."""

        unique: dict[str, AssetAllocation] = {}
        for a in assets:
            unique.setdefault(a.asset_code, a)

        results = await asyncio.gather(
            *(self._resolve_isolated(a, start_ms, end_ms, resolution_ms) for a in unique.values())
        )
        return {r.asset_code: r for r in results}
