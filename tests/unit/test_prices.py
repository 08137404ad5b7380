from __future__ import annotations

import numpy as np
import pytest

from tests.unit._backtest_fixtures import START_MS, StaticSource, alloc, points
from vaultsim.backtest.prices import (
    PricePoint,
    PriceSeries,
    PriceSeriesResolver,
    PriceSource,
    random_walk_series,
    stablecoin_series,
    tick_times,
)
from vaultsim.core.cache import TTLCache
from vaultsim.core.exceptions import PriceSourceError
from vaultsim.core.time import MS_PER_DAY

END_MS = START_MS + 9 * MS_PER_DAY


def test_tick_times_inclusive_of_end() -> None:
    t = tick_times(0, 3 * MS_PER_DAY, MS_PER_DAY)
    assert t.tolist() == [0, MS_PER_DAY, 2 * MS_PER_DAY, 3 * MS_PER_DAY]


def test_tick_times_rejects_non_positive_resolution() -> None:
    with pytest.raises(ValueError):
        tick_times(0, 10, 0)


def test_nearest_picks_closest_point() -> None:
    s = PriceSeries.from_points([PricePoint(0, 1.0), PricePoint(100, 2.0), PricePoint(200, 3.0)])
    assert s.nearest(140) == 2.0
    assert s.nearest(160) == 3.0
    assert s.nearest(-50) == 1.0
    assert s.nearest(10_000) == 3.0


def test_nearest_tie_goes_to_first_encountered() -> None:
    s = PriceSeries.from_points([PricePoint(0, 1.0), PricePoint(10, 2.0)])
    assert s.nearest(5) == 1.0

    reversed_order = PriceSeries.from_points([PricePoint(10, 2.0), PricePoint(0, 1.0)])
    assert reversed_order.nearest(5) == 2.0


def test_nearest_on_empty_series_is_none() -> None:
    assert PriceSeries.empty().nearest(0) is None


def test_from_points_drops_non_finite_prices() -> None:
    s = PriceSeries.from_points([PricePoint(0, float("nan")), PricePoint(1, 2.0)])
    assert len(s) == 1
    assert s.points() == [PricePoint(1, 2.0)]


def test_stablecoin_series_is_flat_one() -> None:
    s = stablecoin_series(START_MS, END_MS, MS_PER_DAY)
    assert len(s) == 10
    assert np.all(s.prices == 1.0)


def test_random_walk_starts_at_base_and_stays_in_band() -> None:
    s = random_walk_series(0.12, 0, 500 * MS_PER_DAY, MS_PER_DAY, rng=np.random.default_rng(1))
    assert s.prices[0] == pytest.approx(0.12)
    assert np.all(s.prices >= 0.12 * 0.7 - 1e-12)
    assert np.all(s.prices <= 0.12 * 1.3 + 1e-12)

    steps = s.prices[1:] / s.prices[:-1] - 1.0
    assert np.all(np.abs(steps) <= 0.02 + 1e-12)


def test_random_walk_is_reproducible_with_seed() -> None:
    a = random_walk_series(1.0, 0, 50 * MS_PER_DAY, MS_PER_DAY, rng=np.random.default_rng(42))
    b = random_walk_series(1.0, 0, 50 * MS_PER_DAY, MS_PER_DAY, rng=np.random.default_rng(42))
    assert np.array_equal(a.prices, b.prices)


def test_static_source_satisfies_protocol() -> None:
    assert isinstance(StaticSource(), PriceSource)


@pytest.mark.anyio
async def test_stablecoin_skips_sources() -> None:
    src = StaticSource(data={"USDC": points([0.5] * 10)})
    r = PriceSeriesResolver([src])

    resolved = await r.resolve(alloc("USDC", 100), START_MS, END_MS, MS_PER_DAY)

    assert src.calls == []
    assert resolved.source == "stablecoin"
    assert not resolved.used_fallback
    assert np.all(resolved.series.prices == 1.0)


@pytest.mark.anyio
async def test_sources_tried_in_order_until_one_has_data() -> None:
    failing = StaticSource(name="failing", exc=PriceSourceError("down"))
    empty = StaticSource(name="empty")
    good = StaticSource(name="good", data={"XLM": points([0.1, 0.2])})
    never = StaticSource(name="never", data={"XLM": points([9.0])})

    r = PriceSeriesResolver([failing, empty, good, never])
    resolved = await r.resolve(alloc("XLM", 100), START_MS, END_MS, MS_PER_DAY)

    assert resolved.source == "good"
    assert not resolved.used_fallback
    assert resolved.series.prices.tolist() == [0.1, 0.2]
    assert failing.calls == ["XLM"]
    assert empty.calls == ["XLM"]
    assert never.calls == []


@pytest.mark.anyio
async def test_falls_back_to_flagged_synthetic_walk() -> None:
    r = PriceSeriesResolver([StaticSource()], base_prices={"XLM": 0.12}, seed=3)
    resolved = await r.resolve(alloc("XLM", 100), START_MS, END_MS, MS_PER_DAY)

    assert resolved.used_fallback
    assert resolved.source == "synthetic"
    assert len(resolved.series) == 10
    assert resolved.series.prices[0] == pytest.approx(0.12)


@pytest.mark.anyio
async def test_unknown_asset_uses_default_base_price() -> None:
    r = PriceSeriesResolver(seed=3, default_base_price=2.0)
    resolved = await r.resolve(alloc("ZZZ", 100), START_MS, END_MS, MS_PER_DAY)
    assert resolved.series.prices[0] == pytest.approx(2.0)


@pytest.mark.anyio
async def test_seeded_fallback_does_not_depend_on_other_assets() -> None:
    a = PriceSeriesResolver(seed=11)
    b = PriceSeriesResolver(seed=11)

    alone = await a.resolve_all([alloc("AQUA", 100)], START_MS, END_MS, MS_PER_DAY)
    together = await b.resolve_all([alloc("BLND", 50), alloc("AQUA", 50)], START_MS, END_MS, MS_PER_DAY)

    assert np.array_equal(alone["AQUA"].series.prices, together["AQUA"].series.prices)
    assert not np.array_equal(together["AQUA"].series.prices, together["BLND"].series.prices)


@pytest.mark.anyio
async def test_resolve_all_dedupes_asset_codes() -> None:
    src = StaticSource(data={"XLM": points([0.1])})
    r = PriceSeriesResolver([src])
    out = await r.resolve_all([alloc("XLM", 50), alloc("XLM", 50)], START_MS, END_MS, MS_PER_DAY)
    assert list(out) == ["XLM"]
    assert src.calls == ["XLM"]


class _ExplodingCache(TTLCache):
    def get(self, key):
        if key[0] == "BAD":
            raise RuntimeError("cache corrupted")
        return super().get(key)


@pytest.mark.anyio
async def test_one_asset_failure_is_isolated() -> None:
    src = StaticSource(data={"XLM": points([0.1, 0.11]), "BAD": points([5.0])})
    r = PriceSeriesResolver([src], seed=1, cache=_ExplodingCache())

    out = await r.resolve_all([alloc("XLM", 50), alloc("BAD", 50)], START_MS, END_MS, MS_PER_DAY)

    assert out["XLM"].source == "static"
    assert out["BAD"].used_fallback
    assert len(out["BAD"].series) == 10


@pytest.mark.anyio
async def test_cache_avoids_second_fetch() -> None:
    src = StaticSource(data={"XLM": points([0.1, 0.11])})
    r = PriceSeriesResolver([src], cache=TTLCache(default_ttl_s=60))

    first = await r.resolve(alloc("XLM", 100), START_MS, END_MS, MS_PER_DAY)
    second = await r.resolve(alloc("XLM", 100), START_MS, END_MS, MS_PER_DAY)

    assert src.calls == ["XLM"]
    assert second is first


@pytest.mark.anyio
async def test_synthetic_series_is_not_cached() -> None:
    src = StaticSource()
    cache = TTLCache(default_ttl_s=60)
    r = PriceSeriesResolver([src], cache=cache, seed=1)

    await r.resolve(alloc("XLM", 100), START_MS, END_MS, MS_PER_DAY)
    await r.resolve(alloc("XLM", 100), START_MS, END_MS, MS_PER_DAY)

    assert len(cache) == 0
    assert src.calls == ["XLM", "XLM"]


def test_from_config_builds_cache_from_ttl(test_config) -> None:
    r = PriceSeriesResolver.from_config(test_config)
    assert r.seed == 7
    assert r.cache is not None
    assert "USDC" in r.stablecoins

    no_cache = test_config.model_copy(update={"prices": test_config.prices.model_copy(update={"cache_ttl_s": 0})})
    assert PriceSeriesResolver.from_config(no_cache).cache is None
