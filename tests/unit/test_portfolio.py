from __future__ import annotations

import pytest

from tests.unit._backtest_fixtures import alloc
from vaultsim.backtest.portfolio import PortfolioState, derive_allocations, valuation_price


@pytest.mark.parametrize(("prices", "expected"), [({"XLM": 0.2}, 0.2), ({}, 1.0), ({"XLM": 0.0}, 1.0), ({"XLM": -3.0}, 1.0), ({"XLM": float("nan")}, 1.0)])
def test_valuation_price(prices: dict[str, float], expected: float) -> None:
    assert valuation_price(prices, "XLM") == expected


def test_seed_converts_capital_into_holdings() -> None:
    p = PortfolioState.seed(1000.0, [alloc("XLM", 60), alloc("BTC", 40)], {"XLM": 0.10, "BTC": 40_000.0})

    assert p.holdings["XLM"] == pytest.approx(6000.0)
    assert p.holdings["BTC"] == pytest.approx(0.01)
    assert p.total_value == pytest.approx(1000.0)
    assert [a.percentage for a in p.allocations] == [60, 40]


def test_revalue_derives_value_and_allocations_from_holdings() -> None:
    p = PortfolioState.seed(1000.0, [alloc("XLM", 50), alloc("USDC", 50)], {"XLM": 0.10, "USDC": 1.0})
    p.revalue({"XLM": 0.30, "USDC": 1.0})

    assert p.total_value == pytest.approx(2000.0)
    assert p.percentage_of("XLM") == pytest.approx(75.0)
    assert p.percentage_of("USDC") == pytest.approx(25.0)
    assert p.percentage_of("BTC") == 0.0


def test_derive_allocations_empty_portfolio() -> None:
    total, allocations = derive_allocations({"XLM": 0.0}, {"XLM": 0.1})
    assert total == 0.0
    assert allocations[0].percentage == 0.0
