"""vaultsim.backtest.portfolio

Portfolio state for one simulation run.

Holdings (quantity per asset code) are the only stored truth. Total value and
allocation percentages are derived from holdings and the current prices.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from vaultsim.backtest.models import AssetAllocation

logger = logging.getLogger(__name__)

# asset code -> price at the current tick
Prices = Mapping[str, float]


def valuation_price(prices: Prices, asset_code: str) -> float:
    """Price used to value or buy an asset; unknown or non-positive prices count as 1.0."""

    p = prices.get(asset_code)
    if p is None or not math.isfinite(p) or p <= 0:
        return 1.0
    return float(p)


def derive_allocations(holdings: Mapping[str, float], prices: Prices) -> tuple[float, list[AssetAllocation]]:
    values = {code: qty * valuation_price(prices, code) for code, qty in holdings.items()}
    total = sum(values.values())
    allocations = [
        AssetAllocation(
            asset_id=code,
            asset_code=code,
            percentage=(value / total) * 100.0 if total > 0 else 0.0,
        )
        for code, value in values.items()
    ]
    return total, allocations


@dataclass(slots=True)
class PortfolioState:
    holdings: dict[str, float] = field(default_factory=dict)
    total_value: float = 0.0
    allocations: list[AssetAllocation] = field(default_factory=list)

    @classmethod
    def seed(cls, capital: float, targets: Sequence[AssetAllocation], prices: Prices) -> PortfolioState:
        """Convert initial capital into holdings at the starting prices."""

        holdings: dict[str, float] = {}
        actual = 0.0
        for target in targets:
            price = valuation_price(prices, target.asset_code)
            qty = (capital * target.percentage / 100.0) / price
            holdings[target.asset_code] = qty
            actual += qty * price

        logger.debug("portfolio_seeded", extra={"target_value": capital, "actual_value": actual})
        return cls(
            holdings=holdings,
            total_value=actual,
            allocations=list(targets),
        )

    def revalue(self, prices: Prices) -> None:
        self.total_value, self.allocations = derive_allocations(self.holdings, prices)

    def percentage_of(self, asset_code: str) -> float:
        for a in self.allocations:
            if a.asset_code == asset_code:
                return a.percentage
        return 0.0
