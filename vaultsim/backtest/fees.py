"""vaultsim.backtest.fees

Management fee accrual.

The annual fee is amortized per tick and taken out of aggregate value.
Holdings are not sold down; the next revaluation starts from holdings again,
so the deduction is realized only if a rebalance happens on the same tick.
"""

from __future__ import annotations

from vaultsim.backtest.portfolio import PortfolioState
from vaultsim.core.time import MS_PER_DAY

DAYS_PER_YEAR = 365


def period_fee(total_value: float, management_fee_pct: float | None, resolution_ms: int) -> float:
    if not management_fee_pct or management_fee_pct <= 0:
        return 0.0
    daily_rate = management_fee_pct / 100.0 / DAYS_PER_YEAR
    days_in_period = resolution_ms / MS_PER_DAY
    return total_value * daily_rate * days_in_period


def accrue_management_fee(portfolio: PortfolioState, management_fee_pct: float | None, resolution_ms: int) -> float:
    """Deduct one tick of management fee from total value; return the amount."""

    fee = period_fee(portfolio.total_value, management_fee_pct, resolution_ms)
    if fee > 0:
        portfolio.total_value -= fee
        return fee
    return 0.0
