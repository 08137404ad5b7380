"""vaultsim.backtest.metrics

Performance metrics, computed once from the full run history.

Conventions:
- percentages are returned as percent (5.0 means 5%)
- volatility annualizes tick returns with sqrt(252)
- Sharpe assumes a 0% risk-free rate
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import numpy as np

from vaultsim.backtest.models import AssetAllocation, BacktestMetrics
from vaultsim.backtest.prices import PriceSeries
from vaultsim.core.exceptions import InvalidRangeError
from vaultsim.core.time import MS_PER_DAY

TRADING_DAYS_PER_YEAR = 252
DAYS_PER_YEAR = 365

REAL_DATA_NOTE = "Using real market price data - results reflect actual market conditions."


def stdev(values: Sequence[float] | np.ndarray) -> float:
    """Population standard deviation; 0.0 for fewer than two samples."""

    r = np.asarray(values, dtype=np.float64)
    if r.size < 2:
        return 0.0
    return float(np.std(r, ddof=0))


@dataclass(slots=True)
class DrawdownTracker:
    """Running peak and running maximum drawdown (as a fraction)."""

    peak: float
    max_drawdown: float = 0.0

    def update(self, value: float) -> float:
        if value > self.peak:
            self.peak = value
        drawdown = (self.peak - value) / self.peak if self.peak > 0 else 0.0
        if drawdown > self.max_drawdown:
            self.max_drawdown = drawdown
        return drawdown

    @property
    def amount(self) -> float:
        return self.peak * self.max_drawdown


def annualized_return(initial: float, final: float, days: float) -> float:
    if days <= 0:
        raise InvalidRangeError(f"backtest must span a positive period, got {days} days")
    years = days / DAYS_PER_YEAR
    ratio = final / initial
    if ratio <= 0:
        return -100.0
    # compounded in log space; short windows blow the exponent up
    try:
        growth = math.exp(math.log(ratio) / years)
    except OverflowError:
        growth = math.inf
    if not math.isfinite(growth):
        raise InvalidRangeError(
            f"window of {days:.6g} days is too short to annualize a {(ratio - 1.0) * 100.0:.4g}% return"
        )
    return (growth - 1.0) * 100.0


def win_rate(returns: Sequence[float]) -> float:
    if not returns:
        return 0.0
    return sum(1 for r in returns if r > 0) / len(returns) * 100.0


def buy_and_hold_return(assets: Sequence[AssetAllocation], series: Mapping[str, PriceSeries]) -> float:
    """Return of holding the initial allocation untouched, in percent.

    Uses the first and last point of each asset's series.
    """

    total = 0.0
    for asset in assets:
        s = series.get(asset.asset_code)
        if s is None or len(s) == 0:
            continue
        start_price = float(s.prices[0])
        end_price = float(s.prices[-1])
        if start_price <= 0:
            continue
        total += (end_price - start_price) / start_price * (asset.percentage / 100.0)
    return total * 100.0


def data_source_warning(synthetic_assets: Sequence[str]) -> str:
    if not synthetic_assets:
        return REAL_DATA_NOTE
    return (
        "Using synthetic price data as last resort for "
        + ", ".join(sorted(synthetic_assets))
        + " (no market data available). Results are simulated and not suitable for production decisions."
    )


def compute_metrics(
    *,
    initial_capital: float,
    final_value: float,
    returns: Sequence[float],
    drawdown: DrawdownTracker,
    start_ms: int,
    end_ms: int,
    num_rebalances: int,
    total_fees: float,
    buy_and_hold: float,
    synthetic_assets: Sequence[str] = (),
) -> BacktestMetrics:
    days = (end_ms - start_ms) / MS_PER_DAY
    ann = annualized_return(initial_capital, final_value, days)
    vol = stdev(returns) * math.sqrt(TRADING_DAYS_PER_YEAR) * 100.0

    return BacktestMetrics(
        total_return=(final_value - initial_capital) / initial_capital * 100.0,
        total_return_amount=final_value - initial_capital,
        annualized_return=ann,
        volatility=vol,
        sharpe_ratio=ann / vol if vol > 0 else 0.0,
        max_drawdown=drawdown.max_drawdown * 100.0,
        max_drawdown_amount=drawdown.amount,
        win_rate=win_rate(returns),
        num_rebalances=num_rebalances,
        total_fees=total_fees,
        final_value=final_value,
        buy_and_hold_return=buy_and_hold,
        using_mock_data=bool(synthetic_assets),
        data_source_warning=data_source_warning(synthetic_assets),
    )
