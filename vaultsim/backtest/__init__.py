"""vaultsim.backtest

Vault backtest engine.

Replays a vault's target allocations and rebalancing rules over historical
prices, charges fees, honours cooldowns and reports performance metrics
against a buy-and-hold baseline.
"""

from vaultsim.backtest.engine import arun_backtest, run_backtest
from vaultsim.backtest.models import BacktestRequest, BacktestResult
from vaultsim.backtest.prices import PricePoint, PriceSeriesResolver, PriceSource

__all__ = [
    "BacktestRequest",
    "BacktestResult",
    "PricePoint",
    "PriceSeriesResolver",
    "PriceSource",
    "arun_backtest",
    "run_backtest",
]
