"""vaultsim: vault strategy backtesting.

Replays target allocations and rebalancing rules over historical prices
and reports what the strategy would have done.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
