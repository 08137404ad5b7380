"""vaultsim.backtest.rebalance

Rebalance execution.

A flat 0.1% of pre-fee value is charged per rebalance, independent of the
vault's annual management fee. What remains is redistributed per the rule's
target allocations and replaces the previous holdings wholesale.
"""

from __future__ import annotations

import logging

from vaultsim.backtest.models import RebalanceRule
from vaultsim.backtest.portfolio import PortfolioState, Prices, valuation_price

logger = logging.getLogger(__name__)

REBALANCE_FEE_RATE = 0.001


def execute_rebalance(portfolio: PortfolioState, rule: RebalanceRule, prices: Prices) -> float | None:
    """Apply the rule's target allocation in place.

    Returns the fee charged, or None when the rule has nothing executable
    (no ``rebalance`` action, or one without target allocations).
    """

    action = rule.rebalance_action()
    if action is None or not action.target_allocations:
        logger.warning("rule_skipped_malformed", extra={"rule": rule.id})
        return None

    fee = portfolio.total_value * REBALANCE_FEE_RATE
    value_after_fee = portfolio.total_value - fee

    holdings: dict[str, float] = {}
    for target in action.target_allocations:
        target_value = value_after_fee * target.percentage / 100.0
        holdings[target.asset_code] = target_value / valuation_price(prices, target.asset_code)

    portfolio.holdings = holdings
    portfolio.allocations = list(action.target_allocations)
    portfolio.total_value = value_after_fee

    logger.info("rebalance_executed", extra={"rule": rule.id, "fee": fee, "value": value_after_fee})
    return fee
