"""vaultsim.backtest.rules

Rule evaluation.

A rule fires when it is enabled and every one of its conditions holds.
All firing rules are returned, highest priority first; equal priorities keep
their configured order.

Cooldowns:
- global: 24h between any two rebalancing ticks (fixed)
- per rule: the clock that ``time`` conditions read
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import assert_never

from vaultsim.backtest.models import (
    AllocationCondition,
    ApyCondition,
    Operator,
    PriceCondition,
    RebalanceCondition,
    RebalanceRule,
    TimeCondition,
)
from vaultsim.backtest.portfolio import PortfolioState, Prices
from vaultsim.core.time import MS_PER_DAY

logger = logging.getLogger(__name__)

GLOBAL_COOLDOWN_MS = MS_PER_DAY
EQ_EPSILON = 0.01


def compare(actual: float, operator: Operator, expected: float) -> bool:
    match operator:
        case "gt":
            return actual > expected
        case "lt":
            return actual < expected
        case "eq":
            return abs(actual - expected) < EQ_EPSILON
        case "gte":
            return actual >= expected
        case "lte":
            return actual <= expected
        case _:
            assert_never(operator)


@dataclass(slots=True)
class CooldownClock:
    """Last trigger times in epoch ms. Never-triggered reads as 0 (the epoch)."""

    last_global_ms: int = 0
    last_by_rule: dict[str, int] = field(default_factory=dict)

    def can_rebalance(self, now_ms: int) -> bool:
        return (now_ms - self.last_global_ms) >= GLOBAL_COOLDOWN_MS

    def last_trigger(self, rule_id: str) -> int:
        return self.last_by_rule.get(rule_id, 0)

    def mark(self, rule_id: str, now_ms: int) -> None:
        self.last_by_rule[rule_id] = now_ms
        self.last_global_ms = now_ms


def condition_met(
    rule: RebalanceRule,
    condition: RebalanceCondition,
    *,
    portfolio: PortfolioState,
    prices: Prices,
    now_ms: int,
    clock: CooldownClock,
) -> bool:
    match condition:
        case TimeCondition(value=interval):
            return (now_ms - clock.last_trigger(rule.id)) >= interval
        case AllocationCondition(asset_id=None) | PriceCondition(asset_id=None):
            # nothing to measure against; does not block the rule
            return True
        case AllocationCondition(asset_id=asset, value=threshold):
            current = portfolio.percentage_of(asset)
            target = rule.target_percentage(asset)
            deviation = abs(current - target)
            met = deviation >= threshold
            logger.debug(
                "allocation_check",
                extra={"rule": rule.id, "asset": asset, "current": current, "target": target, "met": met},
            )
            return met
        case PriceCondition(asset_id=asset, operator=op, value=expected):
            return compare(prices.get(asset) or 0.0, op, expected)
        case ApyCondition():
            return False
        case _:
            assert_never(condition)


class RuleEngine:
    def __init__(self, rules: Sequence[RebalanceRule]) -> None:
        self.rules = list(rules)

    def triggered(self, *, portfolio: PortfolioState, prices: Prices, now_ms: int, clock: CooldownClock) -> list[RebalanceRule]:
        out: list[RebalanceRule] = []
        for rule in self.rules:
            if not rule.enabled:
                continue
            if all(
                condition_met(rule, c, portfolio=portfolio, prices=prices, now_ms=now_ms, clock=clock)
                for c in rule.conditions
            ):
                out.append(rule)
        # sorted() is stable: equal priorities keep configured order
        return sorted(out, key=lambda r: r.priority, reverse=True)
