"""vaultsim.backtest.models

Wire shapes for a backtest: the request going in and the result coming out.

Pydantic models own IO boundaries. Keys are camelCase on the wire and
snake_case in Python; both spellings are accepted on input.

Conditions and actions are closed tagged unions on ``type``. Each variant
carries only the fields its evaluation needs.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from vaultsim.core.time import parse_dt

Operator = Literal["gt", "lt", "eq", "gte", "lte"]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class AssetAllocation(_WireModel):
    """One asset and its share of the portfolio, in percent (0-100)."""

    asset_id: str
    asset_code: str
    asset_issuer: str | None = None
    percentage: float


# -----------------
# Conditions
# -----------------


class TimeCondition(_WireModel):
    """Holds once ``value`` ms have passed since the rule last fired."""

    type: Literal["time"] = "time"
    value: float


class PriceCondition(_WireModel):
    type: Literal["price"] = "price"
    operator: Operator
    value: float
    asset_id: str | None = None


class AllocationCondition(_WireModel):
    """Holds when the asset drifts at least ``value`` points from its target."""

    type: Literal["allocation"] = "allocation"
    value: float
    asset_id: str | None = None


class ApyCondition(_WireModel):
    """Accepted so stored vaults still load. Never holds."""

    type: Literal["apy"] = "apy"
    operator: Operator
    value: float
    asset_id: str | None = None


RebalanceCondition = Annotated[
    TimeCondition | PriceCondition | AllocationCondition | ApyCondition,
    Field(discriminator="type"),
]


# -----------------
# Actions
# -----------------


class RebalanceTargetAction(_WireModel):
    type: Literal["rebalance"] = "rebalance"
    target_allocations: list[AssetAllocation] | None = None
    params: dict[str, Any] | None = None


class PositionAction(_WireModel):
    """Staking and liquidity actions. Accepted, not executed by the simulator."""

    type: Literal["stake", "unstake", "provide_liquidity", "remove_liquidity"]
    target_allocations: list[AssetAllocation] | None = None
    params: dict[str, Any] | None = None


RebalanceAction = Annotated[RebalanceTargetAction | PositionAction, Field(discriminator="type")]


class RebalanceRule(_WireModel):
    id: str
    name: str
    description: str | None = None
    conditions: list[RebalanceCondition] = Field(default_factory=list)
    actions: list[RebalanceAction] = Field(default_factory=list)
    enabled: bool = True
    priority: int = 0

    def rebalance_action(self) -> RebalanceTargetAction | None:
        """First ``rebalance`` action of the rule, if any."""

        for action in self.actions:
            if isinstance(action, RebalanceTargetAction):
                return action
        return None

    def target_percentage(self, asset_code: str) -> float:
        action = self.rebalance_action()
        if action is None or not action.target_allocations:
            return 0.0
        for a in action.target_allocations:
            if a.asset_code == asset_code:
                return a.percentage
        return 0.0


class VaultConfig(_WireModel):
    name: str = "vault"
    description: str | None = None
    owner: str = ""
    assets: list[AssetAllocation]
    rules: list[RebalanceRule] = Field(default_factory=list)
    min_deposit: float | None = None
    max_deposit: float | None = None
    management_fee: float | None = None  # annual, percent
    performance_fee: float | None = None  # carried, not applied
    is_public: bool = False


class BacktestRequest(_WireModel):
    vault_config: VaultConfig
    start_time: str
    end_time: str
    initial_capital: float
    resolution: int | None = None  # ms; None means the configured default

    @field_validator("start_time", "end_time")
    @classmethod
    def must_be_iso8601(cls, v: str) -> str:
        parse_dt(v)
        return v


# -----------------
# Result
# -----------------

TransactionType = Literal["deposit", "withdraw", "rebalance", "fee"]


class BacktestTransaction(_WireModel):
    timestamp: str
    type: TransactionType
    description: str
    portfolio_value: float
    allocations: list[AssetAllocation]
    triggered_rule: str | None = None


class ValuePoint(_WireModel):
    timestamp: str
    value: float


class AllocationPoint(_WireModel):
    timestamp: str
    allocations: list[AssetAllocation]


class BacktestMetrics(_WireModel):
    total_return: float  # percent
    total_return_amount: float
    annualized_return: float  # percent
    volatility: float  # annualized stdev of tick returns, percent
    sharpe_ratio: float
    max_drawdown: float  # percent
    max_drawdown_amount: float
    win_rate: float  # percent of ticks with a positive return
    num_rebalances: int
    total_fees: float
    final_value: float
    buy_and_hold_return: float  # percent
    using_mock_data: bool = False
    data_source_warning: str = ""


class BacktestResult(_WireModel):
    request: BacktestRequest
    metrics: BacktestMetrics
    timeline: list[BacktestTransaction]
    portfolio_value_history: list[ValuePoint]
    allocation_history: list[AllocationPoint]
    data_sources: dict[str, str] = Field(default_factory=dict)
