"""vaultsim.backtest.engine

Backtest entry point.

One run is a straight line:
- INITIALIZING: validate the window, resolve every asset's series (fan-out,
  then barrier), seed the portfolio from starting prices
- RUNNING: one pass per tick from start to end inclusive
- FINALIZING: metrics over the full history

Per tick: prices -> revalue -> management fee -> rules (if the global
cooldown allows) -> history -> drawdown.

Nothing is shared between runs. Concurrent backtests need no locking.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from vaultsim.backtest.fees import accrue_management_fee
from vaultsim.backtest.metrics import DrawdownTracker, buy_and_hold_return, compute_metrics
from vaultsim.backtest.models import (
    AllocationPoint,
    BacktestRequest,
    BacktestResult,
    BacktestTransaction,
    PositionAction,
    ValuePoint,
)
from vaultsim.backtest.portfolio import PortfolioState
from vaultsim.backtest.prices import PriceSeriesResolver, ResolvedSeries
from vaultsim.backtest.rebalance import execute_rebalance
from vaultsim.backtest.rules import CooldownClock, RuleEngine
from vaultsim.core.config import Config
from vaultsim.core.exceptions import InvalidRangeError
from vaultsim.core.time import iso_from_ms, to_ms

logger = logging.getLogger(__name__)


class Phase(StrEnum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    FINALIZING = "finalizing"


@dataclass(frozen=True, slots=True)
class Window:
    start_ms: int
    end_ms: int
    resolution_ms: int


def build_window(request: BacktestRequest, *, default_resolution_ms: int) -> Window:
    start_ms = to_ms(request.start_time)
    end_ms = to_ms(request.end_time)
    resolution_ms = request.resolution if request.resolution is not None else default_resolution_ms

    if end_ms <= start_ms:
        raise InvalidRangeError(f"endTime must be after startTime ({request.start_time} .. {request.end_time})")
    if resolution_ms <= 0:
        raise InvalidRangeError(f"resolution must be > 0 ms, got {resolution_ms}")
    if request.initial_capital <= 0:
        raise InvalidRangeError(f"initialCapital must be > 0, got {request.initial_capital}")
    return Window(start_ms=start_ms, end_ms=end_ms, resolution_ms=resolution_ms)


@dataclass(slots=True)
class SimulationDriver:
    """Tick loop over pre-resolved series. Synchronous; single use."""

    request: BacktestRequest
    window: Window
    resolved: Mapping[str, ResolvedSeries]

    phase: Phase = Phase.INITIALIZING
    portfolio: PortfolioState = field(default_factory=PortfolioState)
    clock: CooldownClock = field(default_factory=CooldownClock)
    drawdown: DrawdownTracker = field(default_factory=lambda: DrawdownTracker(peak=0.0))
    timeline: list[BacktestTransaction] = field(default_factory=list)
    value_history: list[ValuePoint] = field(default_factory=list)
    allocation_history: list[AllocationPoint] = field(default_factory=list)
    returns: list[float] = field(default_factory=list)
    num_rebalances: int = 0
    total_fees: float = 0.0
    rules: RuleEngine = field(init=False)

    def __post_init__(self) -> None:
        self.rules = RuleEngine(self.request.vault_config.rules)

    def prices_at(self, t_ms: int) -> dict[str, float]:
        out: dict[str, float] = {}
        for code, r in self.resolved.items():
            p = r.series.nearest(t_ms)
            if p is not None:
                out[code] = p
        return out

    def run(self) -> BacktestResult:
        self._initialize()
        self.phase = Phase.RUNNING
        previous_value = self.request.initial_capital
        t = self.window.start_ms
        while t <= self.window.end_ms:
            previous_value = self._tick(t, previous_value)
            t += self.window.resolution_ms
        self.phase = Phase.FINALIZING
        return self._finalize()

    def _initialize(self) -> None:
        vault = self.request.vault_config
        capital = self.request.initial_capital

        for rule in vault.rules:
            for action in rule.actions:
                if isinstance(action, PositionAction):
                    logger.warning("unsupported_action_ignored", extra={"rule": rule.id, "action": action.type})

        start_prices = self.prices_at(self.window.start_ms)
        self.portfolio = PortfolioState.seed(capital, vault.assets, start_prices)
        self.drawdown = DrawdownTracker(peak=capital)
        self.timeline.append(
            BacktestTransaction(
                timestamp=iso_from_ms(self.window.start_ms),
                type="deposit",
                description=f"Initial deposit of {capital:g} USDC",
                portfolio_value=capital,
                allocations=list(vault.assets),
            )
        )

    def _tick(self, t_ms: int, previous_value: float) -> float:
        vault = self.request.vault_config
        timestamp = iso_from_ms(t_ms)
        prices = self.prices_at(t_ms)

        self.portfolio.revalue(prices)
        self.total_fees += accrue_management_fee(self.portfolio, vault.management_fee, self.window.resolution_ms)

        if self.clock.can_rebalance(t_ms):
            triggered = self.rules.triggered(portfolio=self.portfolio, prices=prices, now_ms=t_ms, clock=self.clock)
            for rule in triggered:
                fee = execute_rebalance(self.portfolio, rule, prices)
                if fee is None:
                    continue
                self.total_fees += fee
                self.num_rebalances += 1
                self.clock.mark(rule.id, t_ms)
                self.timeline.append(
                    BacktestTransaction(
                        timestamp=timestamp,
                        type="rebalance",
                        description=f"Rebalanced: {rule.name}",
                        portfolio_value=self.portfolio.total_value,
                        allocations=list(self.portfolio.allocations),
                        triggered_rule=rule.id,
                    )
                )

        value = self.portfolio.total_value
        self.value_history.append(ValuePoint(timestamp=timestamp, value=value))
        self.allocation_history.append(
            AllocationPoint(timestamp=timestamp, allocations=list(self.portfolio.allocations))
        )
        if previous_value > 0:
            self.returns.append((value - previous_value) / previous_value)
        self.drawdown.update(value)
        return value

    def _finalize(self) -> BacktestResult:
        vault = self.request.vault_config
        synthetic = [code for code, r in self.resolved.items() if r.used_fallback]
        metrics = compute_metrics(
            initial_capital=self.request.initial_capital,
            final_value=self.portfolio.total_value,
            returns=self.returns,
            drawdown=self.drawdown,
            start_ms=self.window.start_ms,
            end_ms=self.window.end_ms,
            num_rebalances=self.num_rebalances,
            total_fees=self.total_fees,
            buy_and_hold=buy_and_hold_return(vault.assets, {c: r.series for c, r in self.resolved.items()}),
            synthetic_assets=synthetic,
        )
        return BacktestResult(
            request=self.request,
            metrics=metrics,
            timeline=self.timeline,
            portfolio_value_history=self.value_history,
            allocation_history=self.allocation_history,
            data_sources={c: r.source for c, r in self.resolved.items()},
        )


def _coerce_request(request: BacktestRequest | Mapping[str, Any]) -> BacktestRequest:
    if isinstance(request, BacktestRequest):
        return request
    return BacktestRequest.model_validate(request)


async def _resolve_with_default_sources(config: Config, window: Window, request: BacktestRequest) -> dict[str, ResolvedSeries]:
    # Lazy imports: live sources pull in the HTTP stack.
    from vaultsim.core.client import ClientConfig, DataClient
    from vaultsim.sources import build_sources

    async with DataClient(ClientConfig(**config.client.model_dump())) as client:
        resolver = PriceSeriesResolver.from_config(config, sources=build_sources(config, client=client))
        return await resolver.resolve_all(
            request.vault_config.assets, window.start_ms, window.end_ms, window.resolution_ms
        )


async def arun_backtest(
    request: BacktestRequest | Mapping[str, Any],
    *,
    resolver: PriceSeriesResolver | None = None,
    config: Config | None = None,
) -> BacktestResult:
    """Run one backtest. Use from inside an event loop."""

    config = config or Config()
    req = _coerce_request(request)
    window = build_window(req, default_resolution_ms=config.backtest.default_resolution_ms)

    logger.info(
        "backtest_started",
        extra={
            "vault": req.vault_config.name,
            "assets": [a.asset_code for a in req.vault_config.assets],
            "rules": len(req.vault_config.rules),
            "start": req.start_time,
            "end": req.end_time,
            "resolution_ms": window.resolution_ms,
        },
    )

    if resolver is None:
        resolved = await _resolve_with_default_sources(config, window, req)
    else:
        resolved = await resolver.resolve_all(req.vault_config.assets, window.start_ms, window.end_ms, window.resolution_ms)

    result = SimulationDriver(request=req, window=window, resolved=resolved).run()

    logger.info(
        "backtest_finished",
        extra={
            "vault": req.vault_config.name,
            "final_value": result.metrics.final_value,
            "rebalances": result.metrics.num_rebalances,
            "using_mock_data": result.metrics.using_mock_data,
        },
    )
    return result


def run_backtest(
    request: BacktestRequest | Mapping[str, Any],
    *,
    resolver: PriceSeriesResolver | None = None,
    config: Config | None = None,
) -> BacktestResult:
    """Synchronous wrapper around :func:`arun_backtest`.

    Must not be called from a running event loop.
    """

    return asyncio.run(arun_backtest(request, resolver=resolver, config=config))
