from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from tests.unit._backtest_fixtures import alloc, make_request, points, static_resolver
from vaultsim.backtest.engine import run_backtest
from vaultsim.backtest.io import dump_result, load_request, result_to_dict
from vaultsim.backtest.models import (
    AllocationCondition,
    BacktestRequest,
    PositionAction,
    RebalanceTargetAction,
)

REQUEST = {
    "vaultConfig": {
        "name": "Balanced XLM",
        "owner": "GOWNER",
        "assets": [
            {"assetId": "native", "assetCode": "XLM", "percentage": 60},
            {"assetId": "usdc", "assetCode": "USDC", "assetIssuer": "GA5Z", "percentage": 40},
        ],
        "rules": [
            {
                "id": "drift",
                "name": "Drift",
                "conditions": [{"type": "allocation", "operator": "gt", "value": 5, "assetId": "XLM"}],
                "actions": [
                    {
                        "type": "rebalance",
                        "targetAllocations": [
                            {"assetId": "native", "assetCode": "XLM", "percentage": 60},
                            {"assetId": "usdc", "assetCode": "USDC", "percentage": 40},
                        ],
                    },
                    {"type": "provide_liquidity", "params": {"pool": "XLM/USDC"}},
                ],
                "priority": 2,
            }
        ],
        "managementFee": 1.5,
        "isPublic": True,
    },
    "startTime": "2024-01-01T00:00:00Z",
    "endTime": "2024-01-31T00:00:00Z",
    "initialCapital": 10000,
}


def test_request_parses_camel_case() -> None:
    req = BacktestRequest.model_validate(REQUEST)

    vault = req.vault_config
    assert vault.management_fee == 1.5
    assert vault.is_public is True
    assert vault.assets[1].asset_issuer == "GA5Z"
    rule = vault.rules[0]
    assert isinstance(rule.conditions[0], AllocationCondition)
    assert isinstance(rule.actions[0], RebalanceTargetAction)
    assert isinstance(rule.actions[1], PositionAction)
    assert rule.enabled is True
    assert rule.target_percentage("USDC") == 40


def test_unknown_action_type_is_rejected() -> None:
    bad = json.loads(json.dumps(REQUEST))
    bad["vaultConfig"]["rules"][0]["actions"][0]["type"] = "swap"
    with pytest.raises(ValidationError):
        BacktestRequest.model_validate(bad)


def test_timestamps_must_be_iso8601() -> None:
    bad = dict(REQUEST, startTime="yesterday")
    with pytest.raises(ValidationError):
        BacktestRequest.model_validate(bad)


def test_load_request_json_and_yaml(tmp_path: Path) -> None:
    import yaml

    j = tmp_path / "req.json"
    j.write_text(json.dumps(REQUEST))
    y = tmp_path / "req.yaml"
    y.write_text(yaml.safe_dump(REQUEST))

    assert load_request(j) == load_request(y)


def test_load_request_rejects_non_mapping(tmp_path: Path) -> None:
    p = tmp_path / "req.yaml"
    p.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_request(p)


def test_result_dump_uses_camel_case(tmp_path: Path) -> None:
    req = make_request([alloc("XLM", 100)], days=3)
    res = run_backtest(req, resolver=static_resolver({"XLM": points([0.10] * 3)}))

    out = tmp_path / "out" / "result.json"
    text = dump_result(res, out)
    data = json.loads(out.read_text())

    assert json.loads(text) == data
    assert set(data) == {"request", "metrics", "timeline", "portfolioValueHistory", "allocationHistory", "dataSources"}
    assert "numRebalances" in data["metrics"]
    assert "usingMockData" in data["metrics"]
    assert "startTime" in data["request"]
    deposit = data["timeline"][0]
    assert deposit["type"] == "deposit"
    assert "triggeredRule" not in deposit
    assert deposit["portfolioValue"] == 1000.0
    assert data["portfolioValueHistory"][0] == {"timestamp": "2024-01-01T00:00:00.000Z", "value": pytest.approx(1000.0)}


def test_result_round_trips_through_model() -> None:
    req = make_request([alloc("XLM", 100)], days=2)
    res = run_backtest(req, resolver=static_resolver({"XLM": points([0.10] * 2)}))
    assert type(res).model_validate(result_to_dict(res)) == res
