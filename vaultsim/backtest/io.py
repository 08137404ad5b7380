"""vaultsim.backtest.io

Lightweight IO helpers for backtesting.

Requests are JSON or YAML documents shaped like :class:`BacktestRequest`
(camelCase keys). Results are written as JSON with camelCase keys; absent
optional fields are omitted.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from vaultsim.backtest.models import BacktestRequest, BacktestResult


def load_request(path: str | Path) -> BacktestRequest:
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    try:
        raw: Any = yaml.safe_load(text) if p.suffix.lower() in {".yaml", ".yml"} else json.loads(text)
    except yaml.YAMLError as e:
        raise ValueError(f"request is not valid YAML: {p}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"request must be a mapping: {p}")
    return BacktestRequest.model_validate(raw)


def result_to_dict(result: BacktestResult) -> dict[str, Any]:
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


def dump_result(result: BacktestResult, path: str | Path | None = None, *, indent: int | None = 2) -> str:
    text = json.dumps(result_to_dict(result), indent=indent)
    if path is not None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text + "\n", encoding="utf-8")
    return text
