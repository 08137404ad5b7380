"""vaultsim.sources.csv_dir

Offline price history from a directory of CSV files.

One file per asset: ``<ASSET_CODE>.csv``.

CSV schema:
- required: timestamp (epoch ms or ISO-8601)
- required: price, or close when price is absent

Rows that do not parse are dropped. Rows outside the requested window are
filtered out.
"""

from __future__ import annotations

import asyncio
import csv
import math
from pathlib import Path
from typing import TYPE_CHECKING

from vaultsim.backtest.models import AssetAllocation
from vaultsim.backtest.prices import PricePoint
from vaultsim.core.exceptions import ConfigError
from vaultsim.core.time import parse_timestamp_ms
from vaultsim.sources.registry import register

if TYPE_CHECKING:
    from vaultsim.core.client import DataClient
    from vaultsim.core.config import Config


def load_prices_csv(path: str | Path) -> list[PricePoint]:
    p = Path(path)
    rows: list[dict[str, str]] = []
    with p.open("r", encoding="utf-8", newline="") as f:
        r = csv.DictReader(f)
        for row in r:
            rows.append({k.strip().lower(): (v.strip() if isinstance(v, str) else "") for k, v in row.items() if k is not None})

    if not rows:
        return []

    if "timestamp" not in rows[0]:
        raise ValueError(f"CSV missing required column: timestamp ({p})")
    price_col = "price" if "price" in rows[0] else "close" if "close" in rows[0] else None
    if price_col is None:
        raise ValueError(f"CSV missing required column: price ({p})")

    out: list[PricePoint] = []
    for row in rows:
        try:
            ts = parse_timestamp_ms(row["timestamp"])
            px = float(row[price_col])
        except ValueError:
            continue
        if math.isfinite(px):
            out.append(PricePoint(timestamp=ts, price=px))
    return out


@register("csv")
class CsvDirectorySource:
    name: str

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    @classmethod
    def from_config(cls, config: Config, *, client: DataClient) -> CsvDirectorySource:
        if config.csv.directory is None:
            raise ConfigError("csv source enabled but csv.directory is not set")
        return cls(config.csv.directory)

    def path_for(self, asset_code: str) -> Path | None:
        for candidate in (asset_code, asset_code.upper()):
            p = self.directory / f"{candidate}.csv"
            if p.exists():
                return p
        return None

    async def fetch(self, asset: AssetAllocation, start_ms: int, end_ms: int, resolution_ms: int) -> list[PricePoint]:
        path = self.path_for(asset.asset_code)
        if path is None:
            return []
        points = await asyncio.to_thread(load_prices_csv, path)
        return [pt for pt in points if start_ms <= pt.timestamp <= end_ms]
