"""vaultsim.sources.horizon

Stellar Horizon trade aggregations.

Prices the asset against a USDC counter asset using the close of each
aggregation bucket. Horizon only accepts a fixed set of bucket sizes; the
requested resolution is snapped down to the nearest one. Pages are followed
through ``_links.next`` up to ``max_pages``.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

from vaultsim.backtest.models import AssetAllocation
from vaultsim.backtest.prices import PricePoint
from vaultsim.sources.registry import register

if TYPE_CHECKING:
    from vaultsim.core.client import DataClient
    from vaultsim.core.config import Config

SUPPORTED_RESOLUTIONS_MS = (60_000, 300_000, 900_000, 3_600_000, 86_400_000, 604_800_000)
NATIVE_CODES = frozenset({"XLM", "NATIVE"})


def snap_resolution(resolution_ms: int) -> int:
    fitting = [r for r in SUPPORTED_RESOLUTIONS_MS if r <= resolution_ms]
    return fitting[-1] if fitting else SUPPORTED_RESOLUTIONS_MS[0]


def _asset_type(code: str) -> str:
    return "credit_alphanum4" if len(code) <= 4 else "credit_alphanum12"


def _parse_records(data: Any) -> tuple[list[PricePoint], str | None]:
    if not isinstance(data, dict):
        return [], None
    records = (data.get("_embedded") or {}).get("records") or []
    out: list[PricePoint] = []
    for rec in records:
        if not isinstance(rec, dict):
            continue
        try:
            ts = int(rec["timestamp"])
            px = float(rec["close"])
        except (KeyError, TypeError, ValueError):
            continue
        if math.isfinite(px) and px > 0:
            out.append(PricePoint(timestamp=ts, price=px))
    next_href = ((data.get("_links") or {}).get("next") or {}).get("href")
    return out, next_href if records else None


@register("horizon")
class HorizonSource:
    name: str

    def __init__(
        self,
        client: DataClient,
        *,
        base_url: str,
        counter_asset_code: str,
        counter_asset_issuer: str,
        limit: int = 200,
        max_pages: int = 10,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.counter_asset_code = counter_asset_code
        self.counter_asset_issuer = counter_asset_issuer
        self.limit = limit
        self.max_pages = max_pages

    @classmethod
    def from_config(cls, config: Config, *, client: DataClient) -> HorizonSource:
        hz = config.horizon
        return cls(
            client,
            base_url=hz.base_url,
            counter_asset_code=hz.counter_asset_code,
            counter_asset_issuer=hz.counter_asset_issuer,
            limit=hz.limit,
        )

    def params(self, asset: AssetAllocation, start_ms: int, end_ms: int, resolution_ms: int) -> dict[str, Any] | None:
        code = asset.asset_code.upper()
        bucket = snap_resolution(resolution_ms)
        params: dict[str, Any] = {
            "counter_asset_type": _asset_type(self.counter_asset_code),
            "counter_asset_code": self.counter_asset_code,
            "counter_asset_issuer": self.counter_asset_issuer,
            "start_time": (start_ms // bucket) * bucket,
            "end_time": -(-end_ms // bucket) * bucket,
            "resolution": bucket,
            "limit": self.limit,
            "order": "asc",
        }
        if code in NATIVE_CODES:
            params["base_asset_type"] = "native"
        elif asset.asset_issuer:
            params["base_asset_type"] = _asset_type(asset.asset_code)
            params["base_asset_code"] = asset.asset_code
            params["base_asset_issuer"] = asset.asset_issuer
        else:
            return None
        return params

    async def fetch(self, asset: AssetAllocation, start_ms: int, end_ms: int, resolution_ms: int) -> list[PricePoint]:
        params = self.params(asset, start_ms, end_ms, resolution_ms)
        if params is None:
            return []

        points: list[PricePoint] = []
        data = await self.client.get_json(f"{self.base_url}/trade_aggregations", params=params)
        for _ in range(self.max_pages):
            page, next_href = _parse_records(data)
            points.extend(page)
            if not next_href or len(page) < self.limit:
                break
            data = await self.client.get_json(next_href)
        return points
