"""vaultsim.sources.coingecko

CoinGecko historical prices.

``GET /coins/{id}/market_chart/range`` returns ``{"prices": [[ms, price], ...]}``.
Granularity is chosen by CoinGecko from the span of the range; the engine
reads the nearest point per tick, so no resampling happens here.

Symbols map to coin ids through config. Unknown symbols yield no data.
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


def _parse_prices(data: Any) -> list[PricePoint]:
    if not isinstance(data, dict):
        return []
    rows = data.get("prices")
    if not isinstance(rows, list):
        return []

    out: list[PricePoint] = []
    for row in rows:
        if not isinstance(row, (list, tuple)) or len(row) < 2:
            continue
        try:
            ts = int(row[0])
            px = float(row[1])
        except (TypeError, ValueError):
            continue
        if math.isfinite(px) and px > 0:
            out.append(PricePoint(timestamp=ts, price=px))
    return out


@register("coingecko")
class CoinGeckoSource:
    name: str

    def __init__(
        self,
        client: DataClient,
        *,
        base_url: str,
        coin_ids: dict[str, str],
        vs_currency: str = "usd",
        api_key: str = "",
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.coin_ids = {k.upper(): v for k, v in coin_ids.items()}
        self.vs_currency = vs_currency
        self.api_key = api_key

    @classmethod
    def from_config(cls, config: Config, *, client: DataClient) -> CoinGeckoSource:
        cg = config.coingecko
        return cls(client, base_url=cg.base_url, coin_ids=cg.coin_ids, vs_currency=cg.vs_currency, api_key=cg.api_key)

    def coin_id(self, asset_code: str) -> str | None:
        return self.coin_ids.get(asset_code.upper())

    async def fetch(self, asset: AssetAllocation, start_ms: int, end_ms: int, resolution_ms: int) -> list[PricePoint]:
        coin_id = self.coin_id(asset.asset_code)
        if coin_id is None:
            return []

        params = {
            "vs_currency": self.vs_currency,
            "from": start_ms // 1000,
            "to": -(-end_ms // 1000),
        }
        headers = {"x-cg-demo-api-key": self.api_key} if self.api_key else None
        data = await self.client.get_json(
            f"{self.base_url}/coins/{coin_id}/market_chart/range",
            params=params,
            headers=headers,
        )
        return _parse_prices(data)
