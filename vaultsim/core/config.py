"""vaultsim.core.config

Three config surfaces only:
1) `config/default.yaml`
2) `config/user.yaml` (optional overlay, deep-merged)
3) Environment variables (`VAULTSIM_*`, secrets and overrides)

Everything else is derived.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from vaultsim.core.exceptions import ConfigError
from vaultsim.core.time import MS_PER_DAY


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class BacktestConfig(BaseModel):
    default_resolution_ms: int = MS_PER_DAY

    @field_validator("default_resolution_ms")
    @classmethod
    def resolution_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("default_resolution_ms must be > 0")
        return v


class PricesConfig(BaseModel):
    """How series are resolved: stablecoins, live sources, synthetic fallback."""

    stablecoins: list[str] = ["USDC", "USDT", "DAI"]
    sources: list[str] = ["coingecko", "horizon"]
    base_prices: dict[str, float] = {"XLM": 0.12, "USDC": 1.0, "BTC": 45000.0, "ETH": 2500.0}
    default_base_price: float = 1.0
    seed: int | None = None
    cache_ttl_s: float = 300.0


class CoinGeckoConfig(BaseModel):
    base_url: str = "https://api.coingecko.com/api/v3"
    api_key: str = ""
    vs_currency: str = "usd"
    coin_ids: dict[str, str] = {
        "XLM": "stellar",
        "NATIVE": "stellar",
        "BTC": "bitcoin",
        "ETH": "ethereum",
        "USDC": "usd-coin",
        "EURC": "euro-coin",
        "AQUA": "aquarius",
        "BLND": "blend",
    }


class HorizonConfig(BaseModel):
    base_url: str = "https://horizon.stellar.org"
    counter_asset_code: str = "USDC"
    counter_asset_issuer: str = "GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"
    limit: int = 200


class CsvConfig(BaseModel):
    directory: Path | None = None


class ClientSettings(BaseModel):
    rate_limit_rps: float = 1.0
    timeout_s: float = 20.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_s: float = 30.0


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    config_dir: Path = Path("config")

    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    prices: PricesConfig = Field(default_factory=PricesConfig)
    coingecko: CoinGeckoConfig = Field(default_factory=CoinGeckoConfig)
    horizon: HorizonConfig = Field(default_factory=HorizonConfig)
    csv: CsvConfig = Field(default_factory=CsvConfig)
    client: ClientSettings = Field(default_factory=ClientSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "VAULTSIM_", "env_nested_delimiter": "__"}

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        raw = yaml.safe_load(path.read_text()) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")

        user = path.parent / "user.yaml"
        if user.exists() and user != path:
            user_data = yaml.safe_load(user.read_text()) or {}
            if isinstance(user_data, dict):
                raw = _deep_merge(raw, user_data)

        raw.setdefault("config_dir", path.parent)
        return cls(**raw)

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        path = root / "config" / "default.yaml"
        if not path.exists():
            return cls()
        return cls.from_yaml(path)
