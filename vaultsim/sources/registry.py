"""vaultsim.sources.registry

Every live price source reports for duty.

Registry responsibilities:
- @register("name") decorator
- lookup helpers
- module auto-discovery (import vaultsim.sources.* to trigger decorators)
- build the configured, ordered source list
"""

from __future__ import annotations

import importlib
import pkgutil
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from vaultsim.core.exceptions import ConfigError

if TYPE_CHECKING:
    from vaultsim.backtest.prices import PriceSource
    from vaultsim.core.client import DataClient
    from vaultsim.core.config import Config


_REGISTRY: dict[str, type[Any]] = {}
_DISCOVERED = False


def register(name: str) -> Callable[[type[Any]], type[Any]]:
    def _decorator(cls: type[Any]) -> type[Any]:
        if name in _REGISTRY and _REGISTRY[name] is not cls:
            raise ValueError(f"price source already registered: {name}")

        setattr(cls, "name", name)
        _REGISTRY[name] = cls
        return cls

    return _decorator


def discover() -> None:
    global _DISCOVERED
    if _DISCOVERED:
        return

    pkg_name = "vaultsim.sources"
    pkg = importlib.import_module(pkg_name)

    for m in pkgutil.iter_modules(pkg.__path__, prefix=f"{pkg_name}."):
        if m.name.endswith(".registry"):
            continue
        importlib.import_module(m.name)

    _DISCOVERED = True


def get_source(name: str) -> type[Any]:
    if name not in _REGISTRY:
        discover()
    if name not in _REGISTRY:
        raise KeyError(f"unknown price source: {name}")
    return _REGISTRY[name]


def list_sources() -> list[str]:
    discover()
    return sorted(_REGISTRY)


def build_sources(config: Config, *, client: DataClient) -> list[PriceSource]:
    """Instantiate ``config.prices.sources`` in order.

    Each source class exposes ``from_config(config, client=...)``.
    """

    out: list[PriceSource] = []
    for name in config.prices.sources:
        try:
            cls = get_source(name)
        except KeyError as e:
            raise ConfigError(str(e)) from e
        out.append(cls.from_config(config, client=client))
    return out
