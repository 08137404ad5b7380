"""vaultsim.core

Core primitives: config, errors, time, caching and the shared HTTP client.

If a module needs to exist, it should probably depend only on this package.
"""

from .config import Config
from .exceptions import ConfigError, InvalidRangeError, PriceSourceError, VaultsimError
from .time import iso_from_ms, parse_dt, to_ms

__all__ = [
    "Config",
    "ConfigError",
    "InvalidRangeError",
    "PriceSourceError",
    "VaultsimError",
    "iso_from_ms",
    "parse_dt",
    "to_ms",
]
