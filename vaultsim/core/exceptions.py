"""vaultsim.core.exceptions

Errors are part of the interface.

Missing market data is not an error here. Bad configuration is.
"""

from __future__ import annotations


class VaultsimError(Exception):
    """Base exception for vaultsim."""


class ConfigError(VaultsimError):
    """Configuration is missing, invalid, or inconsistent."""


class InvalidRangeError(ConfigError):
    """Backtest window, resolution or capital cannot produce a simulation."""


class PriceSourceError(VaultsimError):
    """A live price source failed. The resolver treats this as no data."""
