"""vaultsim.sources

Live price-history sources consumed by the resolver.

Each source answers "what did this asset cost between these times" or
returns nothing. None of them retry; the resolver moves on.
"""

from vaultsim.sources.registry import build_sources, get_source, list_sources, register

__all__ = ["build_sources", "get_source", "list_sources", "register"]
