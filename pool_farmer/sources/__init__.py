"""Pool data sources."""
from .defillama import DefiLlamaSource, parse_pool_record

__all__ = ["DefiLlamaSource", "parse_pool_record"]
