"""Market data: symbol resolution, price cache and candle store.

The MT5 gateway (mt5_gateway) is not imported here: it needs the
Windows-only MetaTrader5 package.
"""
from .symbol_resolver import SymbolResolver, Resolution, ResolvedSymbolEntry
from .price_cache import PriceCache, FetchResult
from .candle_store import CandleStore

__all__ = [
    'SymbolResolver', 'Resolution', 'ResolvedSymbolEntry',
    'PriceCache', 'FetchResult', 'CandleStore',
]
