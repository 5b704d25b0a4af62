from .source import PriceSource, classify_symbol, normalize_symbol
from .store import InMemoryPriceStore, PriceStore
from .cache import ParquetPriceStore

__all__ = [
    "PriceSource",
    "PriceStore",
    "InMemoryPriceStore",
    "ParquetPriceStore",
    "classify_symbol",
    "normalize_symbol",
]
