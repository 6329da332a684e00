from .keys import CacheKey, serialize_params
from .result_cache import CacheEntry, CacheStats, ResultCache, ValidityToken

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheStats",
    "ResultCache",
    "ValidityToken",
    "serialize_params",
]
