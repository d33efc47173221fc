from .store import DEFAULT_TTL_SECONDS, CacheEntry, ResultCache, fingerprint

__all__ = ["DEFAULT_TTL_SECONDS", "CacheEntry", "ResultCache", "fingerprint"]
