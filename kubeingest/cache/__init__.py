"""Previous-result cache for delta computation and the read API.

Submodules:
    result_cache  -- Bounded per-cluster cache of delivered entity fingerprints and graphs.
"""

from kubeingest.cache.result_cache import CachedResult, EntityFingerprint, ResultCache

__all__ = ["CachedResult", "EntityFingerprint", "ResultCache"]
