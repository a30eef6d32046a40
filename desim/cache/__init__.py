from .cached import Granularity, cached, run_cached
from .digest import ALGORITHMS, DigestOptions, all_equal, digest, hash_bytes, robust_digestible
from .repo import MISS, CacheRepo

__all__ = [
    "Granularity", "cached", "run_cached",
    "ALGORITHMS", "DigestOptions", "all_equal", "digest", "hash_bytes", "robust_digestible",
    "MISS", "CacheRepo",
]
