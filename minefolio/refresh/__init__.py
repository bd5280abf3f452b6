"""
Scheduled refresh actions for the persistent cache tables.
"""
from .paceman_cache import PacemanCacheRefresher
from .youtube_cache import YouTubeCacheRefresher

__all__ = [
    "PacemanCacheRefresher",
    "YouTubeCacheRefresher",
]
