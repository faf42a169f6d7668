"""Tiered caches for list partitions and comments."""

from .comment_cache import CommentCache, comment_cache_key
from .rate_limiter import RateLimiter
from .resource_cache import ResourceCache

__all__ = ["CommentCache", "RateLimiter", "ResourceCache", "comment_cache_key"]
