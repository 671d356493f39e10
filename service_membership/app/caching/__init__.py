"""
Membership caching package.

A process-local TTL cache for datasheet reads. Entries expire lazily and are
dropped explicitly by the façades after successful writes.
"""

from .ttl_cache import TTLCache, make_signature

__all__ = ["TTLCache", "make_signature"]
