"""Utility modules for the sourcing kernel."""

from sourcing_kernel.utils.bounded_cache import BoundedTTLCache
from sourcing_kernel.utils.hashing import canonicalize_json, hash_payload

__all__ = [
    "BoundedTTLCache",
    "canonicalize_json",
    "hash_payload",
]
