"""Cache infrastructure module."""

from src.infrastructure.cache.bounded_cache import BoundedCache

__all__ = [
    "BoundedCache",
]
