"""
Cache package initialization.

Provides the async Redis client used by the order cache-aside layer.
"""
