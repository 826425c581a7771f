"""Service layer: order operations and cache-aside helpers."""
