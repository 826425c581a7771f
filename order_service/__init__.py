"""
Order record service.

Order and order-item persistence with a field-level change audit trail and a
Redis cache-aside read layer.
"""

__version__ = "1.0.0"
