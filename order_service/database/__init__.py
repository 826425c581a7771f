"""
Database package.

- base: declarative base and the UUID primary key mixin
- connection: async engine, session factory and session scope
- models: ORM models for orders, items, audit history and event types
"""

__all__ = []
