"""
Core package for shared utilities.

Configuration and structured logging shared by the cache, database and
service packages.
"""
