"""Shared libraries for the legal KB retrieval core.

This package contains reusable components:
- common: Configuration and logging setup
- caching: TTL caches, single-flight de-duplication and the optional Redis mirror
"""
