"""
Tests Package

Unit and integration tests for NetAtlas.

Structure:
    - Unit tests: Resilience primitives, cache tiers, transformers, adapters
    - Integration tests: Orchestrator fallback chain over stub adapters
"""

__all__ = []
