# tests/fixtures/__init__.py
"""Shared pytest fixtures and factories for hopper tests.

Available modules:
- repository: in-memory job repository, operator fixtures
- jobs: list readers, collecting writers, step and job builders
"""
