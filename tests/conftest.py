# tests/conftest.py
"""Shared test fixtures and helpers.

Fixtures:
- repository_db / repository: fresh in-memory job repository per test
- operator: JobOperator over that repository, shut down after the test
- plugin_manager: PluginManager with the built-in plugins registered

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import logging
import os
from collections.abc import Iterator

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from hopper.plugins.manager import PluginManager
from tests.fixtures.repository import operator, repository, repository_db  # noqa: F401


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    """Undo configure_logging() calls made by a test (CLI commands configure logging)."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def plugin_manager() -> PluginManager:
    """PluginManager with built-in plugins registered."""
    manager = PluginManager()
    manager.register_builtin_plugins()
    return manager


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
