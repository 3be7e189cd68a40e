# tests/fixtures/repository.py
"""Job repository and operator fixtures.

All fixtures are function-scoped for full test isolation.
No module-scoped databases - every test gets a fresh database.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from hopper.core.repository import JobRepository, RepositoryDB
from hopper.engine.operator import JobOperator


def make_repository_db() -> RepositoryDB:
    """Factory for in-memory RepositoryDB."""
    return RepositoryDB.in_memory()


def make_repository(db: RepositoryDB | None = None) -> JobRepository:
    """Factory for JobRepository."""
    if db is None:
        db = make_repository_db()
    return JobRepository(db)


@pytest.fixture
def repository_db() -> Iterator[RepositoryDB]:
    """Function-scoped in-memory RepositoryDB - fresh per test."""
    db = make_repository_db()
    yield db
    db.close()


@pytest.fixture
def repository(repository_db: RepositoryDB) -> JobRepository:
    """Function-scoped JobRepository."""
    return JobRepository(repository_db)


@pytest.fixture
def operator(repository: JobRepository) -> Iterator[JobOperator]:
    """JobOperator with two job threads and a fast poll interval."""
    job_operator = JobOperator(repository, max_concurrent_jobs=2, poll_interval=0.01)
    yield job_operator
    job_operator.shutdown()
