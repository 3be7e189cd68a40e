"""Job repository: durable job/step execution metadata.

Usage:
    from hopper.core.repository import JobRepository, RepositoryDB

    repository = JobRepository(RepositoryDB.from_url("sqlite:///./state/hopper.db"))
"""

from hopper.core.repository.database import RepositoryDB
from hopper.core.repository.repository import JobRepository, job_key
from hopper.core.repository.schema import metadata
from hopper.core.repository.serialization import context_dumps, context_loads

__all__ = [
    "JobRepository",
    "RepositoryDB",
    "context_dumps",
    "context_loads",
    "job_key",
    "metadata",
]
