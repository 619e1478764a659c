"""Persistence layer for the meeting job engine."""

from meeting_jobs.persistence.engine import (
    create_session_factory,
    create_tables,
    dispose_engine,
    drop_tables,
    get_engine,
    get_session_factory,
)
from meeting_jobs.persistence.jobs import JOB_KEY_PREFIX, JobRepository, job_key
from meeting_jobs.persistence.models import Base, KVEntry
from meeting_jobs.persistence.store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    SqlKeyValueStore,
)

__all__ = [
    # Models
    "Base",
    "KVEntry",
    # Engine
    "create_session_factory",
    "create_tables",
    "dispose_engine",
    "drop_tables",
    "get_engine",
    "get_session_factory",
    # Stores
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SqlKeyValueStore",
    # Repositories
    "JOB_KEY_PREFIX",
    "JobRepository",
    "job_key",
]
