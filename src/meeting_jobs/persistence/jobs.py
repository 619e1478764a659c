"""Repository for persisted Job records.

The store is the single writer-of-record for job state. Unlike the
rate limiter, this repository fails closed: any store error is
surfaced as ``PersistenceUnavailableError``.
"""

import asyncio

from meeting_jobs.config import PersistenceConfig
from meeting_jobs.exceptions import JobNotFoundError, PersistenceUnavailableError
from meeting_jobs.logging import get_logger
from meeting_jobs.schemas.job import Job

from .store import KeyValueStore

logger = get_logger(__name__)

JOB_KEY_PREFIX = "job:"


def job_key(job_id: str) -> str:
    """Store key for a job record."""
    return f"{JOB_KEY_PREFIX}{job_id}"


class JobRepository:
    """Load and save Job records in a key-value store.

    Active records are kept for ``job_ttl``; once a job is terminal the
    record is rewritten with the shorter ``terminal_job_ttl``.

    Usage:
        repo = JobRepository(store, settings.persistence)
        await repo.save(job)
        job = await repo.require(job.id)

    Concurrency:
        Load-modify-save sequences from different coroutines must hold
        ``write_lock`` so one update does not overwrite another.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: PersistenceConfig | None = None,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        """Initialize the repository.

        Args:
            store: Backing key-value store
            config: Retention settings (defaults if omitted)
            write_lock: Lock serializing read-modify-write sequences
        """
        self._store = store
        self._config = config or PersistenceConfig()
        self.write_lock = write_lock or asyncio.Lock()

    @property
    def store(self) -> KeyValueStore:
        """Access the underlying store."""
        return self._store

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    async def get(self, job_id: str) -> Job | None:
        """Get a job record by id.

        Args:
            job_id: Job identifier

        Returns:
            The job or None if no record exists (or it expired)

        Raises:
            PersistenceUnavailableError: If the store cannot be read
        """
        try:
            raw = await self._store.get(job_key(job_id))
        except PersistenceUnavailableError:
            logger.error("Job store read failed for {}", job_id)
            raise
        except Exception as e:
            logger.error("Job store read failed for {}: {}", job_id, e)
            raise PersistenceUnavailableError(f"Failed to read job {job_id}: {e}") from e

        if raw is None:
            return None
        return Job.from_bytes(raw)

    async def require(self, job_id: str) -> Job:
        """Get a job record, raising if it does not exist.

        Raises:
            JobNotFoundError: If no record exists
            PersistenceUnavailableError: If the store cannot be read
        """
        job = await self.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    # -------------------------------------------------------------------------
    # Write Methods
    # -------------------------------------------------------------------------
    async def save(self, job: Job) -> Job:
        """Persist a job record with the retention matching its status.

        Raises:
            PersistenceUnavailableError: If the store cannot be written
        """
        ttl = self._config.terminal_job_ttl if job.is_terminal else self._config.job_ttl
        try:
            await self._store.put(job_key(job.id), job.to_bytes(), ttl=ttl)
        except PersistenceUnavailableError:
            logger.error("Job store write failed for {} ({})", job.id, job.status.value)
            raise
        except Exception as e:
            logger.error("Job store write failed for {} ({}): {}", job.id, job.status.value, e)
            raise PersistenceUnavailableError(f"Failed to write job {job.id}: {e}") from e
        return job

    async def delete(self, job_id: str) -> None:
        """Remove a job record.

        Raises:
            PersistenceUnavailableError: If the store cannot be written
        """
        try:
            await self._store.delete(job_key(job_id))
        except PersistenceUnavailableError:
            raise
        except Exception as e:
            raise PersistenceUnavailableError(f"Failed to delete job {job_id}: {e}") from e
