"""
Durable storage backends for the job queue
"""

import asyncio
import json
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Any, Protocol, Sequence

import asyncpg
import structlog

from src.models.jobs import Job, JobStatus
from .errors import BrokerError

logger = structlog.get_logger()


class JobStore(Protocol):
    """Storage operations the queue runtime relies on.

    ``claim`` must be atomic: a job handed to one caller is leased and cannot
    be claimed again until its outcome is recorded or the lease expires.
    """

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> bool: ...

    async def add(self, job: Job) -> str: ...

    async def claim(
        self, queue_name: str, job_types: Sequence[str], now: datetime, lease_until: datetime
    ) -> Optional[Job]: ...

    async def complete(self, job_id: str, now: datetime) -> None: ...

    async def retry_later(self, job_id: str, available_at: datetime, error: str) -> None: ...

    async def fail(self, job_id: str, now: datetime, error: str) -> None: ...

    async def recover_stalled(self, queue_name: str, now: datetime) -> List[Job]: ...

    async def get(self, job_id: str) -> Optional[Job]: ...

    async def list_jobs(
        self, queue_name: str, status: Optional[JobStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Job]: ...

    async def counts(self, queue_name: str) -> Dict[str, int]: ...


class InMemoryJobStore:
    """Process-local job store for development and tests.

    Not durable; jobs are lost when the process exits.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.info("In-memory job store initialized")

    async def close(self) -> None:
        logger.info("In-memory job store closed")

    async def ping(self) -> bool:
        return True

    async def add(self, job: Job) -> str:
        async with self._lock:
            self._jobs[job.job_id] = job.model_copy(deep=True)
        return job.job_id

    async def claim(
        self, queue_name: str, job_types: Sequence[str], now: datetime, lease_until: datetime
    ) -> Optional[Job]:
        async with self._lock:
            candidates = [
                job for job in self._jobs.values()
                if job.queue_name == queue_name
                and job.job_type.value in job_types
                and job.status in (JobStatus.PENDING, JobStatus.ACTIVE)
                and job.leased_until is None
                and job.available_at <= now
            ]
            if not candidates:
                return None

            job = min(candidates, key=lambda j: (j.available_at, j.created_at))
            job.status = JobStatus.ACTIVE
            job.attempts += 1
            job.leased_until = lease_until
            if job.started_at is None:
                job.started_at = now
            return job.model_copy(deep=True)

    async def complete(self, job_id: str, now: datetime) -> None:
        async with self._lock:
            job = self._require(job_id)
            job.status = JobStatus.COMPLETED
            job.leased_until = None
            job.finished_at = now

    async def retry_later(self, job_id: str, available_at: datetime, error: str) -> None:
        async with self._lock:
            job = self._require(job_id)
            job.status = JobStatus.ACTIVE
            job.leased_until = None
            job.available_at = available_at
            job.last_error = error

    async def fail(self, job_id: str, now: datetime, error: str) -> None:
        async with self._lock:
            job = self._require(job_id)
            job.status = JobStatus.FAILED
            job.leased_until = None
            job.finished_at = now
            job.last_error = error

    async def recover_stalled(self, queue_name: str, now: datetime) -> List[Job]:
        recovered = []
        async with self._lock:
            for job in self._jobs.values():
                if (
                    job.queue_name == queue_name
                    and job.status == JobStatus.ACTIVE
                    and job.leased_until is not None
                    and job.leased_until < now
                ):
                    job.leased_until = None
                    job.last_error = "job stalled"
                    if job.attempts >= job.max_attempts:
                        job.status = JobStatus.FAILED
                        job.finished_at = now
                    else:
                        job.available_at = now
                    recovered.append(job.model_copy(deep=True))
        return recovered

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(
        self, queue_name: str, status: Optional[JobStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Job]:
        jobs = [job for job in self._jobs.values() if job.queue_name == queue_name]
        if status:
            jobs = [job for job in jobs if job.status == status]

        # Newest first
        jobs.sort(key=lambda x: x.created_at, reverse=True)
        return [job.model_copy(deep=True) for job in jobs[offset : offset + limit]]

    async def counts(self, queue_name: str) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            if job.queue_name == queue_name:
                counts[job.status.value] += 1
        return counts

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if not job:
            raise BrokerError(f"Unknown job: {job_id}")
        return job


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS queue_jobs (
    job_id UUID PRIMARY KEY,
    queue_name VARCHAR(100) NOT NULL,
    job_type VARCHAR(50) NOT NULL,
    payload JSONB NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    backoff_delay_ms INTEGER NOT NULL DEFAULT 5000,
    available_at TIMESTAMPTZ NOT NULL,
    leased_until TIMESTAMPTZ,
    last_error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at TIMESTAMPTZ,
    finished_at TIMESTAMPTZ
)
"""

CREATE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_queue_jobs_claimable
    ON queue_jobs (queue_name, available_at)
    WHERE status IN ('pending', 'active') AND leased_until IS NULL
"""

CLAIM_SQL = """
UPDATE queue_jobs
SET status = 'active',
    attempts = attempts + 1,
    leased_until = $4,
    started_at = COALESCE(started_at, $3)
WHERE job_id = (
    SELECT job_id FROM queue_jobs
    WHERE queue_name = $1
      AND job_type = ANY($2::text[])
      AND status IN ('pending', 'active')
      AND leased_until IS NULL
      AND available_at <= $3
    ORDER BY available_at, created_at
    LIMIT 1
    FOR UPDATE SKIP LOCKED
)
RETURNING *
"""

RECOVER_STALLED_SQL = """
UPDATE queue_jobs
SET leased_until = NULL,
    last_error = 'job stalled',
    status = CASE WHEN attempts >= max_attempts THEN 'failed' ELSE status END,
    finished_at = CASE WHEN attempts >= max_attempts THEN $2 ELSE finished_at END,
    available_at = CASE WHEN attempts >= max_attempts THEN available_at ELSE $2 END
WHERE queue_name = $1
  AND status = 'active'
  AND leased_until IS NOT NULL
  AND leased_until < $2
RETURNING *
"""


class PostgresJobStore:
    """Job store backed by a PostgreSQL table.

    Claims use ``FOR UPDATE SKIP LOCKED`` so any number of worker processes
    can share the table without claiming the same job twice.
    """

    def __init__(self, connection_string: str, min_size: int = 1, max_size: int = 10):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        """Create the connection pool and the jobs table"""
        if self.pool:
            return

        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30,
            )
            async with self.pool.acquire() as connection:
                await connection.execute(CREATE_TABLE_SQL)
                await connection.execute(CREATE_INDEX_SQL)
            logger.info("PostgreSQL job store initialized")
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("Failed to initialize job store", error=str(e))
            raise BrokerError(f"Failed to initialize job store: {e}") from e

    async def close(self) -> None:
        """Close database connections"""
        if self.pool:
            await self.pool.close()
            self.pool = None
        logger.info("PostgreSQL job store closed")

    async def ping(self) -> bool:
        try:
            await self._fetchval("SELECT 1")
            return True
        except BrokerError:
            return False

    async def add(self, job: Job) -> str:
        try:
            await self._insert(job)
        except BrokerError as e:
            # A retried insert may find the row written by an earlier attempt
            if isinstance(e.__cause__, asyncpg.UniqueViolationError):
                return job.job_id
            raise
        return job.job_id

    async def _insert(self, job: Job) -> None:
        await self._execute(
            """
            INSERT INTO queue_jobs (
                job_id, queue_name, job_type, payload, status, attempts,
                max_attempts, backoff_delay_ms, available_at, created_at
            ) VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9, $10)
            """,
            job.job_id,
            job.queue_name,
            job.job_type.value,
            json.dumps(job.payload),
            job.status.value,
            job.attempts,
            job.max_attempts,
            job.backoff_delay_ms,
            job.available_at,
            job.created_at,
        )

    async def claim(
        self, queue_name: str, job_types: Sequence[str], now: datetime, lease_until: datetime
    ) -> Optional[Job]:
        row = await self._fetchrow(CLAIM_SQL, queue_name, list(job_types), now, lease_until)
        return self._row_to_job(row) if row else None

    async def complete(self, job_id: str, now: datetime) -> None:
        await self._execute(
            "UPDATE queue_jobs SET status = 'completed', leased_until = NULL, finished_at = $2 "
            "WHERE job_id = $1",
            job_id, now,
        )

    async def retry_later(self, job_id: str, available_at: datetime, error: str) -> None:
        await self._execute(
            "UPDATE queue_jobs SET status = 'active', leased_until = NULL, available_at = $2, "
            "last_error = $3 WHERE job_id = $1",
            job_id, available_at, error,
        )

    async def fail(self, job_id: str, now: datetime, error: str) -> None:
        await self._execute(
            "UPDATE queue_jobs SET status = 'failed', leased_until = NULL, finished_at = $2, "
            "last_error = $3 WHERE job_id = $1",
            job_id, now, error,
        )

    async def recover_stalled(self, queue_name: str, now: datetime) -> List[Job]:
        rows = await self._fetch(RECOVER_STALLED_SQL, queue_name, now)
        return [self._row_to_job(row) for row in rows]

    async def get(self, job_id: str) -> Optional[Job]:
        try:
            uuid.UUID(job_id)
        except ValueError:
            return None
        row = await self._fetchrow("SELECT * FROM queue_jobs WHERE job_id = $1", job_id)
        return self._row_to_job(row) if row else None

    async def list_jobs(
        self, queue_name: str, status: Optional[JobStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Job]:
        if status:
            rows = await self._fetch(
                "SELECT * FROM queue_jobs WHERE queue_name = $1 AND status = $2 "
                "ORDER BY created_at DESC LIMIT $3 OFFSET $4",
                queue_name, status.value, limit, offset,
            )
        else:
            rows = await self._fetch(
                "SELECT * FROM queue_jobs WHERE queue_name = $1 "
                "ORDER BY created_at DESC LIMIT $2 OFFSET $3",
                queue_name, limit, offset,
            )
        return [self._row_to_job(row) for row in rows]

    async def counts(self, queue_name: str) -> Dict[str, int]:
        rows = await self._fetch(
            "SELECT status, COUNT(*) AS count FROM queue_jobs WHERE queue_name = $1 GROUP BY status",
            queue_name,
        )
        counts = {status.value: 0 for status in JobStatus}
        for row in rows:
            counts[row["status"]] = row["count"]
        return counts

    def _row_to_job(self, row: Any) -> Job:
        data = dict(row)
        data["job_id"] = str(data["job_id"])
        if isinstance(data["payload"], str):
            data["payload"] = json.loads(data["payload"])
        return Job.model_validate(data)

    def _require_pool(self) -> asyncpg.Pool:
        if not self.pool:
            raise BrokerError("Job store is not initialized")
        return self.pool

    async def _execute(self, query: str, *args) -> str:
        try:
            async with self._require_pool().acquire() as connection:
                return await connection.execute(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Job store command failed", error=str(e))
            raise BrokerError(f"Job store command failed: {e}") from e

    async def _fetch(self, query: str, *args) -> List[Any]:
        try:
            async with self._require_pool().acquire() as connection:
                return await connection.fetch(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Job store query failed", error=str(e))
            raise BrokerError(f"Job store query failed: {e}") from e

    async def _fetchrow(self, query: str, *args) -> Optional[Any]:
        try:
            async with self._require_pool().acquire() as connection:
                return await connection.fetchrow(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Job store query failed", error=str(e))
            raise BrokerError(f"Job store query failed: {e}") from e

    async def _fetchval(self, query: str, *args) -> Any:
        try:
            async with self._require_pool().acquire() as connection:
                return await connection.fetchval(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Job store query failed", error=str(e))
            raise BrokerError(f"Job store query failed: {e}") from e
