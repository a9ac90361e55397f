"""
Durable multi-type job queue with retry and exponential backoff
"""

import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from config.settings import Settings
from src.models.jobs import Job, JobCreate, JobStatus, JobType
from .errors import BrokerError, JobStalledError
from .job_store import InMemoryJobStore, JobStore, PostgresJobStore

logger = structlog.get_logger()

Handler = Callable[[Any], Awaitable[Any]]
Listener = Callable[..., Any]

QUEUE_EVENTS = ("active", "completed", "retrying", "failed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """
    Named job queue over a shared job store.

    Producers call ``enqueue``; consumers ``register`` one handler per job
    type and ``drain``. Producer and consumer may live in different
    processes as long as they share the store.

    A job is leased to exactly one worker slot per attempt, and the next
    attempt only becomes claimable once the previous outcome is recorded, so
    attempts of the same job never overlap.
    """

    def __init__(
        self,
        store: JobStore,
        queue_name: str = "pr-review-queue",
        concurrency: int = 3,
        poll_interval: float = 1.0,
        lease_seconds: float = 900,
        stalled_check_interval: float = 30.0,
        enqueue_retries: int = 2,
        enqueue_retry_delay: float = 0.2,
        shutdown_grace: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.queue_name = queue_name
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.lease_seconds = lease_seconds
        self.stalled_check_interval = stalled_check_interval
        self.enqueue_retries = enqueue_retries
        self.enqueue_retry_delay = enqueue_retry_delay
        self.shutdown_grace = shutdown_grace
        self.clock = clock

        self._handlers: Dict[JobType, Handler] = {}
        self._listeners: Dict[str, List[Listener]] = {event: [] for event in QUEUE_EVENTS}
        self._stop_event: Optional[asyncio.Event] = None
        self._draining = False
        self._opened = False

    async def __aenter__(self) -> "JobQueue":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        """Acquire the store connection"""
        if self._opened:
            return
        await self.store.initialize()
        self._opened = True
        logger.info("Job queue opened", queue=self.queue_name)

    async def close(self) -> None:
        """Stop draining and release the store connection"""
        if self._draining:
            self.stop()
        if not self._opened:
            return
        await self.store.close()
        self._opened = False
        logger.info("Job queue closed", queue=self.queue_name)

    # Producer side

    async def enqueue(self, job_create: JobCreate) -> str:
        """
        Persist a new job and return its ID.

        Broker errors are retried ``enqueue_retries`` times before a
        BrokerError is raised to the caller.
        """
        job = Job.create_new(job_create, self.queue_name, now=self.clock())
        last_error: Optional[BrokerError] = None

        for attempt in range(self.enqueue_retries + 1):
            try:
                await self.store.add(job)
            except BrokerError as e:
                last_error = e
                logger.warning(
                    "Enqueue attempt failed",
                    job_type=job.job_type.value,
                    attempt=attempt + 1,
                    error=str(e),
                )
                if attempt < self.enqueue_retries:
                    await asyncio.sleep(self.enqueue_retry_delay)
                continue

            logger.info(
                "Job enqueued",
                job_id=job.job_id,
                job_type=job.job_type.value,
                max_attempts=job.max_attempts,
            )
            return job.job_id

        raise BrokerError(f"Failed to enqueue {job.job_type.value} job: {last_error}") from last_error

    # Consumer side

    def register(self, job_type: JobType, handler: Handler) -> None:
        """Bind a handler to a job type; at most one handler per type"""
        job_type = JobType(job_type)
        if job_type in self._handlers:
            raise ValueError(f"A handler is already registered for {job_type.value}")
        self._handlers[job_type] = handler
        logger.info("Handler registered", queue=self.queue_name, job_type=job_type.value)

    def on(self, event: str, listener: Listener) -> None:
        """
        Subscribe to queue events.

        Listeners receive ``(job)`` for active and completed, and
        ``(job, error)`` for retrying and failed. They may be coroutines.
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown queue event: {event}")
        self._listeners[event].append(listener)

    @property
    def registered_types(self) -> List[JobType]:
        return list(self._handlers)

    @property
    def is_draining(self) -> bool:
        return self._draining

    async def process_next(self) -> bool:
        """
        Claim one due job of a registered type and run its handler.

        Returns False when no job was due.
        """
        if not self._handlers:
            return False

        now = self.clock()
        job = await self.store.claim(
            self.queue_name,
            [job_type.value for job_type in self._handlers],
            now,
            now + timedelta(seconds=self.lease_seconds),
        )
        if job is None:
            return False

        handler = self._handlers[job.job_type]
        log = logger.bind(job_id=job.job_id, job_type=job.job_type.value, attempt=job.attempts)
        log.info("Processing job", max_attempts=job.max_attempts)
        await self._emit("active", job)

        try:
            await handler(job.typed_payload())
        except asyncio.CancelledError:
            log.warning("Job attempt cancelled; lease will expire and the job will be recovered")
            raise
        except Exception as e:
            await self._record_failure(job, e)
            return True

        await self.store.complete(job.job_id, self.clock())
        job.status = JobStatus.COMPLETED
        log.info("Job completed successfully")
        await self._emit("completed", job)
        return True

    async def drain(self) -> None:
        """
        Run the worker pool until ``stop`` is called.

        Each slot finishes its in-flight attempt before exiting; slots still
        busy after ``shutdown_grace`` seconds are cancelled.
        """
        if self._draining:
            raise RuntimeError("Queue is already draining")

        self._draining = True
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        slots = [
            asyncio.create_task(self._worker_slot(slot)) for slot in range(self.concurrency)
        ]
        sweeper = asyncio.create_task(self._stalled_sweeper())

        logger.info(
            "Queue draining",
            queue=self.queue_name,
            concurrency=self.concurrency,
            job_types=[job_type.value for job_type in self._handlers],
        )

        try:
            await self._stop_event.wait()
        finally:
            sweeper.cancel()
            _, still_running = await asyncio.wait(slots, timeout=self.shutdown_grace)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*slots, sweeper, return_exceptions=True)
            self._stop_event = None
            self._draining = False
            logger.info("Queue drain stopped", queue=self.queue_name)

    def stop(self) -> None:
        """Ask the drain loop to stop; a stop requested before draining starts is kept"""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        self._stop_event.set()

    # Introspection

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self.store.get(job_id)

    async def list_jobs(
        self, status: Optional[JobStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Job]:
        return await self.store.list_jobs(self.queue_name, status=status, limit=limit, offset=offset)

    async def counts(self) -> Dict[str, int]:
        return await self.store.counts(self.queue_name)

    async def ping(self) -> bool:
        return await self.store.ping()

    async def recover_stalled(self) -> List[Job]:
        """
        Release jobs whose lease expired without a recorded outcome.

        Jobs with attempts left become claimable again; jobs on their last
        attempt fail and are reported like any other failed job.
        """
        recovered = await self.store.recover_stalled(self.queue_name, self.clock())
        for job in recovered:
            if job.status == JobStatus.FAILED:
                logger.error(
                    "Job failed",
                    job_id=job.job_id,
                    job_type=job.job_type.value,
                    attempts=job.attempts,
                    error=job.last_error,
                )
                await self._emit("failed", job, JobStalledError(f"Job {job.job_id} stalled on its last attempt"))
            else:
                logger.warning(
                    "Stalled job released for retry",
                    job_id=job.job_id,
                    job_type=job.job_type.value,
                    attempts=job.attempts,
                )
        return recovered

    # Internals

    async def _record_failure(self, job: Job, error: Exception) -> None:
        error_message = f"{type(error).__name__}: {error}"
        now = self.clock()

        if job.attempts >= job.max_attempts:
            await self.store.fail(job.job_id, now, error_message)
            job.status = JobStatus.FAILED
            job.last_error = error_message
            logger.error(
                "Job failed",
                job_id=job.job_id,
                job_type=job.job_type.value,
                attempts=job.attempts,
                error=error_message,
            )
            await self._emit("failed", job, error)
            return

        delay = job.backoff.delay_before_attempt(job.attempts + 1)
        await self.store.retry_later(job.job_id, now + timedelta(seconds=delay), error_message)
        job.last_error = error_message
        logger.warning(
            "Job attempt failed, retrying",
            job_id=job.job_id,
            job_type=job.job_type.value,
            attempt=job.attempts,
            retry_in_seconds=delay,
            error=error_message,
        )
        await self._emit("retrying", job, error)

    async def _emit(self, event: str, *args) -> None:
        for listener in self._listeners[event]:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Queue listener failed", queue_event=event)

    async def _worker_slot(self, slot: int) -> None:
        while not self._stop_event.is_set():
            try:
                processed = await self.process_next()
            except BrokerError as e:
                logger.error("Queue broker error while draining", slot=slot, error=str(e))
                processed = False
            except Exception:
                logger.exception("Unexpected error while draining", slot=slot, queue=self.queue_name)
                processed = False

            if not processed:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def _stalled_sweeper(self) -> None:
        while True:
            try:
                await self.recover_stalled()
            except BrokerError as e:
                logger.error("Stalled job sweep failed", queue=self.queue_name, error=str(e))
            except Exception:
                logger.exception("Unexpected error in stalled job sweep", queue=self.queue_name)
            await asyncio.sleep(self.stalled_check_interval)


def build_job_queue(settings: Settings) -> JobQueue:
    """Construct the queue for the configured broker"""
    if settings.uses_postgres:
        store = PostgresJobStore(settings.DATABASE_URL, max_size=settings.WORKER_CONCURRENCY + 2)
    else:
        logger.warning(
            "Using in-memory job store; jobs are not durable and are only visible to this process",
            database_url=settings.DATABASE_URL,
        )
        store = InMemoryJobStore()

    return JobQueue(
        store,
        queue_name=settings.QUEUE_NAME,
        concurrency=settings.WORKER_CONCURRENCY,
        poll_interval=settings.QUEUE_POLL_INTERVAL,
        lease_seconds=settings.JOB_LEASE_SECONDS,
        stalled_check_interval=settings.STALLED_CHECK_INTERVAL,
        enqueue_retries=settings.ENQUEUE_RETRIES,
        shutdown_grace=settings.SHUTDOWN_GRACE_SECONDS,
    )
