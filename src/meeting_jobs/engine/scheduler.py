"""Job scheduler: admission, routing, dispatch and retry.

This module provides the JobScheduler that ties the engine together:

- Validation and per-caller rate limiting at submission
- Fingerprint cache lookup (a hit creates no job)
- Priority computation and immediate-vs-queued routing
- Similarity batching for queued jobs
- Bounded concurrency per job kind
- Exponential backoff with jitter, realized with timers
- Cooperative cancellation and completion notification

The job repository is the writer-of-record for job state. Every
status change is a load-modify-save under the repository write lock.
"""

from __future__ import annotations

import asyncio
import inspect
import random
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from pydantic import BaseModel

from meeting_jobs.clock import Clock, utc_now
from meeting_jobs.collaborators.protocols import AnalysisClient, IssueTracker, MetricsRecorder
from meeting_jobs.config import Settings, get_settings
from meeting_jobs.exceptions import (
    DownstreamFailureError,
    JobEngineError,
    PersistenceUnavailableError,
    RateLimitedError,
    TerminalFailureError,
    ValidationFailedError,
)
from meeting_jobs.logging import bind_job, get_logger
from meeting_jobs.persistence.jobs import JobRepository
from meeting_jobs.schemas.enums import JobKind, JobStatus, RouteDecision
from meeting_jobs.schemas.job import Job, JobHandle, JobRequest, JobView
from meeting_jobs.schemas.payloads import AnalysisPayload, IssueCreationPayload, MetricsPayload
from meeting_jobs.schemas.results import AnalysisResult
from meeting_jobs.schemas.stats import SchedulerStats
from meeting_jobs.validation import PayloadValidator

from .batch import Batch, BatchAccumulator
from .cache import ResultCache, fingerprint
from .pool import BatchResult, ConcurrencyPool
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .routing import choose_route, compute_priority
from .timers import TimerHandle, TimerService

logger = get_logger(__name__)

JobFinishedCallback = Callable[[JobView], Awaitable[None] | None]
StateWrite = Callable[[int], Awaitable[None] | None]


class JobScheduler:
    """Accepts jobs and drives them to a terminal state.

    Usage:
        scheduler = JobScheduler(
            repository=JobRepository(store),
            rate_limiter=RateLimiter(store),
            cache=ResultCache(),
            analysis_client=client,
            issue_tracker=tracker,
        )
        await scheduler.start()

        handle = await scheduler.submit(
            {"subject": "U1", "payload": {"kind": "analysis", "notes": "...",
                                          "meeting_type": "standup", "issue_type": "Task"}}
        )
        view = await scheduler.wait_for(handle.job_id, timeout=60)

        await scheduler.shutdown()
    """

    def __init__(
        self,
        *,
        repository: JobRepository,
        rate_limiter: RateLimiter,
        cache: ResultCache,
        analysis_client: AnalysisClient | None = None,
        issue_tracker: IssueTracker | None = None,
        metrics_recorder: MetricsRecorder | None = None,
        settings: Settings | None = None,
        timers: TimerService | None = None,
        validator: PayloadValidator | None = None,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            repository: Job record persistence (fails closed)
            rate_limiter: Per-caller admission control (fails open)
            cache: Result cache keyed by payload fingerprint
            analysis_client: AI analysis collaborator
            issue_tracker: Issue-tracker collaborator
            metrics_recorder: Metrics collaborator
            settings: Engine settings (uses get_settings() if not provided)
            timers: Timer service for retries and batch flushes
            validator: Payload validator (built from settings if not provided)
            clock: Time source for job timestamps
            rng: Random source for retry jitter
        """
        self._settings = settings or get_settings()
        self._repository = repository
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._analysis_client = analysis_client
        self._issue_tracker = issue_tracker
        self._metrics_recorder = metrics_recorder
        self._timers = timers or TimerService()
        self._validator = validator or PayloadValidator(self._settings.validation)
        self._clock = clock

        rng = rng or random.Random()
        self._policies: dict[JobKind, RetryPolicy] = {
            kind: RetryPolicy.for_kind(kind, self._settings.retry, rng) for kind in JobKind
        }
        self._pools: dict[JobKind, ConcurrencyPool] = {
            kind: ConcurrencyPool(kind, self._settings.pools.for_kind(kind), self._execute)
            for kind in JobKind
        }
        self._accumulator = BatchAccumulator(
            self._timers,
            release=self._dispatch_batch,
            config=self._settings.batching,
        )

        # State
        self._running = False
        self._closed = False
        self._maintenance_task: asyncio.Task[None] | None = None
        self._retry_timers: dict[str, TimerHandle] = {}
        self._write_timers: dict[str, TimerHandle] = {}
        self._held_results: dict[str, dict[str, Any]] = {}
        self._claim_failures: dict[str, int] = {}
        self._waiters: dict[str, list[asyncio.Future[JobView]]] = {}
        self._listeners: list[JobFinishedCallback] = []
        self._active_tasks: set[asyncio.Task[None]] = set()  # Prevent task GC

        # Statistics
        self._total_submitted = 0
        self._total_cached = 0
        self._total_rate_limited = 0
        self._total_completed = 0
        self._total_failed = 0
        self._total_cancelled = 0
        self._total_retries = 0
        self._total_write_failures = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def start(self) -> None:
        """Start the maintenance loop (periodic cache purge)."""
        if self._running:
            return
        self._running = True
        self._maintenance_task = asyncio.create_task(self._maintenance_loop())
        logger.info(
            "Job scheduler started (pools: {})",
            ", ".join(f"{k.value}={p.max_parallelism}" for k, p in self._pools.items()),
        )

    async def shutdown(self, wait: bool = True, timeout: float = 30.0) -> None:
        """Stop the scheduler.

        Pending retry timers are cancelled; those jobs stay ``Retrying``
        in the store. State changes still waiting to be re-applied after
        a store error are dropped and logged.

        Args:
            wait: If True, release accumulated batches and wait for in-flight work
            timeout: Maximum seconds to wait for in-flight work
        """
        self._running = False
        self._closed = True

        if self._maintenance_task:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        for handle in self._retry_timers.values():
            handle.cancel()
        self._retry_timers.clear()

        if wait:
            self._accumulator.flush()
            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout
            for pool in self._pools.values():
                remaining = max(0.0, deadline - loop.time())
                if not await pool.join(timeout=remaining):
                    logger.warning(
                        "{} pool still busy after {:.1f}s, cancelling",
                        pool.kind.value,
                        timeout,
                    )
                    await pool.cancel_all()
        else:
            for pool in self._pools.values():
                await pool.cancel_all()

        await self._timers.shutdown()

        for job_id in self._write_timers:
            logger.error("Stopped with an unsaved state change for job {}", job_id)
        self._write_timers.clear()
        self._held_results.clear()
        self._claim_failures.clear()

        for futures in self._waiters.values():
            for future in futures:
                if not future.done():
                    future.cancel()
        self._waiters.clear()

        logger.info(
            "Job scheduler stopped (completed={}, failed={}, cancelled={})",
            self._total_completed,
            self._total_failed,
            self._total_cancelled,
        )

    @property
    def is_running(self) -> bool:
        """Whether the maintenance loop is running."""
        return self._running

    async def _maintenance_loop(self) -> None:
        interval = self._settings.cache.cleanup_interval_seconds
        while self._running:
            await asyncio.sleep(interval)
            self._cache.purge_expired()

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------
    async def submit(self, request: JobRequest | dict[str, Any], cost: int = 1) -> JobHandle:
        """Admit a request.

        Args:
            request: Parsed request or raw mapping with ``subject``, ``tier``, ``payload``
            cost: Rate-limit weight of the request

        Returns:
            A completed cached handle, or a Queued handle for a new job

        Raises:
            ValidationFailedError: Malformed, oversized or unsafe payload
            RateLimitedError: Caller exhausted its window (no job created)
            PersistenceUnavailableError: The new job could not be persisted
        """
        if self._closed:
            raise JobEngineError("Scheduler has been shut down")

        request = self._validator.validate(request)
        kind = request.kind
        if not self._has_collaborator(kind):
            raise ValidationFailedError(f"No collaborator configured for {kind.value} jobs")

        decision = await self._rate_limiter.check(request.subject, kind.value, cost)
        if not decision.allowed:
            self._total_rate_limited += 1
            retry_after = decision.retry_after(self._clock())
            raise RateLimitedError(
                f"Rate limit exceeded for {request.subject}/{kind.value}, "
                f"retry in {retry_after.total_seconds():.0f}s",
                reset_at=decision.reset_at,
                retry_after=retry_after,
                decision=decision,
            )

        return await self._admit(request)

    async def _admit(self, request: JobRequest, parent_id: str | None = None) -> JobHandle:
        """Cache lookup, job creation and routing (rate limit already applied)."""
        kind = request.kind
        now = self._clock()
        key = fingerprint(kind, request.payload)

        if self._cache.is_cacheable(kind):
            cached = self._cache.get(key)
            if cached is not None:
                self._total_cached += 1
                logger.info("Cache hit for {} request from {}", kind.value, request.subject)
                return JobHandle(
                    job_id=None,
                    kind=kind,
                    status=JobStatus.COMPLETED,
                    fingerprint=key,
                    cached=True,
                    result=cached,
                    processing_seconds=0.0,
                    submitted_at=now,
                )

        job = Job.create(
            request,
            fingerprint=key,
            priority=compute_priority(request.payload, request.tier, self._settings.routing),
            max_attempts=self._policies[kind].max_attempts,
            now=now,
            parent_id=parent_id,
        )
        await self._repository.save(job)
        self._total_submitted += 1

        route = choose_route(request.payload, self.queue_depth, self._settings.routing)
        self._route(job, route)

        return JobHandle(
            job_id=job.id,
            kind=kind,
            status=job.status,
            fingerprint=key,
            route=route,
            submitted_at=now,
        )

    def _has_collaborator(self, kind: JobKind) -> bool:
        if kind is JobKind.ANALYSIS:
            return self._analysis_client is not None
        if kind is JobKind.ISSUE_CREATION:
            return self._issue_tracker is not None
        return self._metrics_recorder is not None

    # -------------------------------------------------------------------------
    # Routing & Dispatch
    # -------------------------------------------------------------------------
    def _route(self, job: Job, route: RouteDecision) -> None:
        bind_job(job.id, job.kind.value).debug(
            "Routing {} (priority={}, size={})", route.value, job.priority, job.payload.size
        )
        if route is RouteDecision.IMMEDIATE:
            self._pools[job.kind].run(job)
        else:
            self._accumulator.add(job)

    def _dispatch_batch(self, batch: Batch) -> None:
        self._pools[batch.kind].run(batch, on_complete=self._on_batch_done)

    def _on_batch_done(self, result: BatchResult[Job]) -> None:
        if not result.all_succeeded:
            logger.warning(
                "Batch finished with {} executor error(s) out of {}",
                result.failure_count,
                result.total_count,
            )

    async def _execute(self, queued: Job) -> None:
        """Run one job end to end (pool executor)."""
        log = bind_job(queued.id, queued.kind.value)

        try:
            async with self._repository.write_lock:
                job = await self._repository.get(queued.id)
                if job is None:
                    log.warning("Job record missing at dispatch, skipping")
                    return
                if job.status is not JobStatus.QUEUED:
                    log.debug("Skipping dispatch of {} job", job.status.value)
                    return
                job.claim(self._clock())
                await self._repository.save(job)
        except PersistenceUnavailableError as e:
            attempt = self._claim_failures.get(queued.id, 0) + 1
            self._claim_failures[queued.id] = attempt
            self._retry_state_write(
                queued.id, attempt, e, lambda _: self._pools[queued.kind].run(queued)
            )
            return
        self._claim_failures.pop(queued.id, None)

        log.debug("Processing attempt {}/{}", job.attempts, job.max_attempts)
        try:
            outcome = await self._call_downstream(job)
        except Exception as e:
            await self._record_outcome(job.id, error=e)
            return
        await self._record_outcome(job.id, outcome=outcome)

    async def _call_downstream(self, job: Job) -> BaseModel:
        payload = job.payload
        if isinstance(payload, AnalysisPayload):
            assert self._analysis_client is not None
            outcome: Any = await self._analysis_client.analyze(payload)
        elif isinstance(payload, IssueCreationPayload):
            assert self._issue_tracker is not None
            outcome = await self._issue_tracker.create_issue(payload.to_fields())
        elif isinstance(payload, MetricsPayload):
            assert self._metrics_recorder is not None
            outcome = await self._metrics_recorder.record(payload)
        else:
            raise DownstreamFailureError(f"Unsupported payload kind {payload.kind}")

        if not outcome.success:
            raise DownstreamFailureError(outcome.error or f"{job.kind.value} call reported failure")
        return outcome  # type: ignore[no-any-return]

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------
    async def _record_outcome(
        self,
        job_id: str,
        outcome: BaseModel | None = None,
        error: Exception | None = None,
        attempt: int = 1,
    ) -> None:
        """Apply a downstream outcome, re-applying it later if the store rejects it."""
        try:
            if error is not None:
                await self._on_failure(job_id, error)
            else:
                assert outcome is not None
                await self._on_success(job_id, outcome)
        except PersistenceUnavailableError as e:
            self._retry_state_write(
                job_id,
                attempt,
                e,
                lambda n: self._record_outcome(job_id, outcome, error, n),
            )

    async def _on_success(self, job_id: str, outcome: BaseModel) -> None:
        result = outcome.model_dump(mode="json")

        async with self._repository.write_lock:
            job = await self._repository.require(job_id)
            log = bind_job(job.id, job.kind.value)
            now = self._clock()

            if job.cancel_requested:
                job.cancel(now)
                await self._repository.save(job)
                log.info("Discarded result of cancelled job")
            else:
                # Held until saved so a re-applied write does not spawn children twice
                record = self._held_results.get(job_id)
                if record is None:
                    record = dict(result)
                    if isinstance(outcome, AnalysisResult) and isinstance(
                        job.payload, AnalysisPayload
                    ):
                        children = await self._spawn_follow_ups(job, outcome)
                        if children:
                            record["child_job_ids"] = children
                    self._held_results[job_id] = record

                job.complete(record, now)
                await self._repository.save(job)
                if self._cache.is_cacheable(job.kind):
                    self._cache.put(job.fingerprint, result)
                log.info("Completed after {} attempt(s)", job.attempts)
            self._held_results.pop(job_id, None)

        self._finish(job)

    async def _on_failure(self, job_id: str, error: Exception) -> None:
        message = f"{type(error).__name__}: {error}"

        async with self._repository.write_lock:
            job = await self._repository.require(job_id)
            log = bind_job(job.id, job.kind.value)
            now = self._clock()
            policy = self._policies[job.kind]

            if job.cancel_requested:
                job.cancel(now)
                await self._repository.save(job)
                log.info("Cancelled after failed attempt {} ({})", job.attempts, message)
            elif policy.is_retryable(error) and policy.should_retry(job.attempts, job.max_attempts):
                delay = policy.next_delay(job.attempts)
                job.schedule_retry(message, now + timedelta(seconds=delay), now)
                await self._repository.save(job)
                self._total_retries += 1
                self._retry_timers[job.id] = self._timers.schedule(
                    delay,
                    lambda: self._resubmit(job_id),
                    name=f"retry:{job_id}",
                )
                log.info(
                    "Attempt {}/{} failed ({}), retrying in {:.2f}s",
                    job.attempts,
                    job.max_attempts,
                    message,
                    delay,
                )
                return
            else:
                job.fail(message, now)
                await self._repository.save(job)
                log.error("Failed after {} attempt(s): {}", job.attempts, message)

        self._finish(job)

    async def _resubmit(self, job_id: str, attempt: int = 1) -> None:
        """Retry timer callback: Retrying -> Queued, then route again."""
        self._retry_timers.pop(job_id, None)

        try:
            async with self._repository.write_lock:
                job = await self._repository.get(job_id)
                if job is None or job.status is not JobStatus.RETRYING:
                    return
                job.requeue(self._clock())
                await self._repository.save(job)
        except PersistenceUnavailableError as e:
            self._retry_state_write(job_id, attempt, e, lambda n: self._resubmit(job_id, n))
            return

        route = choose_route(job.payload, self.queue_depth, self._settings.routing)
        self._route(job, route)

    def _retry_state_write(
        self,
        job_id: str,
        attempt: int,
        error: PersistenceUnavailableError,
        write: StateWrite,
    ) -> None:
        """Schedule ``write(attempt + 1)`` with backoff, or give up and fail the waiters.

        Args:
            job_id: Job whose state change the store rejected
            attempt: Number of times the change has been tried (1-based)
            error: Error raised by the store
            write: Re-applies the change; receives the next attempt number
        """
        self._write_timers.pop(job_id, None)
        config = self._settings.persistence
        log = bind_job(job_id, job_id.rsplit("_", 1)[0])

        if attempt >= config.state_write_attempts:
            self._total_write_failures += 1
            self._held_results.pop(job_id, None)
            self._claim_failures.pop(job_id, None)
            log.critical("Giving up on job state change after {} attempt(s): {}", attempt, error)
            self._fail_waiters(job_id, error)
            return

        delay = config.state_write_retry_seconds * 2 ** (attempt - 1)
        log.error(
            "Job state change failed (attempt {}/{}), re-applying in {:.2f}s: {}",
            attempt,
            config.state_write_attempts,
            delay,
            error,
        )
        self._write_timers[job_id] = self._timers.schedule(
            delay,
            lambda: self._reapply_write(job_id, write, attempt + 1),
            name=f"write:{job_id}",
        )

    def _reapply_write(
        self, job_id: str, write: StateWrite, attempt: int
    ) -> Awaitable[None] | None:
        self._write_timers.pop(job_id, None)
        return write(attempt)

    async def _spawn_follow_ups(self, job: Job, outcome: AnalysisResult) -> list[str]:
        """Create IssueCreation child jobs for confident extracted issues."""
        payload = job.payload
        assert isinstance(payload, AnalysisPayload)
        options = payload.options
        log = bind_job(job.id, job.kind.value)

        if not options.create_issues:
            return []
        if options.project_key is None or self._issue_tracker is None:
            log.warning("Issue creation requested without a project key or tracker, skipping")
            return []

        child_ids: list[str] = []
        for issue in outcome.issues:
            if issue.confidence_score < options.min_confidence:
                continue
            request = {
                "subject": job.subject,
                "tier": job.tier,
                "payload": {
                    "kind": JobKind.ISSUE_CREATION.value,
                    "summary": issue.summary,
                    "description": issue.description,
                    "issue_type": issue.issue_type,
                    "priority": issue.priority,
                    "assignee": job.subject if options.assign_to_subject else issue.assignee,
                    "labels": issue.labels,
                    "project_key": options.project_key,
                },
            }
            try:
                child_request = self._validator.validate(request)
            except ValidationFailedError as e:
                log.warning("Skipping extracted issue {!r}: {}", issue.summary, e.errors)
                continue

            try:
                handle = await self._admit(child_request, parent_id=job.id)
            except PersistenceUnavailableError as e:
                log.error("Could not create follow-up issue {!r}: {}", issue.summary, e)
                continue
            if handle.job_id is not None:
                child_ids.append(handle.job_id)

        if child_ids:
            log.info("Created {} follow-up issue job(s)", len(child_ids))
        return child_ids

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------
    async def cancel(self, job_id: str) -> bool:
        """Cancel a job (best effort).

        A Queued or Retrying job is withdrawn before dispatch. For a
        Processing job the intent is recorded: the in-flight call
        completes and its result is discarded. Either way the job ends
        Failed with ``cancel_requested`` set and ``last_error`` set to
        "cancelled by caller".

        Returns:
            True if dispatch was prevented, False otherwise (unknown,
            terminal or already processing)
        """
        async with self._repository.write_lock:
            job = await self._repository.get(job_id)
            if job is None or job.is_terminal:
                return False

            log = bind_job(job.id, job.kind.value)
            if job.status is JobStatus.PROCESSING:
                if not job.cancel_requested:
                    job.cancel_requested = True
                    job.updated_at = self._clock()
                    await self._repository.save(job)
                    log.info("Cancellation requested while processing")
                return False

            if not self._accumulator.remove(job_id):
                self._pools[job.kind].remove(job_id)
            timer = self._retry_timers.pop(job_id, None)
            if timer is not None:
                timer.cancel()

            job.cancel(self._clock())
            await self._repository.save(job)
            log.info("Cancelled before dispatch")

        self._finish(job)
        return True

    # -------------------------------------------------------------------------
    # Notification
    # -------------------------------------------------------------------------
    def on_job_finished(self, callback: JobFinishedCallback) -> Callable[[], None]:
        """Register a listener fired once per job reaching a terminal state.

        Returns:
            A function that unregisters the listener
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def wait_for(
        self,
        job_id: str,
        timeout: float | None = None,
        raise_on_failure: bool = False,
    ) -> JobView:
        """Wait until a job reaches a terminal state.

        Args:
            job_id: Job identifier
            timeout: Maximum seconds to wait (None = forever)
            raise_on_failure: Raise TerminalFailureError if the job Failed

        Returns:
            Terminal view of the job

        Raises:
            JobNotFoundError: Unknown job id
            TimeoutError: Timeout elapsed first
            TerminalFailureError: Job Failed and raise_on_failure is set
            PersistenceUnavailableError: The job's state change could not be saved
        """
        future: asyncio.Future[JobView] = asyncio.get_running_loop().create_future()
        waiters = self._waiters.setdefault(job_id, [])
        waiters.append(future)
        try:
            view = await self.get_status(job_id)
            if not view.status.is_terminal:
                view = await asyncio.wait_for(future, timeout)
        finally:
            if future in waiters:
                waiters.remove(future)
            if not waiters:
                self._waiters.pop(job_id, None)

        if raise_on_failure and view.status is JobStatus.FAILED:
            raise TerminalFailureError(
                f"Job {job_id} failed after {view.attempts} attempt(s)",
                job_id=job_id,
                last_error=view.last_error,
            )
        return view

    def _finish(self, job: Job) -> None:
        """Account for a terminal transition and notify waiters/listeners."""
        if job.status is JobStatus.COMPLETED:
            self._total_completed += 1
        elif job.cancel_requested:
            self._total_cancelled += 1
        else:
            self._total_failed += 1

        view = job.to_view()
        for future in self._waiters.get(job.id, []):
            if not future.done():
                future.set_result(view)

        for listener in list(self._listeners):
            try:
                outcome = listener(view)
            except Exception:
                logger.exception("Job finished listener failed for {}", job.id)
                continue
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(self._await_listener(job.id, outcome))
                self._active_tasks.add(task)
                task.add_done_callback(self._active_tasks.discard)

    def _fail_waiters(self, job_id: str, error: Exception) -> None:
        for future in self._waiters.get(job_id, []):
            if not future.done():
                future.set_exception(error)

    async def _await_listener(self, job_id: str, outcome: Awaitable[None]) -> None:
        try:
            await outcome
        except Exception:
            logger.exception("Job finished listener failed for {}", job_id)

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    async def get_status(self, job_id: str) -> JobView:
        """Read the persisted state of a job.

        Raises:
            JobNotFoundError: Unknown (or expired) job id
            PersistenceUnavailableError: The store cannot be read
        """
        job = await self._repository.require(job_id)
        return job.to_view()

    @property
    def queue_depth(self) -> int:
        """Jobs accumulated for batching or waiting for a pool slot."""
        waiting = sum(pool.waiting_count for pool in self._pools.values())
        return self._accumulator.pending_count + waiting

    def pool(self, kind: JobKind) -> ConcurrencyPool:
        """Access the pool serving ``kind``."""
        return self._pools[kind]

    @property
    def accumulator(self) -> BatchAccumulator:
        return self._accumulator

    def stats(self) -> SchedulerStats:
        """Snapshot of queue depth, pool utilization and cache hit rate."""
        pools = {kind: pool.get_stats() for kind, pool in self._pools.items()}
        cache = self._cache.get_stats()
        return SchedulerStats(
            queue_depth=self.queue_depth,
            pending_batching=self._accumulator.pending_count,
            pending_retry=len(self._retry_timers),
            pool_utilization={kind: stats.utilization for kind, stats in pools.items()},
            cache_hit_rate=cache.hit_rate,
            pools=pools,
            cache=cache,
            total_submitted=self._total_submitted,
            total_cached=self._total_cached,
            total_rate_limited=self._total_rate_limited,
            total_completed=self._total_completed,
            total_failed=self._total_failed,
            total_cancelled=self._total_cancelled,
            total_retries=self._total_retries,
            total_write_failures=self._total_write_failures,
        )
