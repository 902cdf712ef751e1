"""
Job Queue Dispatcher

Durable, SQL-backed job queue. Jobs are rows in the ``jobs`` table, so a
worker or API restart never loses pending work.

Claiming is a two-step compare-and-set: pick the best eligible row (with
``FOR UPDATE SKIP LOCKED`` where the database supports it), then flip it to
``active`` only if it is still ``waiting``. A zero row count means another
worker won the race and the claim is retried, so a job is never active in
two invocations at once.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, utcnow
from app.core.config import Settings
from app.jobs.errors import InvalidPayload, JobNotCancellable, JobNotFound
from app.jobs.payloads import JobCategory, dump_payload, parse_category, parse_payload
from app.models import Job, JobStatus

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Accepts job submissions and owns every job's lifecycle bookkeeping."""

    CLAIM_RETRIES = 5

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock
        self._wakeups: Dict[JobCategory, asyncio.Event] = {c: asyncio.Event() for c in JobCategory}

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def _build_job(
        self,
        category: Union[JobCategory, str],
        payload: Any,
        delay: Union[float, timedelta] = 0,
        priority: int = 0,
        max_attempts: Optional[int] = None,
    ) -> Job:
        cat = parse_category(category)
        model = parse_payload(cat, payload)

        delay_seconds = delay.total_seconds() if isinstance(delay, timedelta) else float(delay)
        if delay_seconds < 0:
            raise InvalidPayload(cat.value, "delay must not be negative")
        if max_attempts is not None and max_attempts < 1:
            raise InvalidPayload(cat.value, "max_attempts must be at least 1")

        config = self._settings.queue_config(cat.value)
        now = self._clock()
        return Job(
            id=uuid.uuid4().hex,
            category=cat.value,
            payload=dump_payload(model),
            priority=priority,
            not_before=now + timedelta(seconds=delay_seconds),
            attempt=0,
            max_attempts=max_attempts or config.max_attempts,
            status=JobStatus.WAITING,
            created_at=now,
        )

    async def enqueue(
        self,
        category: Union[JobCategory, str],
        payload: Any,
        delay: Union[float, timedelta] = 0,
        priority: int = 0,
        max_attempts: Optional[int] = None,
    ) -> str:
        """
        Validate and persist a job.

        Args:
            category: One of email, sms, inventory, reports, scheduled
            payload: Dict (or payload model) matching the category schema
            delay: Seconds (or timedelta) before the job becomes eligible
            priority: Higher runs first among jobs with the same not_before
            max_attempts: Override the category's retry budget

        Returns:
            The new job id

        Raises:
            InvalidPayload: payload does not match the category schema
        """
        return (await self.enqueue_many([
            dict(category=category, payload=payload, delay=delay, priority=priority, max_attempts=max_attempts)
        ]))[0]

    async def enqueue_many(self, jobs: Iterable[Dict[str, Any]]) -> List[str]:
        """
        Validate and persist several jobs in one commit: all of them or none.

        Each entry takes the keyword arguments of ``enqueue``.
        """
        built = [self._build_job(**spec) for spec in jobs]

        async with self._session_factory() as session:
            session.add_all(built)
            await session.commit()

        for job in built:
            self._wakeups[JobCategory(job.category)].set()
            logger.info(
                f"Enqueued {job.category} job {job.id} ({job.payload.get('type')}) "
                f"not_before={job.not_before:%H:%M:%S} priority={job.priority}"
            )
        return [job.id for job in built]

    async def wait_for_work(self, category: Union[JobCategory, str], timeout: float) -> None:
        """Sleep until a job is enqueued in this process or the timeout passes."""
        event = self._wakeups[parse_category(category)]
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        finally:
            event.clear()

    # =========================================================================
    # CLAIMING
    # =========================================================================

    async def claim_next(
        self,
        category: Union[JobCategory, str],
        worker_id: str,
        lease_seconds: float,
    ) -> Optional[Job]:
        """Atomically move the next eligible job to ``active``; None if idle."""
        cat = parse_category(category)

        for _ in range(self.CLAIM_RETRIES):
            now = self._clock()
            async with self._session_factory() as session:
                async with session.begin():
                    candidate = await session.execute(
                        select(Job.id)
                        .where(
                            Job.category == cat.value,
                            Job.status == JobStatus.WAITING,
                            Job.not_before <= now,
                        )
                        .order_by(Job.not_before.asc(), Job.priority.desc(), Job.created_at.asc())
                        .limit(1)
                        .with_for_update(skip_locked=True)
                    )
                    job_id = candidate.scalar_one_or_none()
                    if job_id is None:
                        return None

                    claimed = await session.execute(
                        update(Job)
                        .where(Job.id == job_id, Job.status == JobStatus.WAITING)
                        .values(
                            status=JobStatus.ACTIVE,
                            worker_id=worker_id,
                            started_at=now,
                            lease_expires_at=now + timedelta(seconds=lease_seconds),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if claimed.rowcount != 1:
                        continue

                    job = await session.get(Job, job_id, populate_existing=True)

            logger.debug(f"{worker_id} claimed job {job.id} (attempt {job.attempt + 1}/{job.max_attempts})")
            return job

        return None

    # =========================================================================
    # OUTCOME REPORTING
    # =========================================================================

    async def _load_reportable(
        self,
        session: AsyncSession,
        job_id: str,
        worker_id: Optional[str],
    ) -> Optional[Job]:
        job = await session.get(Job, job_id, with_for_update=True, populate_existing=True)
        if job is None:
            logger.warning(f"Outcome for unknown job {job_id} discarded")
            return None
        if job.status != JobStatus.ACTIVE:
            logger.warning(f"Outcome for job {job_id} discarded: job is {job.status.value}")
            return None
        if worker_id is not None and job.worker_id != worker_id:
            logger.warning(f"Outcome for job {job_id} from {worker_id} discarded: now owned by {job.worker_id}")
            return None
        return job

    def backoff_delay(self, category: str, attempt: int) -> float:
        """Exponential backoff: base * 2^attempt, capped."""
        config = self._settings.queue_config(category)
        return min(config.backoff_base_seconds * (2 ** attempt), config.backoff_cap_seconds)

    async def complete(
        self,
        job_id: str,
        result: Optional[dict] = None,
        worker_id: Optional[str] = None,
    ) -> Optional[Job]:
        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                job = await self._load_reportable(session, job_id, worker_id)
                if job is None:
                    return None
                job.status = JobStatus.COMPLETED
                job.result = result
                job.last_error = None
                job.finished_at = now
                job.lease_expires_at = None

        logger.info(f"✅ [{job.category}] Job {job.id} completed")
        return job

    async def fail(
        self,
        job_id: str,
        error: str,
        retryable: bool = True,
        result: Optional[dict] = None,
        worker_id: Optional[str] = None,
    ) -> Optional[Job]:
        """
        Record a failed attempt.

        Non-retryable failures go straight to ``failed`` without consuming an
        attempt. Retryable ones increment ``attempt`` and either reschedule
        with exponential backoff or, once the budget is spent, fail for good.
        """
        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                job = await self._load_reportable(session, job_id, worker_id)
                if job is None:
                    return None
                self._apply_failure(job, error, retryable, result, now)
        return job

    def _apply_failure(self, job: Job, error: str, retryable: bool, result: Optional[dict], now) -> None:
        job.last_error = error[:2000]
        job.worker_id = None
        job.lease_expires_at = None
        if result is not None:
            job.result = result

        if not retryable:
            job.status = JobStatus.FAILED
            job.finished_at = now
            logger.error(f"❌ [{job.category}] Job {job.id} failed permanently: {error}")
            return

        previous = job.attempt
        job.attempt = previous + 1
        if job.attempt < job.max_attempts:
            delay = self.backoff_delay(job.category, previous)
            job.status = JobStatus.WAITING
            job.not_before = now + timedelta(seconds=delay)
            logger.warning(
                f"⚠️ [{job.category}] Job {job.id} attempt {job.attempt}/{job.max_attempts} "
                f"failed, retrying in {delay:.1f}s: {error}"
            )
        else:
            job.status = JobStatus.FAILED
            job.finished_at = now
            logger.error(
                f"❌ [{job.category}] Job {job.id} failed after {job.attempt} attempts: {error}"
            )

    async def record_progress(self, job_id: str, unit: str, outcome: dict) -> None:
        """Persist the outcome of one unit of an active job (e.g. one recipient)."""
        async with self._session_factory() as session:
            async with session.begin():
                job = await session.get(Job, job_id, with_for_update=True, populate_existing=True)
                if job is None:
                    raise JobNotFound(job_id)
                progress = dict(job.progress or {})
                progress[unit] = outcome
                job.progress = progress

    # =========================================================================
    # QUERIES & MAINTENANCE
    # =========================================================================

    async def get(self, job_id: str) -> Job:
        async with self._session_factory() as session:
            job = await session.get(Job, job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def cancel(self, job_id: str) -> None:
        """Remove a job that has not been picked up yet."""
        async with self._session_factory() as session:
            async with session.begin():
                removed = await session.execute(
                    delete(Job)
                    .where(Job.id == job_id, Job.status == JobStatus.WAITING)
                    .execution_options(synchronize_session=False)
                )
                if removed.rowcount == 1:
                    logger.info(f"Job {job_id} cancelled")
                    return
                status = await session.scalar(select(Job.status).where(Job.id == job_id))

        if status is None:
            raise JobNotFound(job_id)
        raise JobNotCancellable(job_id, status.value)

    async def recover_stalled(self) -> int:
        """Treat active jobs whose lease expired as failed (retryable) attempts."""
        now = self._clock()
        recovered = 0
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(Job)
                    .where(Job.status == JobStatus.ACTIVE, Job.lease_expires_at < now)
                    .with_for_update(skip_locked=True)
                )
                for job in result.scalars().all():
                    logger.warning(f"⚠️ [{job.category}] Job {job.id} stalled on {job.worker_id}")
                    self._apply_failure(job, "stalled: worker lease expired", True, None, now)
                    recovered += 1
        return recovered

    async def purge_finished(self) -> Dict[str, int]:
        """Delete terminal jobs past their retention window."""
        now = self._clock()
        completed_cutoff = now - timedelta(hours=self._settings.job_completed_retention_hours)
        failed_cutoff = now - timedelta(hours=self._settings.job_failed_retention_hours)

        async with self._session_factory() as session:
            async with session.begin():
                completed = await session.execute(
                    delete(Job)
                    .where(Job.status == JobStatus.COMPLETED, Job.finished_at < completed_cutoff)
                    .execution_options(synchronize_session=False)
                )
                failed = await session.execute(
                    delete(Job)
                    .where(Job.status == JobStatus.FAILED, Job.finished_at < failed_cutoff)
                    .execution_options(synchronize_session=False)
                )

        purged = {"completed": completed.rowcount, "failed": failed.rowcount}
        logger.info(f"Purged finished jobs: {purged}")
        return purged

    async def counts(self) -> Dict[str, Dict[str, int]]:
        """Job counts per category and status."""
        async with self._session_factory() as session:
            rows = await session.execute(
                select(Job.category, Job.status, func.count(Job.id)).group_by(Job.category, Job.status)
            )
            counts: Dict[str, Dict[str, int]] = {c.value: {} for c in JobCategory}
            for category, status, count in rows.all():
                counts.setdefault(category, {})[status.value] = count
        return counts
