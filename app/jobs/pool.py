"""
Worker Pools

One pool per job category. A pool is a single claim loop plus up to
``concurrency`` in-flight job tasks:

    wait for a free slot -> wait for rate-limit budget -> claim a job
    -> record the start -> run the handler in its own task

Handler errors never escape a job task; every outcome is reported back to
the dispatcher. If reporting itself fails, the job stays active until its
lease expires and the stall sweep retries it.
"""

import asyncio
import contextlib
import logging
import os
import socket
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import QueueConfig, Settings
from app.jobs.dispatcher import JobDispatcher
from app.jobs.errors import InvalidPayload, PermanentJobError
from app.jobs.handlers import JobContext, JobHandler
from app.jobs.payloads import JobCategory, parse_category, parse_payload
from app.jobs.rate_limit import SlidingWindowRateLimiter
from app.models import Job

logger = logging.getLogger(__name__)


def default_worker_id(category: str) -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{category}"


class WorkerPool:
    def __init__(
        self,
        category: JobCategory,
        dispatcher: JobDispatcher,
        handler: JobHandler,
        config: QueueConfig,
        poll_interval: float = 1.0,
        lease_grace: float = 30.0,
        worker_id: Optional[str] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ):
        self.category = parse_category(category)
        self.dispatcher = dispatcher
        self.handler = handler
        self.config = config
        self.poll_interval = poll_interval
        self.lease_seconds = config.timeout_seconds + lease_grace
        self.worker_id = worker_id or default_worker_id(self.category.value)

        if rate_limiter is None and config.has_rate_limit:
            rate_limiter = SlidingWindowRateLimiter(config.rate_limit_max, config.rate_limit_period)
        self.rate_limiter = rate_limiter

        self._slots = asyncio.Semaphore(config.concurrency)
        self._inflight: Set[asyncio.Task] = set()
        self._stopping = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

        self.active = 0
        self.peak_active = 0
        self.processed = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._run(), name=f"pool-{self.category.value}")
        logger.info(
            f"🔧 {self.category.value} pool started (concurrency={self.config.concurrency}, "
            f"rate_limit={self.config.rate_limit_max or '-'}/{self.config.rate_limit_period}s, "
            f"worker={self.worker_id})"
        )

    async def _run(self) -> None:
        while not self._stopping.is_set():
            await self._slots.acquire()
            handed_off = False
            try:
                if self.rate_limiter is not None:
                    await self.rate_limiter.wait_available()

                try:
                    job = await self.dispatcher.claim_next(self.category, self.worker_id, self.lease_seconds)
                except SQLAlchemyError as e:
                    logger.error(f"[{self.category.value}] claim failed: {e}")
                    await asyncio.sleep(self.poll_interval)
                    continue

                if job is None:
                    await self.dispatcher.wait_for_work(self.category, self.poll_interval)
                    continue

                if self.rate_limiter is not None:
                    self.rate_limiter.record_start()

                task = asyncio.create_task(self._process(job), name=f"job-{job.id}")
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                handed_off = True
            finally:
                if not handed_off:
                    self._slots.release()

    async def _process(self, job: Job) -> None:
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            await self._execute(job)
        finally:
            self.active -= 1
            self.processed += 1
            self._slots.release()

    async def _execute(self, job: Job) -> None:
        ctx = JobContext(job, self.dispatcher)
        try:
            payload = parse_payload(self.category, job.payload)
            result = await asyncio.wait_for(
                self.handler.handle(payload, ctx),
                timeout=self.config.timeout_seconds,
            )
        except InvalidPayload as e:
            await self._report_failure(job, str(e), retryable=False)
        except PermanentJobError as e:
            await self._report_failure(job, str(e), retryable=False, result=e.result)
        except asyncio.TimeoutError:
            await self._report_failure(job, f"timed out after {self.config.timeout_seconds}s", retryable=True)
        except Exception as e:
            logger.debug(f"[{self.category.value}] job {job.id} raised", exc_info=True)
            await self._report_failure(job, str(e) or type(e).__name__, retryable=True,
                                       result=getattr(e, "result", None))
        else:
            try:
                await self.dispatcher.complete(job.id, result, worker_id=self.worker_id)
            except SQLAlchemyError as e:
                logger.error(f"Could not record completion of job {job.id}, left for stall recovery: {e}")

    async def _report_failure(
        self,
        job: Job,
        error: str,
        retryable: bool,
        result: Optional[dict] = None,
    ) -> None:
        try:
            await self.dispatcher.fail(job.id, error, retryable=retryable, result=result, worker_id=self.worker_id)
        except SQLAlchemyError as e:
            logger.error(f"Could not record failure of job {job.id}, left for stall recovery: {e}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Stop claiming and wait for in-flight jobs to finish."""
        self._stopping.set()
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        if self._inflight:
            logger.info(f"Draining {len(self._inflight)} in-flight {self.category.value} job(s)")
            done, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
            if pending:
                logger.warning(
                    f"{len(pending)} {self.category.value} job(s) still running after drain timeout; "
                    f"their leases will expire"
                )
        logger.info(f"🛑 {self.category.value} pool stopped")


class WorkerSupervisor:
    """Runs a set of pools plus the periodic stall-recovery sweep."""

    def __init__(self, pools: Iterable[WorkerPool], dispatcher: JobDispatcher, stall_check_seconds: float = 30.0):
        self.pools: List[WorkerPool] = list(pools)
        self.dispatcher = dispatcher
        self.stall_check_seconds = stall_check_seconds
        self._sweeper: Optional[asyncio.Task] = None

    def start(self) -> None:
        for pool in self.pools:
            pool.start()
        self._sweeper = asyncio.create_task(self._sweep(), name="stall-sweeper")

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.stall_check_seconds)
            try:
                recovered = await self.dispatcher.recover_stalled()
                if recovered:
                    logger.warning(f"Recovered {recovered} stalled job(s)")
            except SQLAlchemyError as e:
                logger.error(f"Stall sweep failed: {e}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await asyncio.gather(*(pool.drain(timeout) for pool in self.pools))


def build_pools(
    settings: Settings,
    dispatcher: JobDispatcher,
    handlers: Dict[JobCategory, JobHandler],
    categories: Optional[Iterable[str]] = None,
) -> List[WorkerPool]:
    selected = [parse_category(c) for c in categories] if categories else list(JobCategory)
    return [
        WorkerPool(
            category,
            dispatcher,
            handlers[category],
            settings.queue_config(category.value),
            poll_interval=settings.queue_poll_interval_seconds,
            lease_grace=settings.queue_lease_grace_seconds,
        )
        for category in selected
    ]
