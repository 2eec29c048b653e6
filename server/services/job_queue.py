"""Job Queue Adapter - immediate queues plus named cron schedules.

Immediate jobs live in per-queue asyncio queues drained by worker tasks with
bounded local concurrency. When a database is attached, every job is also
stored in ``automation_jobs`` until a worker has handled it, and jobs still
pending at shutdown are queued again on the next start. Cron schedules are
APScheduler jobs that enqueue their payload onto the queue of the same name
on every tick, so a schedule and its worker are registered independently.
Failed handlers are retried (at-least-once) up to ``max_attempts``.
"""

import asyncio
import json
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.base import JobLookupError

from core.database import Database
from core.logging import get_logger
from services.automation.exceptions import SchedulingError

logger = get_logger(__name__)

# Standard cron numbers weekdays from Sunday=0 (7 is also Sunday); APScheduler
# numbers them from Monday=0, so numeric weekdays are expanded into names.
_CRON_WEEKDAYS = ['sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat']
_NUMERIC_WEEKDAY = re.compile(r'^(\*|\d+(?:-\d+)?)(?:/(\d+))?$')


@dataclass
class Job:
    """A unit of work delivered to a worker handler."""
    queue: str
    data: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts: int = 0
    created_at: float = field(default_factory=time.time)


JobHandler = Callable[[List[Job]], Awaitable[None]]


@dataclass
class _Worker:
    queue: str
    handler: JobHandler
    concurrency: int
    batch_size: int
    tasks: List[asyncio.Task] = field(default_factory=list)
    busy: Set[asyncio.Task] = field(default_factory=set)
    closing: bool = False


def _weekday(text: str) -> int:
    number = int(text)
    if number > 7:
        raise ValueError(f"Weekday {number} is out of range 0-7")
    return number


def cron_weekdays_to_names(weekday: str) -> str:
    """Rewrite a cron day-of-week field with day names.

    Numbers, ranges (``1-5``, wrapping ``5-0``) and steps (``*/2``,
    ``1-5/2``) are expanded into an explicit comma list; parts that already
    use names are kept as written.
    """
    if weekday in ('*', '?'):
        return '*'

    names: List[str] = []
    for part in weekday.split(','):
        match = _NUMERIC_WEEKDAY.match(part)
        if match is None:
            names.append(part)
            continue

        base, step = match.group(1), int(match.group(2) or 1)
        if step < 1:
            raise ValueError(f"Invalid weekday step in '{part}'")

        if base == '*':
            days = list(range(7))
        elif '-' in base:
            start, end = (_weekday(n) for n in base.split('-'))
            if start <= end:
                days = list(range(start, end + 1))
            else:
                days = list(range(start, 7)) + list(range(0, end + 1))
        elif match.group(2):
            days = list(range(_weekday(base), 7))
        else:
            days = [_weekday(base)]

        names.extend(_CRON_WEEKDAYS[day % 7] for day in days[::step])

    return ','.join(dict.fromkeys(names))


def build_cron_trigger(cron_expression: str, timezone: str = "UTC") -> CronTrigger:
    """Build a CronTrigger from a 5-field or 6-field cron expression.

    5-field: minute hour day month weekday (second fixed at 0)
    6-field: second minute hour day month weekday

    Raises:
        ValueError: If the expression is malformed
    """
    parts = (cron_expression or '').split()

    if len(parts) == 6:
        second, minute, hour, day, month, weekday = parts
    elif len(parts) == 5:
        second = '0'
        minute, hour, day, month, weekday = parts
    else:
        raise ValueError(f"Expected 5 or 6 cron fields, got {len(parts)}: '{cron_expression}'")

    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=cron_weekdays_to_names(weekday),
        timezone=timezone
    )


class JobQueue:
    """In-process job queue with APScheduler-backed cron schedules."""

    def __init__(self, timezone: str = "UTC", max_attempts: int = 3,
                 retry_delay: float = 1.0,
                 scheduler: Optional[AsyncIOScheduler] = None,
                 database: Optional[Database] = None):
        self.timezone = timezone
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.database = database
        self._scheduler = scheduler
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, _Worker] = {}
        self._schedules: Dict[str, Dict[str, Any]] = {}
        self._retry_tasks: Dict[asyncio.Task, Job] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def durable(self) -> bool:
        return self.database is not None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the cron scheduler (must be called inside the event loop).

        With a database attached, jobs left pending by a previous process are
        queued again before any worker is registered.
        """
        if self._running:
            return
        if self.durable:
            await self._restore_pending()
        # AsyncIOScheduler binds the event loop it is created in
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        if not self._scheduler.running:
            self._scheduler.start()
        self._running = True
        logger.info("[JobQueue] Started", timezone=self.timezone, durable=self.durable)

    async def stop(self) -> None:
        """Stop all workers and the scheduler.

        Jobs interrupted or still queued stay pending in the database.
        """
        if not self._running:
            return
        self._running = False

        tasks = [t for w in self._workers.values() for t in w.tasks]
        tasks.extend(list(self._retry_tasks))
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        if self.durable:
            self._queues.clear()

        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._schedules.clear()
        logger.info("[JobQueue] Stopped")

    async def _restore_pending(self) -> None:
        self._queues.clear()
        rows = await self.database.get_pending_jobs()
        for row in rows:
            self._queue(row.queue).put_nowait(Job(
                queue=row.queue,
                data=dict(row.payload or {}),
                id=row.id,
                attempts=row.attempts,
                created_at=row.created_at.timestamp(),
            ))
        if rows:
            logger.info("[JobQueue] Restored pending jobs", count=len(rows),
                        queues=sorted({row.queue for row in rows}))

    # =========================================================================
    # IMMEDIATE JOBS
    # =========================================================================

    def _queue(self, name: str) -> asyncio.Queue:
        queue = self._queues.get(name)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[name] = queue
        return queue

    async def enqueue(self, queue_name: str, payload: Dict[str, Any]) -> str:
        """Enqueue an immediate job and return its id.

        With a database attached the job is stored before it is queued, so a
        failed insert raises and nothing is queued.
        """
        job = Job(queue=queue_name, data=json.loads(json.dumps(payload, default=str)))
        if self.durable:
            await self.database.create_job(job.id, queue_name, job.data)
        await self._queue(queue_name).put(job)
        logger.debug("[JobQueue] Job enqueued", queue=queue_name, job_id=job.id)
        return job.id

    async def register_worker(self, queue_name: str, handler: JobHandler,
                              concurrency: int = 1, batch_size: int = 1) -> None:
        """Attach a worker pool to a queue.

        Registering again for the same queue swaps the handler without
        growing the pool or interrupting a job in progress.
        """
        existing = self._workers.get(queue_name)
        if existing:
            existing.handler = handler
            return

        worker = _Worker(queue_name, handler, max(1, concurrency), max(1, batch_size))
        queue = self._queue(queue_name)
        for index in range(worker.concurrency):
            worker.tasks.append(asyncio.create_task(
                self._work(worker, queue),
                name=f"worker_{queue_name}_{index}"
            ))
        self._workers[queue_name] = worker
        logger.info("[JobQueue] Worker registered", queue=queue_name, concurrency=worker.concurrency)

    async def unregister_worker(self, queue_name: str) -> bool:
        """Remove the worker pool of a queue.

        Idle workers stop at once; a worker in the middle of a job finishes
        that job first. Jobs still waiting on the queue are dropped.
        """
        worker = self._workers.pop(queue_name, None)
        if not worker:
            return False
        worker.closing = True
        for task in worker.tasks:
            if task not in worker.busy:
                task.cancel()
        await asyncio.gather(*worker.tasks, return_exceptions=True)
        await self._drop_queued(queue_name)
        logger.info("[JobQueue] Worker removed", queue=queue_name)
        return True

    def has_worker(self, queue_name: str) -> bool:
        return queue_name in self._workers

    async def drop_unattended(self) -> int:
        """Drop jobs sitting on queues that have no worker. Returns how many."""
        dropped = 0
        for name in [n for n in self._queues if n not in self._workers]:
            dropped += await self._drop_queued(name)
        return dropped

    async def _drop_queued(self, queue_name: str) -> int:
        queue = self._queues.pop(queue_name, None)
        job_ids: List[str] = []

        retrying = [t for t, job in self._retry_tasks.items() if job.queue == queue_name]
        for task in retrying:
            job_ids.append(self._retry_tasks[task].id)
            task.cancel()
        if retrying:
            await asyncio.gather(*retrying, return_exceptions=True)

        while queue is not None and not queue.empty():
            job = queue.get_nowait()
            queue.task_done()
            job_ids.append(job.id)

        if job_ids:
            logger.warning("[JobQueue] Dropped jobs without a worker", queue=queue_name, count=len(job_ids))
            if self.durable:
                await self.database.drop_jobs(job_ids)
        return len(job_ids)

    async def wait_idle(self, queue_name: str) -> None:
        """Block until every job put on the queue has been processed."""
        await self._queue(queue_name).join()

    async def _work(self, worker: _Worker, queue: asyncio.Queue) -> None:
        current = asyncio.current_task()
        while not worker.closing:
            job = await queue.get()
            worker.busy.add(current)
            try:
                batch = [job]
                while len(batch) < worker.batch_size and not queue.empty():
                    batch.append(queue.get_nowait())
                await self._process(worker, queue, batch)
            finally:
                worker.busy.discard(current)

    async def _process(self, worker: _Worker, queue: asyncio.Queue, batch: List[Job]) -> None:
        error = None
        try:
            await worker.handler(batch)
        except asyncio.CancelledError:
            for _ in batch:
                queue.task_done()
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error("[JobQueue] Handler failed", queue=worker.queue,
                         job_ids=[j.id for j in batch], error=error)

        for item in batch:
            if error is None:
                if self.durable:
                    await self._persist(self.database.complete_job, item.id)
                queue.task_done()
                continue
            retry = self._should_retry(item)
            if self.durable:
                await self._persist(self.database.record_job_failure, item.id, item.attempts,
                                    error, final=not retry)
            if retry:
                self._start_retry(item, queue)
            else:
                queue.task_done()

    async def _persist(self, write: Callable[..., Awaitable[None]], job_id: str, *args, **kwargs) -> None:
        # A lost status write only means the job is delivered again after a restart
        try:
            await write(job_id, *args, **kwargs)
        except Exception as e:
            logger.error("[JobQueue] Job state not saved", job_id=job_id,
                         write=write.__name__, error=str(e))

    def _should_retry(self, job: Job) -> bool:
        job.attempts += 1
        if job.attempts >= self.max_attempts:
            logger.error("[JobQueue] Job dropped after max attempts",
                         queue=job.queue, job_id=job.id, attempts=job.attempts)
            return False
        return True

    def _start_retry(self, job: Job, queue: asyncio.Queue) -> None:
        delay = self.retry_delay * (2 ** (job.attempts - 1))
        task = asyncio.create_task(self._retry_later(job, queue, delay))
        self._retry_tasks[task] = job
        task.add_done_callback(lambda t: self._retry_tasks.pop(t, None))
        logger.warning("[JobQueue] Job retry scheduled", queue=job.queue, job_id=job.id,
                       attempt=job.attempts, delay=delay)

    async def _retry_later(self, job: Job, queue: asyncio.Queue, delay: float) -> None:
        # The original delivery stays unfinished until the retry is queued,
        # so wait_idle() does not return in between.
        try:
            await asyncio.sleep(delay)
            queue.put_nowait(job)
        finally:
            queue.task_done()

    # =========================================================================
    # CRON SCHEDULES
    # =========================================================================

    async def schedule(self, schedule_name: str, cron_expression: str,
                       payload: Dict[str, Any], timezone: Optional[str] = None) -> str:
        """Register (or replace) a named cron schedule.

        Each tick enqueues ``payload`` on the queue named ``schedule_name``.

        Raises:
            SchedulingError: If the cron expression is rejected
        """
        tz = timezone or self.timezone
        if self._scheduler is None:
            raise SchedulingError(schedule_name, "job queue is not started")
        try:
            trigger = build_cron_trigger(cron_expression, tz)
            self._scheduler.add_job(
                self._fire_schedule,
                trigger=trigger,
                id=schedule_name,
                replace_existing=True,
                kwargs={"schedule_name": schedule_name},
            )
        except Exception as e:
            raise SchedulingError(schedule_name, str(e)) from e

        self._schedules[schedule_name] = {
            "name": schedule_name,
            "cron": cron_expression,
            "timezone": tz,
            "payload": dict(payload),
        }
        logger.info("[JobQueue] Registered cron schedule", schedule=schedule_name, expression=cron_expression)
        return schedule_name

    async def unschedule(self, schedule_name: str) -> bool:
        """Remove a named schedule. Returns False if it did not exist."""
        self._schedules.pop(schedule_name, None)
        if self._scheduler is None:
            return False
        try:
            self._scheduler.remove_job(schedule_name)
            logger.info("[JobQueue] Removed cron schedule", schedule=schedule_name)
            return True
        except JobLookupError:
            logger.debug("[JobQueue] Schedule not found", schedule=schedule_name)
            return False

    async def _fire_schedule(self, schedule_name: str) -> None:
        info = self._schedules.get(schedule_name)
        if not info:
            return
        await self.enqueue(schedule_name, info["payload"])

    def get_schedule(self, schedule_name: str) -> Optional[Dict[str, Any]]:
        """Information about a registered schedule, or None."""
        info = self._schedules.get(schedule_name)
        if not info:
            return None
        job = self._scheduler.get_job(schedule_name) if self._scheduler else None
        next_run: Optional[datetime] = getattr(job, "next_run_time", None) if job else None
        return {
            **info,
            "next_run_time": next_run.isoformat() if next_run else None,
        }

    def get_schedules(self) -> List[Dict[str, Any]]:
        return [self.get_schedule(name) for name in list(self._schedules)]
