"""Job queue: workers, retries and cron schedules."""

import asyncio
from datetime import datetime, timezone

import pytest

from services.automation.exceptions import SchedulingError
from services.job_queue import JobQueue, build_cron_trigger, cron_weekdays_to_names

# Thursday
JAN_1 = datetime(2026, 1, 1, 0, 0, tzinfo=timezone.utc)


def test_cron_trigger_five_fields_uses_cron_weekday_numbers():
    monday = build_cron_trigger("0 9 * * 1").get_next_fire_time(None, JAN_1)
    sunday = build_cron_trigger("30 8 * * 0").get_next_fire_time(None, JAN_1)

    assert monday == datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    assert sunday == datetime(2026, 1, 4, 8, 30, tzinfo=timezone.utc)


def test_cron_trigger_weekday_ranges_and_steps():
    weekdays = build_cron_trigger("0 9 * * 1-5").get_next_fire_time(None, JAN_1)
    every_fifteen = build_cron_trigger("*/15 * * * *").get_next_fire_time(None, JAN_1)

    assert weekdays == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    assert every_fifteen == JAN_1


def test_weekday_field_is_expanded_into_day_names():
    assert cron_weekdays_to_names("0-6") == "sun,mon,tue,wed,thu,fri,sat"
    assert cron_weekdays_to_names("*/2") == "sun,tue,thu,sat"
    assert cron_weekdays_to_names("5-0") == "fri,sat,sun"
    assert cron_weekdays_to_names("1-5/2") == "mon,wed,fri"
    assert cron_weekdays_to_names("1,7") == "mon,sun"
    assert cron_weekdays_to_names("mon-fri") == "mon-fri"
    assert cron_weekdays_to_names("*") == "*"


def test_cron_trigger_weekday_ranges_follow_cron_numbering():
    every_day = build_cron_trigger("0 9 * * 0-6").get_next_fire_time(None, JAN_1)
    every_other_day = build_cron_trigger("0 9 * * */2").get_next_fire_time(None, JAN_1)
    weekend = build_cron_trigger("0 9 * * 5-0")

    assert every_day == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    assert every_other_day == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    assert weekend.get_next_fire_time(None, JAN_1) == datetime(2026, 1, 2, 9, 0, tzinfo=timezone.utc)
    saturday_noon = datetime(2026, 1, 3, 12, 0, tzinfo=timezone.utc)
    assert weekend.get_next_fire_time(None, saturday_noon) == datetime(2026, 1, 4, 9, 0, tzinfo=timezone.utc)


def test_weekday_out_of_range_is_rejected():
    with pytest.raises(ValueError):
        build_cron_trigger("0 9 * * 8")


def test_cron_trigger_six_fields_includes_seconds():
    trigger = build_cron_trigger("30 0 9 * * *")
    assert trigger.get_next_fire_time(None, JAN_1) == datetime(2026, 1, 1, 9, 0, 30, tzinfo=timezone.utc)


def test_cron_trigger_rejects_wrong_field_count():
    with pytest.raises(ValueError):
        build_cron_trigger("0 9 * *")
    with pytest.raises(ValueError):
        build_cron_trigger("")


@pytest.mark.asyncio
async def test_worker_processes_enqueued_jobs():
    queue = JobQueue()
    await queue.start()
    seen = []

    async def handler(jobs):
        seen.extend(job.data["n"] for job in jobs)

    await queue.register_worker("work", handler)
    for n in range(3):
        await queue.enqueue("work", {"n": n})
    await asyncio.wait_for(queue.wait_idle("work"), timeout=5)
    await queue.stop()

    assert seen == [0, 1, 2]


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    queue = JobQueue()
    await queue.start()
    active = 0
    peak = 0

    async def handler(jobs):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1

    await queue.register_worker("work", handler, concurrency=3)
    for n in range(9):
        await queue.enqueue("work", {"n": n})
    await asyncio.wait_for(queue.wait_idle("work"), timeout=5)
    await queue.stop()

    assert peak == 3


@pytest.mark.asyncio
async def test_failed_job_is_retried_until_it_succeeds():
    queue = JobQueue(max_attempts=3, retry_delay=0.01)
    await queue.start()
    attempts = []

    async def handler(jobs):
        attempts.append(jobs[0].attempts)
        if len(attempts) < 2:
            raise RuntimeError("database unavailable")

    await queue.register_worker("work", handler)
    await queue.enqueue("work", {})
    await asyncio.wait_for(queue.wait_idle("work"), timeout=5)
    await queue.stop()

    assert attempts == [0, 1]


@pytest.mark.asyncio
async def test_job_dropped_after_max_attempts():
    queue = JobQueue(max_attempts=2, retry_delay=0.01)
    await queue.start()
    calls = 0

    async def handler(jobs):
        nonlocal calls
        calls += 1
        raise RuntimeError("always failing")

    await queue.register_worker("work", handler)
    await queue.enqueue("work", {})
    await asyncio.wait_for(queue.wait_idle("work"), timeout=5)
    await queue.stop()

    assert calls == 2


@pytest.mark.asyncio
async def test_schedule_registration_and_removal():
    queue = JobQueue()
    await queue.start()

    await queue.schedule("rule-schedule-1", "0 9 * * 1", {"ruleId": 1})
    info = queue.get_schedule("rule-schedule-1")
    assert info["cron"] == "0 9 * * 1"
    assert info["payload"] == {"ruleId": 1}
    assert info["next_run_time"] is not None

    assert await queue.unschedule("rule-schedule-1") is True
    assert queue.get_schedule("rule-schedule-1") is None
    assert await queue.unschedule("rule-schedule-1") is False
    await queue.stop()


@pytest.mark.asyncio
async def test_invalid_cron_raises_scheduling_error():
    queue = JobQueue()
    await queue.start()
    with pytest.raises(SchedulingError):
        await queue.schedule("rule-schedule-2", "not a cron", {})
    with pytest.raises(SchedulingError):
        await queue.schedule("rule-schedule-2", "99 9 * * *", {})
    assert queue.get_schedule("rule-schedule-2") is None
    await queue.stop()


@pytest.mark.asyncio
async def test_schedule_tick_enqueues_payload_on_its_queue():
    queue = JobQueue()
    await queue.start()
    received = []

    async def handler(jobs):
        received.extend(job.data for job in jobs)

    await queue.schedule("rule-schedule-3", "0 9 * * 1", {"ruleId": 3})
    await queue.register_worker("rule-schedule-3", handler)
    await queue._fire_schedule("rule-schedule-3")
    await asyncio.wait_for(queue.wait_idle("rule-schedule-3"), timeout=5)
    await queue.stop()

    assert received == [{"ruleId": 3}]


@pytest.mark.asyncio
async def test_stored_job_is_marked_done(database):
    queue = JobQueue(database=database)
    await queue.start()

    async def handler(jobs):
        pass

    await queue.register_worker("work", handler)
    job_id = await queue.enqueue("work", {"ruleId": 1, "sentAt": datetime(2026, 1, 1, tzinfo=timezone.utc)})
    await asyncio.wait_for(queue.wait_idle("work"), timeout=5)
    await queue.stop()

    stored = await database.get_job(job_id)
    assert stored.status == "done"
    assert stored.queue == "work"
    assert stored.payload == {"ruleId": 1, "sentAt": "2026-01-01 00:00:00+00:00"}


@pytest.mark.asyncio
async def test_pending_jobs_are_delivered_after_restart(database):
    queue = JobQueue(database=database)
    await queue.start()
    job_id = await queue.enqueue("work", {"n": 1})
    await queue.stop()

    assert (await database.get_job(job_id)).status == "pending"

    restarted = JobQueue(database=database)
    await restarted.start()
    seen = []

    async def handler(jobs):
        seen.extend((job.id, job.data) for job in jobs)

    await restarted.register_worker("work", handler)
    await asyncio.wait_for(restarted.wait_idle("work"), timeout=5)
    await restarted.stop()

    assert seen == [(job_id, {"n": 1})]
    assert (await database.get_job(job_id)).status == "done"


@pytest.mark.asyncio
async def test_failed_attempts_are_stored(database):
    queue = JobQueue(max_attempts=2, retry_delay=0.01, database=database)
    await queue.start()

    async def handler(jobs):
        raise RuntimeError("always failing")

    await queue.register_worker("work", handler)
    job_id = await queue.enqueue("work", {})
    await asyncio.wait_for(queue.wait_idle("work"), timeout=5)
    await queue.stop()

    stored = await database.get_job(job_id)
    assert stored.status == "failed"
    assert stored.attempts == 2
    assert stored.last_error == "always failing"
    assert await database.get_pending_jobs() == []


@pytest.mark.asyncio
async def test_removing_worker_finishes_job_in_progress(database):
    queue = JobQueue(database=database)
    await queue.start()
    started = asyncio.Event()
    release = asyncio.Event()
    finished = []

    async def handler(jobs):
        started.set()
        await release.wait()
        finished.extend(job.data["n"] for job in jobs)

    await queue.register_worker("rule-schedule-7", handler)
    first = await queue.enqueue("rule-schedule-7", {"n": 1})
    second = await queue.enqueue("rule-schedule-7", {"n": 2})
    await asyncio.wait_for(started.wait(), timeout=5)

    removal = asyncio.create_task(queue.unregister_worker("rule-schedule-7"))
    await asyncio.sleep(0.05)
    assert not removal.done()

    release.set()
    assert await asyncio.wait_for(removal, timeout=5) is True
    await queue.stop()

    assert finished == [1]
    assert not queue.has_worker("rule-schedule-7")
    assert (await database.get_job(first)).status == "done"
    assert (await database.get_job(second)).status == "dropped"


@pytest.mark.asyncio
async def test_swapping_handler_keeps_job_in_progress():
    queue = JobQueue()
    await queue.start()
    started = asyncio.Event()
    release = asyncio.Event()
    finished = []

    async def slow(jobs):
        started.set()
        await release.wait()
        finished.append("slow")

    async def fast(jobs):
        finished.append("fast")

    await queue.register_worker("work", slow)
    await queue.enqueue("work", {})
    await asyncio.wait_for(started.wait(), timeout=5)

    await queue.register_worker("work", fast)
    await queue.enqueue("work", {})
    release.set()
    await asyncio.wait_for(queue.wait_idle("work"), timeout=5)
    await queue.stop()

    assert finished == ["slow", "fast"]


@pytest.mark.asyncio
async def test_restored_jobs_without_worker_are_dropped(database):
    queue = JobQueue(database=database)
    await queue.start()
    job_id = await queue.enqueue("rule-schedule-99", {"ruleId": 99})
    await queue.stop()

    restarted = JobQueue(database=database)
    await restarted.start()
    assert await restarted.drop_unattended() == 1
    await restarted.stop()

    assert (await database.get_job(job_id)).status == "dropped"
