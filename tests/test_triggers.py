"""Cron registrations kept in step with the stored rules."""

import pytest
import pytest_asyncio

from services.automation.triggers import TriggerRegistry

from workflows import action_node, chain, schedule_node, trigger_node


@pytest_asyncio.fixture
async def triggers(database, job_queue):
    await job_queue.start()
    yield TriggerRegistry(database, job_queue, timezone="UTC")
    await job_queue.stop()


def scheduled(cron="0 9 * * 1", **data):
    return chain(schedule_node(cron=cron, **data), action_node("mail", "action_email", to="ada@example.com"))


@pytest.mark.asyncio
async def test_enabled_schedule_rules_are_loaded(triggers, job_queue, database, sales):
    weekly = await database.create_rule(sales.id, "Weekly", scheduled())
    await database.create_rule(sales.id, "Paused", scheduled(), enabled=False)
    await database.create_rule(sales.id, "Event", chain(trigger_node()))

    assert await triggers.load_schedule_rules() == 1

    info = triggers.get_schedule(weekly.id)
    assert info.schedule_name == f"rule-schedule-{weekly.id}"
    assert info.cron == "0 9 * * 1"
    assert info.timezone == "UTC"
    schedule = job_queue.get_schedule(info.schedule_name)
    assert schedule["payload"] == {"ruleId": weekly.id, "salesId": sales.id, "triggerData": {}}


@pytest.mark.asyncio
async def test_reload_follows_enable_and_disable(triggers, job_queue, database, sales):
    rule = await database.create_rule(sales.id, "Weekly", scheduled())
    name = f"rule-schedule-{rule.id}"

    await triggers.reload_rule(rule.id)
    assert job_queue.get_schedule(name) is not None

    await database.update_rule(rule.id, enabled=False)
    assert await triggers.reload_rule(rule.id) is None
    assert job_queue.get_schedule(name) is None
    assert triggers.get_schedule(rule.id) is None

    await database.update_rule(rule.id, enabled=True)
    info = await triggers.reload_rule(rule.id)
    assert info.cron == "0 9 * * 1"
    assert job_queue.get_schedule(name)["cron"] == "0 9 * * 1"


@pytest.mark.asyncio
async def test_reload_picks_up_new_cron(triggers, job_queue, database, sales):
    rule = await database.create_rule(sales.id, "Weekly", scheduled())
    await triggers.reload_rule(rule.id)

    await database.update_rule(rule.id, workflow_definition=scheduled(cron="30 7 * * *"))
    await triggers.reload_rule(rule.id)

    assert job_queue.get_schedule(f"rule-schedule-{rule.id}")["cron"] == "30 7 * * *"
    assert len(triggers.get_schedules()) == 1


@pytest.mark.asyncio
async def test_invalid_cron_is_logged_not_raised(triggers, job_queue, database, sales):
    rule = await database.create_rule(sales.id, "Broken", scheduled(cron="whenever"))

    assert await triggers.reload_rule(rule.id) is None
    assert job_queue.get_schedule(f"rule-schedule-{rule.id}") is None


@pytest.mark.asyncio
async def test_schedule_without_cron_is_ignored(triggers, database, sales):
    rule = await database.create_rule(sales.id, "No cron", scheduled(cron=""))

    assert await triggers.reload_rule(rule.id) is None


@pytest.mark.asyncio
async def test_only_first_schedule_trigger_is_used(triggers, database, sales):
    workflow = {
        "nodes": [schedule_node("first", cron="0 8 * * *"), schedule_node("second", cron="0 20 * * *")],
        "edges": [],
    }
    rule = await database.create_rule(sales.id, "Two schedules", workflow)

    info = await triggers.reload_rule(rule.id)

    assert info.node_id == "first"
    assert info.cron == "0 8 * * *"


@pytest.mark.asyncio
async def test_node_timezone_overrides_default(triggers, job_queue, database, sales):
    rule = await database.create_rule(sales.id, "Paris", scheduled(timezone="Europe/Paris"))

    info = await triggers.reload_rule(rule.id)

    assert info.timezone == "Europe/Paris"
    assert job_queue.get_schedule(info.schedule_name)["timezone"] == "Europe/Paris"


@pytest.mark.asyncio
async def test_remove_rule(triggers, job_queue, database, sales):
    rule = await database.create_rule(sales.id, "Weekly", scheduled())
    await triggers.reload_rule(rule.id)

    assert await triggers.remove_rule(rule.id) is True
    assert job_queue.get_schedule(f"rule-schedule-{rule.id}") is None
    assert await triggers.remove_rule(rule.id) is False


@pytest.mark.asyncio
async def test_handler_attached_to_schedule_queue(triggers, job_queue, database, sales):
    async def handler(jobs):
        pass

    triggers.set_job_handler(handler)
    rule = await database.create_rule(sales.id, "Weekly", scheduled())
    await triggers.reload_rule(rule.id)

    assert job_queue.has_worker(f"rule-schedule-{rule.id}")
    await triggers.remove_rule(rule.id)
    assert not job_queue.has_worker(f"rule-schedule-{rule.id}")
