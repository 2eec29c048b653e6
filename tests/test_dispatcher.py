"""Event naming and event-to-job dispatch."""

import pytest

from services.automation.dispatcher import EventDispatcher, event_name_for

from workflows import FakeJobQueue, action_node, chain, schedule_node, trigger_node


@pytest.fixture
def queue():
    return FakeJobQueue()


@pytest.fixture
def dispatcher(database, queue):
    return EventDispatcher(database, queue)


def event_rule(event):
    return chain(trigger_node(event=event), action_node("mail", "action_email", to="ada@example.com"))


def test_event_names():
    assert event_name_for("deals", "created") == "deal.created"
    assert event_name_for("contacts", "updated") == "contact.updated"
    assert event_name_for("tasks", "completed") == "task.completed"
    assert event_name_for("companies", "deleted") == "company.deleted"
    assert event_name_for("contact_notes", "created") == "contact_note.created"
    with pytest.raises(ValueError):
        event_name_for("deals", "archived")


@pytest.mark.asyncio
async def test_matching_rules_are_enqueued(dispatcher, queue, database, sales):
    matching = await database.create_rule(sales.id, "On deal", event_rule("deal.created"))
    await database.create_rule(sales.id, "On contact", event_rule("contact.created"))

    result = await dispatcher.fire_event("deal.created", {"id": 9, "name": "Acme"}, sales.id)

    assert result.ok
    assert result.matched_rule_ids == [matching.id]
    assert result.job_ids == ["job-1"]
    assert queue.enqueued == [(
        "run-automation",
        {"ruleId": matching.id, "salesId": sales.id, "triggerData": {"id": 9, "name": "Acme"}},
    )]


@pytest.mark.asyncio
async def test_event_match_is_exact(dispatcher, queue, database, sales):
    await database.create_rule(sales.id, "Prefix", event_rule("deal"))
    await database.create_rule(sales.id, "Other verb", event_rule("deal.updated"))

    result = await dispatcher.fire_event("deal.created", {}, sales.id)

    assert result.matched_rule_ids == []
    assert queue.enqueued == []


@pytest.mark.asyncio
async def test_only_the_tenants_enabled_rules_match(dispatcher, queue, database, sales, other_sales):
    own = await database.create_rule(sales.id, "Mine", event_rule("deal.created"))
    await database.create_rule(sales.id, "Disabled", event_rule("deal.created"), enabled=False)
    await database.create_rule(other_sales.id, "Theirs", event_rule("deal.created"))

    result = await dispatcher.fire_event("deal.created", None, sales.id)

    assert result.matched_rule_ids == [own.id]
    assert queue.enqueued[0][1]["triggerData"] == {}


@pytest.mark.asyncio
async def test_several_rules_for_one_event(dispatcher, queue, database, sales):
    first = await database.create_rule(sales.id, "One", event_rule("task.completed"))
    second = await database.create_rule(sales.id, "Two", event_rule("task.completed"))

    result = await dispatcher.fire_event("task.completed", {"id": 3}, sales.id)

    assert result.matched_rule_ids == [first.id, second.id]
    assert result.job_ids == ["job-1", "job-2"]


@pytest.mark.asyncio
async def test_only_first_event_trigger_counts(dispatcher, database, sales):
    workflow = {
        "nodes": [trigger_node("t1", event="deal.created"), trigger_node("t2", event="deal.updated")],
        "edges": [],
    }
    rule = await database.create_rule(sales.id, "Two triggers", workflow)

    assert (await dispatcher.fire_event("deal.created", {}, sales.id)).matched_rule_ids == [rule.id]
    assert (await dispatcher.fire_event("deal.updated", {}, sales.id)).matched_rule_ids == []


@pytest.mark.asyncio
async def test_schedule_only_rules_do_not_match(dispatcher, database, sales):
    await database.create_rule(sales.id, "Weekly", chain(schedule_node()))

    result = await dispatcher.fire_event("deal.created", {}, sales.id)

    assert result.matched_rule_ids == []


@pytest.mark.asyncio
async def test_dispatch_errors_are_reported_not_raised(database, sales):
    class BrokenQueue:
        async def enqueue(self, queue_name, payload):
            raise ConnectionError("queue unavailable")

    await database.create_rule(sales.id, "On deal", event_rule("deal.created"))
    dispatcher = EventDispatcher(database, BrokenQueue())

    result = await dispatcher.fire_event("deal.created", {}, sales.id)

    assert not result.ok
    assert result.error == "queue unavailable"
    assert result.to_dict()["error"] == "queue unavailable"
