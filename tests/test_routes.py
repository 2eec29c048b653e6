"""HTTP routes for run history and manual triggering."""

import httpx
import pytest
import pytest_asyncio
from dependency_injector import providers
from fastapi import FastAPI

from core.container import container
from routers import automation_runs

from workflows import chain, trigger_node


@pytest_asyncio.fixture
async def api(database, engine):
    app = FastAPI()
    app.include_router(automation_runs.router)
    container.database.override(providers.Object(database))
    container.automation_engine.override(providers.Object(engine))
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        container.database.reset_override()
        container.automation_engine.reset_override()


@pytest_asyncio.fixture
async def rule(database, sales):
    return await database.create_rule(sales.id, "Manual", chain(trigger_node()))


def as_user(sales):
    return {"X-Sales-Id": str(sales.id)}


@pytest.mark.asyncio
async def test_missing_tenant_header(api, rule):
    response = await api.get("/api/automation-runs", params={"ruleId": rule.id})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_tenant(api, rule):
    response = await api.get("/api/automation-runs", params={"ruleId": rule.id},
                             headers={"X-Sales-Id": "9999"})
    assert response.status_code == 404
    assert response.json()["detail"] == "User not found in CRM"


@pytest.mark.asyncio
async def test_list_requires_rule_id(api, sales):
    response = await api.get("/api/automation-runs", headers=as_user(sales))
    assert response.status_code == 400
    assert response.json()["detail"] == "ruleId query param required"

    response = await api.get("/api/automation-runs", params={"ruleId": "abc"}, headers=as_user(sales))
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid ruleId"


@pytest.mark.asyncio
async def test_list_runs_newest_first_with_limit(api, database, sales, rule):
    runs = [await database.create_run(rule.id, sales.id) for _ in range(3)]
    await database.finish_run(runs[0].id, "success", {"trigger_data": {}})

    response = await api.get("/api/automation-runs", params={"ruleId": rule.id}, headers=as_user(sales))

    assert response.status_code == 200
    body = response.json()
    assert [r["id"] for r in body] == [runs[2].id, runs[1].id, runs[0].id]
    assert body[2]["status"] == "success"
    assert body[2]["result"] == {"trigger_data": {}}
    assert body[0]["status"] == "running"

    response = await api.get("/api/automation-runs", params={"ruleId": rule.id, "limit": "2"},
                             headers=as_user(sales))
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_list_runs_of_other_tenants_rule(api, other_sales, rule):
    response = await api.get("/api/automation-runs", params={"ruleId": rule.id}, headers=as_user(other_sales))
    assert response.status_code == 404
    assert response.json()["detail"] == "Rule not found"


@pytest.mark.asyncio
async def test_trigger_rule(api, sales, rule):
    response = await api.post("/api/automation-runs/trigger", json={"ruleId": rule.id}, headers=as_user(sales))

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["jobId"]


@pytest.mark.asyncio
async def test_trigger_accepts_string_rule_id(api, sales, rule):
    response = await api.post("/api/automation-runs/trigger", json={"ruleId": str(rule.id)},
                              headers=as_user(sales))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_trigger_requires_rule_id(api, sales):
    response = await api.post("/api/automation-runs/trigger", json={}, headers=as_user(sales))
    assert response.status_code == 400
    assert response.json()["detail"] == "ruleId required"


@pytest.mark.asyncio
async def test_trigger_other_tenants_rule(api, other_sales, rule):
    response = await api.post("/api/automation-runs/trigger", json={"ruleId": rule.id},
                              headers=as_user(other_sales))
    assert response.status_code == 400
    assert response.json()["detail"] == f"Rule {rule.id} not found"
