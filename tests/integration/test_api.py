import pytest

from helpdesk_sla.config import UserRole

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "ADMIN"}
AGENT = {"X-User-Id": "agent-1", "X-User-Role": "agent"}
REQUESTER = {"X-User-Id": "req-1", "X-User-Role": "REQUESTER"}


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["sla_engine"] == "idle"
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_identity_headers_are_required(client):
    assert (await client.get("/sla/policies")).status_code == 401
    assert (await client.get("/sla/policies", headers=REQUESTER)).status_code == 403
    assert (await client.post("/sla/engine/run", headers=AGENT)).status_code == 403


@pytest.mark.asyncio
async def test_policy_lifecycle(client):
    created = await client.post("/sla/policies", headers=ADMIN, json={
        "name": "Gold",
        "response_time_minutes": 15,
        "resolution_time_minutes": 240,
    })
    assert created.status_code == 201
    policy = created.json()
    assert policy["is_active"] is True
    assert policy["business_hours_only"] is True

    patched = await client.patch(
        f"/sla/policies/{policy['id']}", headers=ADMIN, json={"resolution_time_minutes": 480}
    )
    assert patched.status_code == 200
    assert patched.json()["resolution_time_minutes"] == 480
    assert patched.json()["name"] == "Gold"

    listed = await client.get("/sla/policies", headers=AGENT)
    assert [p["id"] for p in listed.json()] == [policy["id"]]


@pytest.mark.asyncio
async def test_policy_errors(client):
    missing = await client.patch("/sla/policies/nope", headers=ADMIN, json={"is_active": False})
    assert missing.status_code == 404
    assert "correlation_id" in missing.json()

    invalid = await client.post("/sla/policies", headers=ADMIN, json={
        "name": "Bad", "response_time_minutes": 0, "resolution_time_minutes": 60,
    })
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_policy_patch_rejects_null_budget(client):
    created = (await client.post("/sla/policies", headers=ADMIN, json={
        "name": "Gold", "response_time_minutes": 15, "resolution_time_minutes": 240,
    })).json()

    nulled = await client.patch(
        f"/sla/policies/{created['id']}", headers=ADMIN, json={"response_time_minutes": None}
    )
    assert nulled.status_code == 422

    listed = (await client.get("/sla/policies", headers=ADMIN)).json()
    assert listed[0]["response_time_minutes"] == 15


@pytest.mark.asyncio
async def test_calendars(client):
    await client.post("/sla/calendars", headers=ADMIN, json={"name": "Lima", "is_default": True})
    created = await client.post("/sla/calendars", headers=ADMIN, json={
        "name": "Madrid",
        "timezone": "Europe/Madrid",
        "holidays": ["2026-12-25"],
        "is_default": True,
    })
    assert created.status_code == 201
    assert created.json()["holidays"] == ["2026-12-25"]

    listed = (await client.get("/sla/calendars", headers=AGENT)).json()
    assert [c["name"] for c in listed] == ["Madrid", "Lima"]
    assert [c["is_default"] for c in listed] == [True, False]

    bad = await client.post("/sla/calendars", headers=ADMIN, json={"name": "Night", "start_hour": 18, "end_hour": 9})
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_engine_run_and_tracking_listing(client, seeder):
    requester = await seeder.user(name="rita")
    agent = await seeder.user(UserRole.AGENT, name="ana")
    policy = await seeder.policy(response=30, resolution=90)
    await seeder.ticket(requester, agent, age_minutes=45)
    await seeder.ticket(requester, agent, policy, age_minutes=5)

    run = await client.post("/sla/engine/run", headers=ADMIN)
    assert run.status_code == 200
    summary = run.json()
    assert summary["trigger"] == "manual"
    assert summary["auto_assigned_policy_count"] == 1
    assert summary["created_tracking_count"] == 2

    page = (await client.get("/sla/tracking", headers=AGENT, params={"page_size": 1})).json()
    assert page["total"] == 2
    assert page["total_pages"] == 2
    assert page["data"][0]["status"] == "BREACHED"
    assert page["data"][0]["ticket"]["requester"]["full_name"] == "Rita Person"
    assert page["data"][0]["sla_policy"]["id"] == policy.id

    filtered = (await client.get("/sla/tracking", headers=AGENT, params={"status": "ON_TRACK"})).json()
    assert filtered["total"] == 1

    bad_filter = await client.get("/sla/tracking", headers=AGENT, params={"status": "LATE"})
    assert bad_filter.status_code == 422


@pytest.mark.asyncio
async def test_pause_and_resume_endpoints(client, seeder, runner, clock):
    requester = await seeder.user(name="rita")
    policy = await seeder.policy(response=30, resolution=90)
    ticket = await seeder.ticket(requester, None, policy)
    await runner.run_pass()

    paused = await client.patch(
        f"/sla/tracking/{ticket.id}/pause", headers=AGENT, json={"reason": "Waiting on customer"}
    )
    assert paused.status_code == 200
    assert paused.json()["paused_at"] is not None

    clock.advance(minutes=12)
    resumed = await client.patch(f"/sla/tracking/{ticket.id}/resume", headers=AGENT)
    assert resumed.status_code == 200
    assert resumed.json()["paused_at"] is None
    assert resumed.json()["paused_accumulated_minutes"] == 12

    missing = await client.patch("/sla/tracking/unknown-ticket/pause", headers=AGENT)
    assert missing.status_code == 404
    assert missing.json()["details"] == {"ticket_id": "unknown-ticket"}


@pytest.mark.asyncio
async def test_predictions(client, seeder, runner):
    requester = await seeder.user(name="rita")
    agent = await seeder.user(UserRole.AGENT, name="ana")
    policy = await seeder.policy(response=30, resolution=600)
    ticket = await seeder.ticket(requester, agent, policy, age_minutes=300, agent_replies=[(agent, 3)])
    await seeder.ticket(requester, agent, policy, age_minutes=300)
    await runner.run_pass()

    report = (await client.get("/sla/predictions", headers=AGENT, params={"window_hours": 6})).json()

    assert report["window_hours"] == 6
    assert [p["ticket"]["id"] for p in report["data"]] == [ticket.id]
    assert report["data"][0]["remaining_minutes"] == 300
    assert report["data"][0]["risk_score"] == 50

    narrow = (await client.get("/sla/predictions", headers=AGENT, params={"window_hours": 1})).json()
    assert narrow["data"] == []

    assert (await client.get("/sla/predictions", headers=AGENT, params={"window_hours": 0})).status_code == 422
