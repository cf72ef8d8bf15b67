from datetime import timedelta

import pytest
from sqlalchemy import select

from helpdesk_sla.config import AuditAction, EngineTrigger, SLAStatus, TicketActivityType, UserRole
from helpdesk_sla.core import TrackingNotFoundException
from helpdesk_sla.sla.infrastructure.models import (
    AuditLogModel,
    NotificationModel,
    TicketActivityModel,
    TicketModel,
    TicketSlaTrackingModel,
)
from helpdesk_sla.sla.infrastructure.repositories import SQLAlchemyTrackingRepository


async def fetch_all(database, model):
    async with database() as session:
        return (await session.execute(select(model))).scalars().all()


async def tracking_for(database, ticket_id):
    async with database() as session:
        stmt = select(TicketSlaTrackingModel).where(TicketSlaTrackingModel.ticket_id == ticket_id)
        return (await session.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_pass_assigns_default_policy_and_breaches(database, seeder, runner, clock):
    requester = await seeder.user(name="rita")
    assignee = await seeder.user(UserRole.AGENT, is_active=False, name="ivan")
    policy = await seeder.policy(response=30, resolution=90)
    ticket = await seeder.ticket(requester, assignee)

    first = await runner.run_pass("admin-1", EngineTrigger.MANUAL)

    assert first.default_policy_id == policy.id
    assert first.auto_assigned_policy_count == 1
    assert first.created_tracking_count == 1
    tracking = await tracking_for(database, ticket.id)
    assert tracking.status == SLAStatus.ON_TRACK
    assert tracking.response_deadline_at == ticket.created_at + timedelta(minutes=30)
    assert tracking.next_escalation_at == clock.now + timedelta(minutes=15)

    clock.advance(minutes=120)
    summary = await runner.run_pass(None, EngineTrigger.AUTO)

    assert summary.changed_status_count == 1
    assert summary.notifications_created == 1
    tracking = await tracking_for(database, ticket.id)
    assert tracking.status == SLAStatus.BREACHED
    assert tracking.breached_at == clock.now
    assert tracking.next_escalation_at is None

    notifications = await fetch_all(database, NotificationModel)
    assert [n.user_id for n in notifications] == [requester.id]
    assert notifications[0].title == f"SLA breached: {ticket.code}"
    assert notifications[0].extra["trigger"] == EngineTrigger.AUTO

    actions = [entry.action for entry in await fetch_all(database, AuditLogModel)]
    assert actions.count(AuditAction.SLA_ENGINE_RUN) == 2
    assert actions.count(AuditAction.SLA_STATUS_CHANGED) == 1

    tickets = await fetch_all(database, TicketModel)
    assert tickets[0].sla_policy_id == policy.id


@pytest.mark.asyncio
async def test_agent_comment_counts_as_first_response(database, seeder, runner):
    requester = await seeder.user(name="rita")
    agent = await seeder.user(UserRole.AGENT, name="ana")
    policy = await seeder.policy(response=30, resolution=90)
    ticket = await seeder.ticket(
        requester, agent, policy, age_minutes=25,
        agent_replies=[(requester, 1), (agent, 4)]
    )

    await runner.run_pass()

    tracking = await tracking_for(database, ticket.id)
    assert tracking.status == SLAStatus.ON_TRACK
    assert tracking.first_response_at == ticket.created_at + timedelta(minutes=4)


@pytest.mark.asyncio
async def test_pause_and_resume_persist_shift(database, seeder, runner, clock):
    requester = await seeder.user(name="rita")
    agent = await seeder.user(UserRole.AGENT, name="ana")
    policy = await seeder.policy(response=30, resolution=90)
    ticket = await seeder.ticket(requester, agent, policy)
    await runner.run_pass()

    paused = await runner.pause(ticket.id, agent.id, "Waiting on customer")
    assert paused.paused_at == clock.now

    clock.advance(minutes=5)
    resumed = await runner.resume(ticket.id, agent.id)
    assert resumed.paused_accumulated_minutes == 5
    assert resumed.paused_at is None

    await runner.run_pass()

    tracking = await tracking_for(database, ticket.id)
    assert tracking.paused_accumulated_minutes == 5
    assert tracking.resolution_deadline_at == ticket.created_at + timedelta(minutes=95)

    activities = await fetch_all(database, TicketActivityModel)
    assert [a.type for a in activities] == [TicketActivityType.SLA_PAUSED, TicketActivityType.SLA_RESUMED]
    assert activities[1].detail == "Accumulated pause: 5 minutes"


@pytest.mark.asyncio
async def test_pause_unknown_ticket_is_not_found(database, runner):
    with pytest.raises(TrackingNotFoundException):
        await runner.pause("00000000-0000-0000-0000-000000000000", "agent-1")

    assert await fetch_all(database, AuditLogModel) == []


@pytest.mark.asyncio
async def test_listing_and_predictions_embed_ticket_summary(database, seeder, runner, clock):
    requester = await seeder.user(name="rita")
    agent = await seeder.user(UserRole.AGENT, name="ana")
    policy = await seeder.policy(response=30, resolution=240)
    near = await seeder.ticket(requester, agent, policy, age_minutes=225, agent_replies=[(agent, 2)])
    far = await seeder.ticket(requester, None, policy, age_minutes=10, agent_replies=[(agent, 2)])
    await seeder.ticket(requester, agent, policy, age_minutes=600)
    await runner.run_pass()

    page = await runner.find_tracking(page=1, page_size=10)
    assert page.total == 3
    assert [view.tracking.status for view in page.data] == [
        SLAStatus.AT_RISK, SLAStatus.BREACHED, SLAStatus.ON_TRACK
    ]
    assert page.data[0].ticket.requester.full_name == "Rita Person"
    assert page.data[0].ticket.assignee.id == agent.id
    assert page.data[0].policy.id == policy.id

    report = await runner.predict(window_hours=24)
    assert [p.ticket.id for p in report.data] == [near.id, far.id]
    assert report.data[0].remaining_minutes == 15
    assert report.data[1].ticket.assignee is None
    assert report.data[0].risk_score > report.data[1].risk_score


@pytest.mark.asyncio
async def test_pass_rereads_tracking_resumed_by_another_session(database, seeder, runner, clock):
    requester = await seeder.user(name="rita")
    agent = await seeder.user(UserRole.AGENT, name="ana")
    policy = await seeder.policy(response=30, resolution=90)
    ticket = await seeder.ticket(requester, agent, policy)
    await runner.run_pass()
    await runner.pause(ticket.id, agent.id, "Waiting on customer")
    clock.advance(minutes=5)

    async with database() as session:
        stale = await SQLAlchemyTrackingRepository(session).get_by_ticket_id(ticket.id)
        assert stale.paused_at is not None

        await runner.resume(ticket.id, agent.id)

        summary = await runner.build_engine(session).run_pass()
        await session.commit()

    assert summary.failed_ticket_count == 0
    tracking = await tracking_for(database, ticket.id)
    assert tracking.paused_at is None
    assert tracking.paused_accumulated_minutes == 5
    assert tracking.response_deadline_at == ticket.created_at + timedelta(minutes=35)
    assert tracking.resolution_deadline_at == ticket.created_at + timedelta(minutes=95)
    assert tracking.next_escalation_at == clock.now + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_locked_read_refreshes_rows_already_in_session(database, seeder, runner, clock):
    requester = await seeder.user(name="rita")
    policy = await seeder.policy(response=30, resolution=90)
    ticket = await seeder.ticket(requester, None, policy)
    await runner.run_pass()

    async with database() as session:
        repository = SQLAlchemyTrackingRepository(session)
        assert (await repository.get_by_ticket_id(ticket.id)).paused_at is None

        paused = await runner.pause(ticket.id, "agent-1", "Waiting on customer")

        plain = await repository.get_by_ticket_id(ticket.id)
        locked = await repository.get_by_ticket_id(ticket.id, for_update=True)

    assert plain.paused_at is None
    assert locked.paused_at == paused.paused_at
