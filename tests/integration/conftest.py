"""
Integration fixtures: a file-backed SQLite database per test (aiosqlite)
and the FastAPI app wired to it.
"""

from datetime import timedelta
from typing import List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from helpdesk_sla.config import TicketStatus, UserRole
from helpdesk_sla.infrastructure.database import (
    close_database, create_tables, get_session_maker, init_database
)
from helpdesk_sla.main import app
from helpdesk_sla.sla.infrastructure.external import EngineRunner
from helpdesk_sla.sla.infrastructure.models import (
    SlaPolicyModel, TicketCommentModel, TicketModel, UserModel
)


class Seeder:
    """Writes collaborator rows (users, policies, tickets) the engine reads."""

    def __init__(self, session_maker, clock):
        self._session_maker = session_maker
        self._clock = clock
        self._ticket_count = 0

    async def add(self, *models):
        async with self._session_maker() as session:
            session.add_all(models)
            await session.commit()
        return models[0] if len(models) == 1 else models

    async def user(self, role: str = UserRole.REQUESTER, is_active: bool = True, name: str = "user") -> UserModel:
        return await self.add(UserModel(
            full_name=f"{name.title()} Person",
            email=f"{name}-{role.lower()}@helpdesk.test",
            role=role,
            is_active=is_active,
        ))

    async def policy(
        self,
        response: int = 30,
        resolution: int = 90,
        is_active: bool = True,
        age_days: int = 30,
        name: str = "Standard"
    ) -> SlaPolicyModel:
        return await self.add(SlaPolicyModel(
            name=name,
            response_time_minutes=response,
            resolution_time_minutes=resolution,
            is_active=is_active,
            created_at=self._clock.now - timedelta(days=age_days),
        ))

    async def ticket(
        self,
        requester: UserModel,
        assignee: Optional[UserModel] = None,
        policy: Optional[SlaPolicyModel] = None,
        age_minutes: float = 0,
        status: str = TicketStatus.OPEN,
        agent_replies: Optional[List[tuple]] = None,
    ) -> TicketModel:
        self._ticket_count += 1
        ticket = TicketModel(
            code=f"HD-{self._ticket_count:04d}",
            title=f"Ticket {self._ticket_count}",
            status=status,
            requester_id=requester.id,
            assignee_id=assignee.id if assignee else None,
            sla_policy_id=policy.id if policy else None,
            created_at=self._clock.now - timedelta(minutes=age_minutes),
        )
        await self.add(ticket)
        for author, minutes_after in agent_replies or []:
            await self.add(TicketCommentModel(
                ticket_id=ticket.id,
                author_id=author.id,
                body="On it.",
                created_at=ticket.created_at + timedelta(minutes=minutes_after),
            ))
        return ticket


@pytest.fixture
async def database(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}")
    await create_tables()
    yield get_session_maker()
    await close_database()


@pytest.fixture
def seeder(database, clock):
    return Seeder(database, clock)


@pytest.fixture
def runner(database, clock):
    return EngineRunner(database, clock=clock)


@pytest.fixture
async def client(runner):
    app.state.sla_engine_runner = runner
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
