# tests/conftest.py
from __future__ import annotations

from types import SimpleNamespace

import pytest

from gatekeeper.database import initialize_database
from gatekeeper.review.notifications import NotificationFlows
from gatekeeper.review.service import ReviewService
from gatekeeper.review.tickets import TicketClosure
from gatekeeper.review.transitions import TransitionEngine
from gatekeeper.services.application_store import ApplicationStore
from gatekeeper.services.claim_store import ClaimStore
from gatekeeper.services.review_action_store import ReviewActionStore
from gatekeeper.services.review_config_store import ReviewConfig, ReviewConfigStore
from gatekeeper.services.stats import RuntimeStats
from gatekeeper.services.ticket_store import TicketStore
from gatekeeper.testing.fakes import FakeClient, FakeGuild, FakeMember, FakeRole, FakeTextChannel

GUILD_ID = 77
APPLICANT_ID = 1001
MOD_A = 2001
MOD_B = 2002
CHANNEL_ID = 4242
ROLE_ID = 555


@pytest.fixture()
def db_path(tmp_path) -> str:
    return str(tmp_path / "gatekeeper-test.sqlite3")


@pytest.fixture()
async def stores(db_path: str) -> SimpleNamespace:
    ns = SimpleNamespace(
        applications=ApplicationStore(db_path),
        claims=ClaimStore(db_path),
        actions=ReviewActionStore(db_path),
        tickets=TicketStore(db_path),
        configs=ReviewConfigStore(db_path, cache_ttl_seconds=60),
    )
    await initialize_database(db_path, [ns.applications, ns.claims, ns.actions, ns.tickets, ns.configs])
    return ns


@pytest.fixture()
def engine(stores: SimpleNamespace) -> TransitionEngine:
    return TransitionEngine(applications=stores.applications, claims=stores.claims, actions=stores.actions)


@pytest.fixture()
def world() -> SimpleNamespace:
    client = FakeClient()
    guild = client.add_guild(FakeGuild(id=GUILD_ID, name="Test Guild"))
    member = guild.add_member(FakeMember(id=APPLICANT_ID, name="applicant", display_name="Appy"))
    client.users[member.id] = member
    channel = guild.add_channel(FakeTextChannel(id=CHANNEL_ID))
    role = guild.add_role(FakeRole(id=ROLE_ID))
    return SimpleNamespace(client=client, guild=guild, member=member, channel=channel, role=role)


@pytest.fixture()
def stats() -> RuntimeStats:
    return RuntimeStats()


@pytest.fixture()
def notifications(stats: RuntimeStats) -> NotificationFlows:
    return NotificationFlows(timeout_seconds=0.2, stats=stats)


@pytest.fixture()
async def service(stores, engine, world, notifications, stats) -> ReviewService:
    await stores.configs.upsert(
        ReviewConfig(guild_id=GUILD_ID, general_channel_id=CHANNEL_ID, welcome_template=None, accepted_role_id=ROLE_ID)
    )
    return ReviewService(
        client=world.client,
        applications=stores.applications,
        claims=stores.claims,
        actions=stores.actions,
        configs=stores.configs,
        engine=engine,
        notifications=notifications,
        tickets=TicketClosure(stores.tickets, stats=stats),
        stats=stats,
    )


@pytest.fixture()
async def app(stores):
    return await stores.applications.create(GUILD_ID, APPLICANT_ID)
