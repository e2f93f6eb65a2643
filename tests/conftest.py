import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import eventteams.models  # noqa: E402,F401  (registers tables)
from eventteams.database import Base, build_engine  # noqa: E402
from eventteams.models.event import Event  # noqa: E402
from eventteams.models.registration import EventRegistration  # noqa: E402
from eventteams.models.user import User  # noqa: E402
from eventteams.services.broadcast import TeamEventBroker  # noqa: E402
from eventteams.services.code_allocator import CodeAllocator  # noqa: E402
from eventteams.services.coordinator import MembershipCoordinator  # noqa: E402
from eventteams.services.notifications import BroadcastNotificationSink  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{(tmp_path / 'teams.db').as_posix()}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db:
        yield db


@pytest.fixture
def broker():
    return TeamEventBroker()


@pytest.fixture
def coordinator(broker):
    return MembershipCoordinator(
        allocator=CodeAllocator(prefix="PREFIX"),
        sink=BroadcastNotificationSink(broker),
    )


def as_caller(user) -> SimpleNamespace:
    """Detached stand-in for an authenticated user; only ``id`` is read."""
    return SimpleNamespace(id=user.id)


async def make_event(session_factory, *, title="Hackathon", max_team_size=4, registration_deadline=None):
    """Insert an event in its own session and return it detached."""
    async with session_factory() as session:
        event = Event(
            title=title,
            max_team_size=max_team_size,
            registration_deadline=registration_deadline,
        )
        session.add(event)
        await session.commit()
    return event


async def make_user(session_factory, unique_id, *, display_name=None, email=None, event=None):
    """Insert a user, optionally registered for ``event``, and return it detached."""
    async with session_factory() as session:
        user = User(
            unique_id=unique_id,
            display_name=display_name or unique_id.title(),
            email=email or f"{unique_id.lower()}@example.com",
            organization="Test University",
            phone="1234567890",
        )
        session.add(user)
        await session.flush()
        if event is not None:
            session.add(EventRegistration(user_id=user.id, event_id=event.id))
        await session.commit()
    return user


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
