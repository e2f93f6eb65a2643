import asyncio

import pytest
from sqlalchemy import func, select

from conftest import as_caller, make_event, make_user
from eventteams.errors import ConflictError, TransactionConflict
from eventteams.models.team import Team, TeamMember
from eventteams.services.code_allocator import CodeAllocator
from eventteams.services.coordinator import MembershipCoordinator
from eventteams.services.notifications import BroadcastNotificationSink
from eventteams.services.transactions import run_in_transaction

pytestmark = pytest.mark.anyio


class FlakyAllocator(CodeAllocator):
    """Advances the counter, then reports a lost race for the first ``failures`` calls."""

    def __init__(self, failures: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.failures = failures
        self.calls = 0

    async def allocate(self, session):
        self.calls += 1
        number = await super().allocate(session)
        if self.calls <= self.failures:
            raise TransactionConflict(f"simulated conflict after drawing {number}")
        return number


async def test_concurrent_creates_issue_distinct_contiguous_codes(session_factory, coordinator):
    event = await make_event(session_factory)
    users = [await make_user(session_factory, f"C{i}", event=event) for i in range(8)]

    async def create(user):
        async with session_factory() as db:
            return await coordinator.create_team(db, as_caller(user), event.id, f"Team {user.unique_id}")

    teams = await asyncio.gather(*(create(user) for user in users))

    codes = [team.team_code for team in teams]
    assert len(set(codes)) == len(codes)
    assert sorted(codes) == [f"PREFIX-{n:05d}" for n in range(1, len(users) + 1)]
    # Codes follow commit order, which is also row insertion order
    by_id = sorted(teams, key=lambda team: team.id)
    assert [team.team_code for team in by_id] == sorted(codes)


async def test_same_user_racing_creates_gets_one_team(session_factory, coordinator):
    event = await make_event(session_factory)
    user = await make_user(session_factory, "U1", event=event)

    async def create(name):
        async with session_factory() as db:
            return await coordinator.create_team(db, as_caller(user), event.id, name)

    results = await asyncio.gather(create("Alpha"), create("Beta"), return_exceptions=True)

    created = [result for result in results if not isinstance(result, Exception)]
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(created) == 1
    assert len(failures) == 1 and isinstance(failures[0], ConflictError)

    async with session_factory() as db:
        status = await coordinator.code_counter_status(db)
    # The losing attempt never advanced the counter
    assert status.current == 1


async def test_concurrent_approvals_never_exceed_capacity(session_factory, coordinator):
    event = await make_event(session_factory, max_team_size=2)
    leader = await make_user(session_factory, "U1", event=event)
    requesters = [await make_user(session_factory, f"R{i}", event=event) for i in range(3)]

    async with session_factory() as db:
        team = await coordinator.create_team(db, as_caller(leader), event.id, "Falcons")
        for requester in requesters:
            await coordinator.request_join(db, as_caller(requester), team.id)

    async def approve(requester):
        async with session_factory() as db:
            return await coordinator.approve_request(db, as_caller(leader), team.id, requester.id)

    results = await asyncio.gather(*(approve(r) for r in requesters), return_exceptions=True)

    approved = [result for result in results if not isinstance(result, Exception)]
    rejected = [result for result in results if isinstance(result, Exception)]
    assert len(approved) == 1
    assert len(rejected) == 2
    assert all(isinstance(exc, ConflictError) for exc in rejected)

    async with session_factory() as db:
        final = await coordinator.get_team(db, team.id)
        stored_members = await db.scalar(
            select(func.count(TeamMember.id)).where(TeamMember.team_id == team.id)
        )
        stored_count = await db.scalar(select(Team.member_count).where(Team.id == team.id))
        await db.commit()

    assert len(final.members) == final.max_size == 2
    assert stored_members == stored_count == 2
    assert final.members[0].uid == leader.id
    assert not set(final.member_ids()) & set(final.pending_ids())


async def test_racing_direct_adds_of_same_user_keep_one_team(session_factory, coordinator):
    event = await make_event(session_factory)
    captains = [await make_user(session_factory, f"L{i}", event=event) for i in range(2)]
    await make_user(session_factory, "TARGET", event=event)

    teams = []
    async with session_factory() as db:
        for captain in captains:
            teams.append(await coordinator.create_team(db, as_caller(captain), event.id, captain.unique_id))

    async def add(captain, team):
        async with session_factory() as db:
            return await coordinator.add_member_direct(db, as_caller(captain), team.id, "TARGET")

    results = await asyncio.gather(
        *(add(captain, team) for captain, team in zip(captains, teams)),
        return_exceptions=True,
    )

    assert sum(not isinstance(result, Exception) for result in results) == 1
    async with session_factory() as db:
        views = await coordinator.list_event_teams(db, event.id)
    holders = [view for view in views if any(m.unique_id == "TARGET" for m in view.members)]
    assert len(holders) == 1


async def test_lost_race_is_retried_without_skipping_a_code(session_factory, broker):
    allocator = FlakyAllocator(failures=2, prefix="PREFIX")
    coordinator = MembershipCoordinator(allocator=allocator, sink=BroadcastNotificationSink(broker))
    event = await make_event(session_factory)
    leader = await make_user(session_factory, "U1", event=event)

    async with session_factory() as db:
        team = await coordinator.create_team(db, as_caller(leader), event.id, "Falcons")

    assert allocator.calls == 3
    assert team.team_code == "PREFIX-00001"


async def test_exhausted_retries_surface_conflict_and_create_nothing(session_factory):
    allocator = FlakyAllocator(failures=10, prefix="PREFIX")
    event = await make_event(session_factory)

    async def work(db):
        number = await allocator.allocate(db)
        db.add(Team(
            event_id=event.id, team_name="Never", team_code=allocator.format_code(number),
            leader_id=1, leader_unique_id="", max_size=4, member_count=1,
        ))
        await db.flush()

    async with session_factory() as db:
        with pytest.raises(ConflictError):
            await run_in_transaction(db, work, label="create team", max_attempts=3, backoff_seconds=0)

        assert allocator.calls == 3
        assert await allocator.peek(db) == 0
        assert await db.scalar(select(func.count(Team.id))) == 0
        await db.commit()
