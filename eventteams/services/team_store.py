"""Queries and guarded writes against the team tables.

All helpers expect to run inside a transaction opened by
:func:`eventteams.services.transactions.run_in_transaction` (or ``run_read``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from eventteams.models.activity_log import ActivityLog
from eventteams.models.team import TEAM_STATUS_OPEN, Team, TeamJoinRequest, TeamMember
from eventteams.models.user import User
from eventteams.schemas import TeamRead


async def load_team(session: AsyncSession, team_id: int, *, for_update: bool = False) -> Optional[Team]:
    """Fetch a team; ``for_update`` takes the row lock that serializes its mutations."""
    stmt = (
        select(Team)
        .where(Team.id == team_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalars().first()


async def team_view(session: AsyncSession, team_id: int) -> TeamRead:
    """Snapshot of a team with its members and requests as currently stored."""
    await session.flush()
    stmt = (
        select(Team)
        .where(Team.id == team_id)
        .options(selectinload(Team.members), selectinload(Team.join_requests))
        .execution_options(populate_existing=True)
    )
    team = (await session.execute(stmt)).scalars().one()
    return TeamRead.model_validate(team)


def team_views(teams: Sequence[Team]) -> list[TeamRead]:
    return [TeamRead.model_validate(team) for team in teams]


async def member_team_id(session: AsyncSession, event_id: int, user_id: int) -> Optional[int]:
    """Team the user belongs to for the event, if any."""
    return await session.scalar(
        select(TeamMember.team_id).where(
            TeamMember.event_id == event_id,
            TeamMember.user_id == user_id,
        )
    )


async def pending_request_for(
    session: AsyncSession, event_id: int, user_id: int
) -> Optional[TeamJoinRequest]:
    """The user's outstanding request in the event (at most one exists)."""
    result = await session.execute(
        select(TeamJoinRequest).where(
            TeamJoinRequest.event_id == event_id,
            TeamJoinRequest.user_id == user_id,
        )
    )
    return result.scalars().first()


async def find_request(session: AsyncSession, team_id: int, user_id: int) -> Optional[TeamJoinRequest]:
    result = await session.execute(
        select(TeamJoinRequest).where(
            TeamJoinRequest.team_id == team_id,
            TeamJoinRequest.user_id == user_id,
        )
    )
    return result.scalars().first()


async def withdraw_requests(session: AsyncSession, event_id: int, user_id: int) -> int:
    """Drop any outstanding request the user has in the event."""
    result = await session.execute(
        delete(TeamJoinRequest)
        .where(
            TeamJoinRequest.event_id == event_id,
            TeamJoinRequest.user_id == user_id,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def claim_seat(session: AsyncSession, team_id: int) -> bool:
    """Reserve one member slot; False when the team is already at capacity.

    The size check and the increment are a single conditional UPDATE, so two
    approvals racing on the last seat cannot both succeed.
    """
    result = await session.execute(
        update(Team)
        .where(Team.id == team_id, Team.member_count < Team.max_size)
        .values(member_count=Team.member_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def add_member(
    session: AsyncSession,
    *,
    team: Team,
    user: User,
    joined_at: datetime,
) -> TeamMember:
    member = TeamMember(
        team_id=team.id,
        event_id=team.event_id,
        user_id=user.id,
        display_name=user.display_name or "Unknown",
        email=user.email or "",
        unique_id=user.unique_id or "",
        organization=user.organization or "",
        phone=user.phone or "",
        joined_at=joined_at,
    )
    session.add(member)
    return member


def add_request(
    session: AsyncSession,
    *,
    team: Team,
    user: User,
    requested_at: datetime,
) -> TeamJoinRequest:
    request = TeamJoinRequest(
        team_id=team.id,
        event_id=team.event_id,
        user_id=user.id,
        display_name=user.display_name or "Unknown",
        unique_id=user.unique_id or "",
        requested_at=requested_at,
    )
    session.add(request)
    return request


def log_activity(
    session: AsyncSession,
    *,
    user_id: int,
    team_id: Optional[int],
    action: str,
    detail: Optional[str] = None,
) -> None:
    session.add(
        ActivityLog(
            user_id=user_id,
            team_id=team_id,
            action=action,
            detail=(detail or "")[:255] or None,
        )
    )


async def list_event_teams(session: AsyncSession, event_id: int) -> list[Team]:
    result = await session.execute(
        select(Team)
        .where(Team.event_id == event_id)
        .order_by(Team.team_code)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_open_teams(session: AsyncSession, event_id: int) -> list[Team]:
    """Teams still accepting requests: open and below capacity."""
    result = await session.execute(
        select(Team)
        .where(
            Team.event_id == event_id,
            Team.status == TEAM_STATUS_OPEN,
            Team.member_count < Team.max_size,
        )
        .order_by(Team.team_code)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def team_for_leader_unique_id(
    session: AsyncSession, event_id: int, leader_unique_id: str
) -> Optional[Team]:
    result = await session.execute(
        select(Team).where(
            Team.event_id == event_id,
            func.lower(Team.leader_unique_id) == leader_unique_id.strip().lower(),
        )
    )
    return result.scalars().first()
