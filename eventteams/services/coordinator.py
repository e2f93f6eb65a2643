"""Team formation: create, request, approve/reject, direct add and rename.

Every mutation is one transaction run through ``run_in_transaction``. Team
rows are locked for the duration of the transaction, capacity is claimed with
a conditional UPDATE and one-team-per-event is a unique constraint on
``team_members``; a lost race is retried and re-checked from scratch, so it
surfaces as the matching typed error rather than a broken invariant.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from eventteams.errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from eventteams.models.event import Event
from eventteams.models.team import TEAM_STATUS_OPEN, TEAM_STATUSES, Team
from eventteams.models.user import User
from eventteams.schemas import CodeCounterStatus, TeamRead, TeamSummary, clean_team_name, clean_unique_id
from eventteams.services import team_store
from eventteams.services.code_allocator import CodeAllocator
from eventteams.services.collaborators import (
    RegistrationVerifier,
    SqlRegistrationVerifier,
    SqlUserDirectory,
    UserDirectory,
)
from eventteams.services.notifications import BroadcastNotificationSink, NotificationSink, TeamOutcome
from eventteams.services.transactions import run_in_transaction, run_read

_LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class MembershipCoordinator:
    """Server-side authority for team membership in an event."""

    def __init__(
        self,
        *,
        allocator: Optional[CodeAllocator] = None,
        registrations: Optional[RegistrationVerifier] = None,
        directory: Optional[UserDirectory] = None,
        sink: Optional[NotificationSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.allocator = allocator or CodeAllocator()
        self.registrations = registrations or SqlRegistrationVerifier()
        self.directory = directory or SqlUserDirectory()
        self.sink = sink or BroadcastNotificationSink()
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return _as_utc(self._clock())

    @staticmethod
    def _team_name(value: Optional[str]) -> str:
        try:
            return clean_team_name(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid team name: {exc}") from exc

    def _ensure_registration_open(self, event: Event) -> None:
        deadline = event.registration_deadline
        if deadline is not None and self._now() > _as_utc(deadline):
            raise ConflictError("Registration deadline has passed.")

    @staticmethod
    def _ensure_leader(team: Team, caller_id: int, action: str) -> None:
        if team.leader_id != caller_id:
            raise PermissionDenied(f"Only the team leader can {action}.")

    @staticmethod
    async def _event(session: AsyncSession, event_id: int) -> Event:
        event = await session.get(Event, event_id)
        if event is None:
            raise NotFoundError("Event not found.")
        return event

    @staticmethod
    async def _user(session: AsyncSession, user_id: int) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    @staticmethod
    async def _team(session: AsyncSession, team_id: int) -> Team:
        team = await team_store.load_team(session, team_id, for_update=True)
        if team is None:
            raise NotFoundError("Team not found.")
        return team

    def _notify(self, action: str, team: TeamRead, actor_id: int, message: str) -> None:
        self.sink.notify(TeamOutcome(action=action, team=team, actor_id=actor_id, message=message))

    @staticmethod
    def _resolve_max_size(event: Event, requested: Optional[int]) -> int:
        ceiling = event.max_team_size or 1
        if requested is None:
            return ceiling
        if requested < 1 or requested > ceiling:
            raise ValidationError(f"Team size must be between 1 and {ceiling} for this event.")
        return requested

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_team(
        self,
        session: AsyncSession,
        caller: User,
        event_id: int,
        name: str,
        max_size: Optional[int] = None,
    ) -> TeamRead:
        caller_id = caller.id
        team_name = self._team_name(name)

        async def work(db: AsyncSession) -> TeamRead:
            event = await self._event(db, event_id)
            self._ensure_registration_open(event)
            user = await self._user(db, caller_id)
            if await team_store.member_team_id(db, event_id, caller_id) is not None:
                raise ConflictError("You are already in a team for this event.")
            size = self._resolve_max_size(event, max_size)

            number = await self.allocator.allocate(db)
            now = self._now()
            team = Team(
                event_id=event_id,
                team_name=team_name,
                team_code=self.allocator.format_code(number),
                leader_id=caller_id,
                leader_unique_id=user.unique_id or "",
                max_size=size,
                member_count=1,
                status=TEAM_STATUS_OPEN,
                created_at=now,
            )
            db.add(team)
            await db.flush()

            # A leader cannot also be waiting on another team
            await team_store.withdraw_requests(db, event_id, caller_id)
            team_store.add_member(db, team=team, user=user, joined_at=now)
            team_store.log_activity(
                db, user_id=caller_id, team_id=team.id, action="team.created",
                detail=f"{team.team_code} {team_name}",
            )
            return await team_store.team_view(db, team.id)

        view = await run_in_transaction(session, work, label="create team")
        self._notify("created", view, caller_id, f'Team "{view.team_name}" created!')
        return view

    async def request_join(self, session: AsyncSession, caller: User, team_id: int) -> TeamRead:
        caller_id = caller.id

        async def work(db: AsyncSession) -> TeamRead:
            team = await self._team(db, team_id)
            event = await self._event(db, team.event_id)
            self._ensure_registration_open(event)
            if team.status != TEAM_STATUS_OPEN:
                raise ConflictError("This team is not accepting new members.")
            if team.member_count >= team.max_size:
                raise ConflictError("This team is already full.")
            if await team_store.member_team_id(db, team.event_id, caller_id) is not None:
                raise ConflictError("You are already in a team for this event.")
            if await team_store.pending_request_for(db, team.event_id, caller_id) is not None:
                raise ConflictError("You already have a pending request for this event.")

            user = await self._user(db, caller_id)
            team_store.add_request(db, team=team, user=user, requested_at=self._now())
            team_store.log_activity(
                db, user_id=caller_id, team_id=team.id, action="team.join_requested",
            )
            return await team_store.team_view(db, team.id)

        view = await run_in_transaction(session, work, label="request join")
        self._notify("join_requested", view, caller_id, "Join request sent to the captain.")
        return view

    async def request_join_by_captain(
        self,
        session: AsyncSession,
        caller: User,
        event_id: int,
        captain_unique_id: str,
    ) -> TeamRead:
        """Send a join request to the team whose captain has ``captain_unique_id``."""
        try:
            captain_id = clean_unique_id(captain_unique_id)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        async def lookup(db: AsyncSession) -> int:
            team = await team_store.team_for_leader_unique_id(db, event_id, captain_id)
            if team is None:
                raise NotFoundError(f"No team found with Captain ID: {captain_id}")
            return team.id

        team_id = await run_read(session, lookup)
        return await self.request_join(session, caller, team_id)

    async def approve_request(
        self,
        session: AsyncSession,
        caller: User,
        team_id: int,
        request_uid: int,
    ) -> TeamRead:
        caller_id = caller.id

        async def work(db: AsyncSession) -> TeamRead:
            team = await self._team(db, team_id)
            self._ensure_leader(team, caller_id, "approve requests")
            request = await team_store.find_request(db, team.id, request_uid)
            if request is None:
                raise NotFoundError("Request not found.")
            if await team_store.member_team_id(db, team.event_id, request_uid) is not None:
                raise ConflictError("User is already in a team for this event.")
            if not await team_store.claim_seat(db, team.id):
                raise ConflictError("Team is full.")

            user = await self._user(db, request_uid)
            await db.delete(request)
            await db.flush()
            team_store.add_member(db, team=team, user=user, joined_at=self._now())
            team_store.log_activity(
                db, user_id=caller_id, team_id=team.id, action="team.request_approved",
                detail=f"user {request_uid}",
            )
            return await team_store.team_view(db, team.id)

        view = await run_in_transaction(session, work, label="approve request")
        self._notify("request_approved", view, caller_id, "Member approved and added to the team.")
        return view

    async def reject_request(
        self,
        session: AsyncSession,
        caller: User,
        team_id: int,
        request_uid: int,
    ) -> TeamRead:
        caller_id = caller.id

        async def work(db: AsyncSession) -> TeamRead:
            team = await self._team(db, team_id)
            self._ensure_leader(team, caller_id, "reject requests")
            request = await team_store.find_request(db, team.id, request_uid)
            if request is None:
                raise NotFoundError("Request not found.")
            await db.delete(request)
            team_store.log_activity(
                db, user_id=caller_id, team_id=team.id, action="team.request_rejected",
                detail=f"user {request_uid}",
            )
            return await team_store.team_view(db, team.id)

        view = await run_in_transaction(session, work, label="reject request")
        self._notify("request_rejected", view, caller_id, "Join request rejected.")
        return view

    async def add_member_direct(
        self,
        session: AsyncSession,
        caller: User,
        team_id: int,
        target_unique_id: str,
    ) -> TeamRead:
        caller_id = caller.id
        try:
            unique_id = clean_unique_id(target_unique_id)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        async def work(db: AsyncSession) -> TeamRead:
            team = await self._team(db, team_id)
            self._ensure_leader(team, caller_id, "add members")
            if team.member_count >= team.max_size:
                raise ConflictError("Team has reached maximum capacity.")

            target = await self.directory.resolve_by_unique_id(db, unique_id)
            if target is None:
                raise NotFoundError(f"No user found with ID: {unique_id}")
            if not await self.registrations.is_registered(db, target.id, team.event_id):
                raise ValidationError("User is not registered for this event.")
            if await team_store.member_team_id(db, team.event_id, target.id) is not None:
                raise ConflictError("User is already in a team for this event.")
            if not await team_store.claim_seat(db, team.id):
                raise ConflictError("Team has reached maximum capacity.")

            await team_store.withdraw_requests(db, team.event_id, target.id)
            team_store.add_member(db, team=team, user=target, joined_at=self._now())
            team_store.log_activity(
                db, user_id=caller_id, team_id=team.id, action="team.member_added",
                detail=f"user {target.id} ({unique_id})",
            )
            return await team_store.team_view(db, team.id)

        view = await run_in_transaction(session, work, label="add member")
        self._notify("member_added", view, caller_id, f"{unique_id} added to the team!")
        return view

    async def rename_team(
        self,
        session: AsyncSession,
        caller: User,
        team_id: int,
        new_name: str,
    ) -> TeamRead:
        caller_id = caller.id
        team_name = self._team_name(new_name)

        async def work(db: AsyncSession) -> TeamRead:
            team = await self._team(db, team_id)
            self._ensure_leader(team, caller_id, "rename the team")
            team.team_name = team_name
            team_store.log_activity(
                db, user_id=caller_id, team_id=team.id, action="team.renamed", detail=team_name,
            )
            return await team_store.team_view(db, team.id)

        view = await run_in_transaction(session, work, label="rename team")
        self._notify("renamed", view, caller_id, "Team name updated.")
        return view

    async def set_team_status(
        self,
        session: AsyncSession,
        caller: User,
        team_id: int,
        status: str,
    ) -> TeamRead:
        """Close a team to new requests, or reopen it."""
        caller_id = caller.id
        if status not in TEAM_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(TEAM_STATUSES)}")

        async def work(db: AsyncSession) -> TeamRead:
            team = await self._team(db, team_id)
            self._ensure_leader(team, caller_id, "change the team status")
            team.status = status
            team_store.log_activity(
                db, user_id=caller_id, team_id=team.id, action=f"team.{status}",
            )
            return await team_store.team_view(db, team.id)

        view = await run_in_transaction(session, work, label="set team status")
        self._notify(status, view, caller_id, f"Team is now {status}.")
        return view

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_team(self, session: AsyncSession, team_id: int) -> TeamRead:
        async def work(db: AsyncSession) -> TeamRead:
            if await team_store.load_team(db, team_id) is None:
                raise NotFoundError("Team not found.")
            return await team_store.team_view(db, team_id)

        return await run_read(session, work)

    async def list_open_teams(self, session: AsyncSession, event_id: int) -> list[TeamSummary]:
        async def work(db: AsyncSession) -> list[TeamSummary]:
            teams = await team_store.list_open_teams(db, event_id)
            return [TeamSummary.model_validate(team) for team in teams]

        return await run_read(session, work)

    async def list_event_teams(self, session: AsyncSession, event_id: int) -> list[TeamRead]:
        async def work(db: AsyncSession) -> list[TeamRead]:
            return team_store.team_views(await team_store.list_event_teams(db, event_id))

        return await run_read(session, work)

    async def get_user_team(self, session: AsyncSession, event_id: int, uid: int) -> Optional[TeamRead]:
        async def work(db: AsyncSession) -> Optional[TeamRead]:
            team_id = await team_store.member_team_id(db, event_id, uid)
            if team_id is None:
                return None
            return await team_store.team_view(db, team_id)

        return await run_read(session, work)

    async def get_pending_team(self, session: AsyncSession, event_id: int, uid: int) -> Optional[TeamRead]:
        """The team the user is waiting on for this event, if any."""

        async def work(db: AsyncSession) -> Optional[TeamRead]:
            request = await team_store.pending_request_for(db, event_id, uid)
            if request is None:
                return None
            return await team_store.team_view(db, request.team_id)

        return await run_read(session, work)

    async def find_team_by_member_unique_id(
        self, session: AsyncSession, event_id: int, unique_id: str
    ) -> TeamRead:
        try:
            cleaned = clean_unique_id(unique_id)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        async def work(db: AsyncSession) -> TeamRead:
            user = await self.directory.resolve_by_unique_id(db, cleaned)
            if user is None:
                raise NotFoundError(f"No user found with unique ID: {cleaned}")
            team_id = await team_store.member_team_id(db, event_id, user.id)
            if team_id is None:
                raise NotFoundError(f"User {user.display_name or cleaned} is not part of any team for this event yet.")
            return await team_store.team_view(db, team_id)

        return await run_read(session, work)

    async def code_counter_status(self, session: AsyncSession) -> CodeCounterStatus:
        async def work(db: AsyncSession) -> CodeCounterStatus:
            current = await self.allocator.peek(db)
            return CodeCounterStatus(
                namespace=self.allocator.prefix,
                current=current,
                last_code=self.allocator.format_code(current) if current else None,
            )

        return await run_read(session, work)


_coordinator: Optional[MembershipCoordinator] = None


def get_coordinator() -> MembershipCoordinator:
    """Return the shared coordinator used by the HTTP routes."""

    global _coordinator
    if _coordinator is None:
        _coordinator = MembershipCoordinator()
        _LOGGER.debug("Membership coordinator initialised with prefix %s", _coordinator.allocator.prefix)
    return _coordinator


__all__ = ["MembershipCoordinator", "get_coordinator"]
