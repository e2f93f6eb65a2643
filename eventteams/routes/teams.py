# eventteams/routes/teams.py

import asyncio
from contextlib import contextmanager
import logging
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from eventteams.auth_token import decode_user_id, get_current_user, require_admin
from eventteams.database import get_db
from eventteams.errors import TeamError
from eventteams.models.user import User
from eventteams.schemas import (
    CodeCounterStatus,
    JoinByCaptain,
    MemberAddDirect,
    TeamAck,
    TeamCreate,
    TeamRead,
    TeamRename,
    TeamStatusUpdate,
    TeamSummary,
)
from eventteams.services.broadcast import get_team_broker
from eventteams.services.coordinator import MembershipCoordinator, get_coordinator

logger = logging.getLogger(__name__)


@contextmanager
def team_errors() -> Iterator[None]:
    """Translate coordinator errors into HTTP responses."""
    try:
        yield
    except TeamError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


# -------------------------------------------------------------------
# Router
# -------------------------------------------------------------------

router = APIRouter(tags=["Teams"])

# Event-scoped ------------------------------------------------------

@router.post("/events/{event_id}/teams", response_model=TeamRead, status_code=status.HTTP_201_CREATED)
async def create_team(
    event_id: int,
    payload: TeamCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        return await coordinator.create_team(db, user, event_id, payload.name, payload.max_size)


@router.get("/events/{event_id}/teams", response_model=List[TeamRead])
async def list_event_teams(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_event_teams(db, event_id)


@router.get("/events/{event_id}/teams/open", response_model=List[TeamSummary])
async def list_open_teams(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_open_teams(db, event_id)


@router.get("/events/{event_id}/teams/mine", response_model=Optional[TeamRead])
async def get_my_team(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.get_user_team(db, event_id, user.id)


@router.get("/events/{event_id}/teams/pending", response_model=Optional[TeamRead])
async def get_my_pending_team(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.get_pending_team(db, event_id, user.id)


@router.get("/events/{event_id}/teams/search", response_model=TeamRead)
async def find_team_by_member(
    event_id: int,
    unique_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        return await coordinator.find_team_by_member_unique_id(db, event_id, unique_id)


@router.post("/events/{event_id}/teams/join-by-captain", response_model=TeamAck)
async def join_by_captain(
    event_id: int,
    payload: JoinByCaptain,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        team = await coordinator.request_join_by_captain(db, user, event_id, payload.captain_unique_id)
    return TeamAck(detail="Your join request has been sent to the captain.", team_id=team.id)


@router.get("/events/{event_id}/users/{uid}/team", response_model=Optional[TeamRead])
async def get_user_team(
    event_id: int,
    uid: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.get_user_team(db, event_id, uid)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Return once the viewer goes away; anything the client sends is ignored."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/events/{event_id}/teams/stream")
async def stream_event_teams(websocket: WebSocket, event_id: int, token: str = Query(...)):
    """Push every committed team change of the event to the connected viewer."""
    try:
        viewer_id = decode_user_id(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    async with get_team_broker().subscription(event_id) as queue:
        gone = asyncio.ensure_future(_wait_for_disconnect(websocket))
        update = None
        try:
            while True:
                update = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({gone, update}, return_when=asyncio.FIRST_COMPLETED)
                if gone in done:
                    break
                await websocket.send_json(update.result())
        except WebSocketDisconnect:
            pass
        finally:
            for task in (gone, update):
                if task is not None and not task.done():
                    task.cancel()
    logger.info("User %s stopped watching teams for event %s", viewer_id, event_id)

# Team-scoped -------------------------------------------------------

@router.get("/teams/{team_id}", response_model=TeamRead)
async def get_team(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        return await coordinator.get_team(db, team_id)


@router.post("/teams/{team_id}/requests", response_model=TeamAck, status_code=status.HTTP_201_CREATED)
async def request_join(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        await coordinator.request_join(db, user, team_id)
    return TeamAck(detail="Your join request has been sent to the captain.", team_id=team_id)


@router.post("/teams/{team_id}/requests/{request_uid}/approve", response_model=TeamRead)
async def approve_request(
    team_id: int,
    request_uid: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        return await coordinator.approve_request(db, user, team_id, request_uid)


@router.post("/teams/{team_id}/requests/{request_uid}/reject", response_model=TeamAck)
async def reject_request(
    team_id: int,
    request_uid: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        await coordinator.reject_request(db, user, team_id, request_uid)
    return TeamAck(detail="Join request rejected.", team_id=team_id)


@router.post("/teams/{team_id}/members", response_model=TeamRead)
async def add_member_direct(
    team_id: int,
    payload: MemberAddDirect,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        return await coordinator.add_member_direct(db, user, team_id, payload.unique_id)


@router.patch("/teams/{team_id}", response_model=TeamRead)
async def rename_team(
    team_id: int,
    payload: TeamRename,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        return await coordinator.rename_team(db, user, team_id, payload.name)


@router.post("/teams/{team_id}/status", response_model=TeamRead)
async def set_team_status(
    team_id: int,
    payload: TeamStatusUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    with team_errors():
        return await coordinator.set_team_status(db, user, team_id, payload.status)

# Admin -------------------------------------------------------------

@router.get("/admin/team-codes", response_model=CodeCounterStatus)
async def team_code_status(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_admin),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.code_counter_status(db)
