import asyncio
from types import SimpleNamespace

import pytest
from fastapi import HTTPException, WebSocketDisconnect

from conftest import as_caller, make_event, make_user
from eventteams.auth_token import create_access_token, decode_user_id, require_admin
from eventteams.routes import teams
from eventteams.schemas import JoinByCaptain, MemberAddDirect, TeamCreate, TeamStatusUpdate
from eventteams.services.broadcast import get_team_broker

pytestmark = pytest.mark.anyio


async def _team_with_leader(session, session_factory, coordinator):
    event = await make_event(session_factory)
    leader = await make_user(session_factory, "LEAD", event=event)
    team = await teams.create_team(
        event.id, TeamCreate(name="Falcons"), db=session, user=as_caller(leader), coordinator=coordinator
    )
    return event, leader, team


async def test_create_team_route_returns_snapshot(session, session_factory, coordinator):
    _, leader, team = await _team_with_leader(session, session_factory, coordinator)

    assert team.team_code == "PREFIX-00001"
    assert team.member_ids() == [leader.id]


async def test_second_team_for_same_leader_is_409(session, session_factory, coordinator):
    event, leader, _ = await _team_with_leader(session, session_factory, coordinator)

    with pytest.raises(HTTPException) as excinfo:
        await teams.create_team(
            event.id, TeamCreate(name="Hawks"), db=session, user=as_caller(leader), coordinator=coordinator
        )

    assert excinfo.value.status_code == 409
    assert excinfo.value.detail == "You are already in a team for this event."


async def test_request_join_on_missing_team_is_404(session, session_factory, coordinator):
    user = await make_user(session_factory, "U1")

    with pytest.raises(HTTPException) as excinfo:
        await teams.request_join(404, db=session, user=as_caller(user), coordinator=coordinator)

    assert excinfo.value.status_code == 404


async def test_non_leader_approval_is_403(session, session_factory, coordinator):
    event, _, team = await _team_with_leader(session, session_factory, coordinator)
    asker = await make_user(session_factory, "ASK", event=event)
    ack = await teams.request_join(team.id, db=session, user=as_caller(asker), coordinator=coordinator)
    assert ack.team_id == team.id

    with pytest.raises(HTTPException) as excinfo:
        await teams.approve_request(team.id, asker.id, db=session, user=as_caller(asker), coordinator=coordinator)

    assert excinfo.value.status_code == 403


async def test_adding_unregistered_user_is_422(session, session_factory, coordinator):
    _, leader, team = await _team_with_leader(session, session_factory, coordinator)
    await make_user(session_factory, "STRANGER")

    with pytest.raises(HTTPException) as excinfo:
        await teams.add_member_direct(
            team.id, MemberAddDirect(unique_id="STRANGER"), db=session, user=as_caller(leader), coordinator=coordinator
        )

    assert excinfo.value.status_code == 422
    assert excinfo.value.detail == "User is not registered for this event."


async def test_join_by_captain_acknowledges_request(session, session_factory, coordinator):
    event, leader, team = await _team_with_leader(session, session_factory, coordinator)
    asker = await make_user(session_factory, "ASK", event=event)

    ack = await teams.join_by_captain(
        event.id, JoinByCaptain(captain_unique_id="lead"), db=session, user=as_caller(asker), coordinator=coordinator
    )

    assert ack.team_id == team.id
    pending = await teams.get_my_pending_team(event.id, db=session, user=as_caller(asker), coordinator=coordinator)
    assert pending.pending_ids() == [asker.id]


async def test_closed_team_drops_out_of_open_listing(session, session_factory, coordinator):
    event, leader, team = await _team_with_leader(session, session_factory, coordinator)

    closed = await teams.set_team_status(
        team.id, TeamStatusUpdate(status="closed"), db=session, user=as_caller(leader), coordinator=coordinator
    )

    assert closed.status == "closed"
    assert await teams.list_open_teams(event.id, db=session, coordinator=coordinator) == []
    listed = await teams.list_event_teams(event.id, db=session, user=as_caller(leader), coordinator=coordinator)
    assert [t.id for t in listed] == [team.id]


async def test_search_for_teamless_user_is_404(session, session_factory, coordinator):
    event, leader, _ = await _team_with_leader(session, session_factory, coordinator)
    await make_user(session_factory, "LONER", event=event)

    with pytest.raises(HTTPException) as excinfo:
        await teams.find_team_by_member(
            event.id, unique_id="LONER", db=session, user=as_caller(leader), coordinator=coordinator
        )

    assert excinfo.value.status_code == 404


async def test_team_code_status_reports_last_code(session, session_factory, coordinator):
    _, leader, _ = await _team_with_leader(session, session_factory, coordinator)

    status = await teams.team_code_status(db=session, user=as_caller(leader), coordinator=coordinator)

    assert status.current == 1
    assert status.last_code == "PREFIX-00001"


async def test_require_admin_rejects_participants():
    with pytest.raises(HTTPException) as excinfo:
        await require_admin(SimpleNamespace(id=1, role="participant"))
    assert excinfo.value.status_code == 403

    admin = SimpleNamespace(id=2, role="admin")
    assert await require_admin(admin) is admin


def test_decode_user_id_round_trips_and_rejects_garbage():
    assert decode_user_id(create_access_token({"user_id": 42})) == 42

    with pytest.raises(HTTPException) as excinfo:
        decode_user_id("not-a-token")
    assert excinfo.value.status_code == 401

    with pytest.raises(HTTPException):
        decode_user_id(create_access_token({"sub": "someone"}))


class FakeWebSocket:
    def __init__(self, max_messages: int = 1):
        self.accepted = False
        self.closed_with = None
        self.sent = []
        self.receives = 0
        self.left = asyncio.Event()
        self._max_messages = max_messages

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000):
        self.closed_with = code

    async def receive(self):
        self.receives += 1
        await self.left.wait()
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_json(self, data):
        self.sent.append(data)
        if len(self.sent) >= self._max_messages:
            raise WebSocketDisconnect(code=1000)


async def _wait_for_subscriber(broker, event_id):
    for _ in range(100):
        if broker.subscriber_count(event_id):
            return
        await asyncio.sleep(0.01)


async def test_stream_rejects_invalid_token():
    socket = FakeWebSocket()

    await teams.stream_event_teams(socket, 1, token="bogus")

    assert socket.closed_with == 1008
    assert not socket.accepted


async def test_stream_forwards_published_updates():
    broker = get_team_broker()
    socket = FakeWebSocket()
    task = asyncio.create_task(
        teams.stream_event_teams(socket, 314, token=create_access_token({"user_id": 1}))
    )

    await _wait_for_subscriber(broker, 314)
    broker.publish(314, {"type": "team.created"})
    await asyncio.wait_for(task, timeout=2)

    assert socket.accepted
    assert socket.sent == [{"type": "team.created"}]
    assert broker.subscriber_count(314) == 0


async def test_stream_ends_when_viewer_leaves_a_quiet_event():
    broker = get_team_broker()
    socket = FakeWebSocket()
    task = asyncio.create_task(
        teams.stream_event_teams(socket, 271, token=create_access_token({"user_id": 1}))
    )

    await _wait_for_subscriber(broker, 271)
    assert broker.subscriber_count(271) == 1
    socket.left.set()
    await asyncio.wait_for(task, timeout=2)

    assert socket.receives >= 1
    assert socket.sent == []
    assert broker.subscriber_count(271) == 0
