import asyncio

import eventteams.database as database
from eventteams.auth_token import create_access_token
from eventteams.models import Event, EventRegistration, User
from sqlalchemy import select

DEMO_USERS = [
    ("RAIoT-U001", "Ada Lovelace", "admin"),
    ("RAIoT-U002", "Alan Turing", "participant"),
    ("RAIoT-U003", "Grace Hopper", "participant"),
    ("RAIoT-U004", "Edsger Dijkstra", "participant"),
]


async def main() -> None:
    """Create tables and seed a demo event with a few registered users."""

    # Engine follows the current env (DATABASE_URL normalised inside database.py)
    await database.init_models()
    async with database.SessionLocal() as session:
        event = await session.scalar(select(Event).where(Event.title == "Demo Hackathon"))
        if event is None:
            event = Event(title="Demo Hackathon", description="Local seed data", max_team_size=4)
            session.add(event)
            await session.flush()

        for unique_id, name, role in DEMO_USERS:
            user = await session.scalar(select(User).where(User.unique_id == unique_id))
            if user is None:
                user = User(
                    unique_id=unique_id,
                    display_name=name,
                    email=f"{unique_id.lower()}@example.com",
                    role=role,
                )
                session.add(user)
                await session.flush()
                session.add(EventRegistration(user_id=user.id, event_id=event.id))
            print(f"{unique_id}: {create_access_token({'user_id': user.id})}")

        await session.commit()
    print(f"Seeded event {event.id} with {len(DEMO_USERS)} registered users.")


if __name__ == "__main__":
    asyncio.run(main())
