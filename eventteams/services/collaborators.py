"""Adapters for the subsystems the coordinator consults but does not own."""

from __future__ import annotations

from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eventteams.models.registration import EventRegistration
from eventteams.models.user import User


class RegistrationVerifier(Protocol):
    async def is_registered(self, session: AsyncSession, user_id: int, event_id: int) -> bool:
        ...


class UserDirectory(Protocol):
    async def resolve_by_unique_id(self, session: AsyncSession, unique_id: str) -> Optional[User]:
        ...


class SqlRegistrationVerifier:
    """Answers from the registration subsystem's ``event_registrations`` table."""

    async def is_registered(self, session: AsyncSession, user_id: int, event_id: int) -> bool:
        found = await session.scalar(
            select(EventRegistration.id)
            .where(
                EventRegistration.user_id == user_id,
                EventRegistration.event_id == event_id,
            )
            .limit(1)
        )
        return found is not None


class SqlUserDirectory:
    """Resolve human-entered unique IDs against the ``users`` table."""

    async def resolve_by_unique_id(self, session: AsyncSession, unique_id: str) -> Optional[User]:
        cleaned = unique_id.strip()
        if not cleaned:
            return None
        # Exact match: IDs that differ only in case belong to different users
        return await session.scalar(select(User).where(User.unique_id == cleaned))


__all__ = [
    "RegistrationVerifier",
    "SqlRegistrationVerifier",
    "SqlUserDirectory",
    "UserDirectory",
]
