# eventteams/models/team.py
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, CheckConstraint,
    Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from eventteams.database import Base

TEAM_STATUS_OPEN = "open"
TEAM_STATUS_CLOSED = "closed"
TEAM_STATUSES = (TEAM_STATUS_OPEN, TEAM_STATUS_CLOSED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    team_name = Column(String(100), nullable=False)
    team_code = Column(String(32), unique=True, nullable=False)

    # Set once at creation; there is no leadership transfer
    leader_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    leader_unique_id = Column(String(32), nullable=False, default="")

    max_size = Column(Integer, nullable=False)
    # Kept in step with team_members rows; capacity is enforced against it
    # with a conditional UPDATE
    member_count = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default=TEAM_STATUS_OPEN)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    members = relationship(
        "TeamMember",
        back_populates="team",
        order_by="TeamMember.id",
        lazy="selectin",
    )
    join_requests = relationship(
        "TeamJoinRequest",
        back_populates="team",
        order_by="TeamJoinRequest.id",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("member_count <= max_size", name="ck_teams_capacity"),
        Index("ix_teams_event_code", "event_id", "team_code"),
    )

    def __repr__(self) -> str:
        return f"<Team id={self.id} code={self.team_code} event={self.event_id}>"


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    # Copied from the team so the one-team-per-event rule is a storage constraint
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Profile snapshot taken when the member joined
    display_name = Column(String(120), nullable=False, default="Unknown")
    email = Column(String, nullable=False, default="")
    unique_id = Column(String(32), nullable=False, default="")
    organization = Column(String(120), nullable=False, default="")
    phone = Column(String(32), nullable=False, default="")
    joined_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    team = relationship("Team", back_populates="members")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_team_members_event_user"),
        UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
    )


class TeamJoinRequest(Base):
    __tablename__ = "team_join_requests"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    display_name = Column(String(120), nullable=False, default="Unknown")
    unique_id = Column(String(32), nullable=False, default="")
    requested_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    team = relationship("Team", back_populates="join_requests")

    __table_args__ = (
        # One outstanding request per user per event
        UniqueConstraint("event_id", "user_id", name="uq_team_join_requests_event_user"),
    )
