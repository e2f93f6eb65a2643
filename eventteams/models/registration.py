from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint, func

from eventteams.database import Base


class EventRegistration(Base):
    """Owned by the registration subsystem; read here only as a yes/no fact."""

    __tablename__ = "event_registrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    registered_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_event_registrations_user_event"),
    )
