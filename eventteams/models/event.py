from sqlalchemy import Column, Integer, String, DateTime, func
from eventteams.database import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(String(255))
    # Team-size limits come from the event's configuration
    max_team_size = Column(Integer, nullable=False, default=4)
    min_team_size = Column(Integer, nullable=False, default=1)
    registration_deadline = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime, default=func.now())
