from sqlalchemy import Column, Integer, String, DateTime, func

from eventteams.database import Base


class TeamCodeCounter(Base):
    """Last sequence number issued for a team-code namespace."""

    __tablename__ = "team_code_counters"

    namespace = Column(String(32), primary_key=True)
    current = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
