from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func
from eventteams.database import Base


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String, nullable=False)
    detail = Column(String(255))
    timestamp = Column(DateTime, default=func.now())
