from sqlalchemy import Column, Integer, String, DateTime, func

from eventteams.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Human-entered identifier (e.g. RAIoT00042) that teammates type in
    unique_id = Column(String(32), unique=True, nullable=False, index=True)
    display_name = Column(String(120), nullable=False, default="Unknown")
    email = Column(String, unique=True)
    organization = Column(String(120))
    phone = Column(String(32))
    role = Column(String, default="participant")
    created_at = Column(DateTime, default=func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} unique_id={self.unique_id}>"
