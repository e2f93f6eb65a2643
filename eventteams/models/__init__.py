"""ORM models; importing this package registers every table with ``Base``."""

from .activity_log import ActivityLog
from .counter import TeamCodeCounter
from .event import Event
from .registration import EventRegistration
from .team import Team, TeamJoinRequest, TeamMember
from .user import User

__all__ = [
    "ActivityLog",
    "Event",
    "EventRegistration",
    "Team",
    "TeamCodeCounter",
    "TeamJoinRequest",
    "TeamMember",
    "User",
]
