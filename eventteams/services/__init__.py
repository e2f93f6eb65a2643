"""Team membership services: code allocation, coordination and broadcast."""

from .broadcast import TeamEventBroker, get_team_broker
from .code_allocator import CodeAllocator
from .coordinator import MembershipCoordinator, get_coordinator

__all__ = [
    "CodeAllocator",
    "MembershipCoordinator",
    "TeamEventBroker",
    "get_coordinator",
    "get_team_broker",
]
