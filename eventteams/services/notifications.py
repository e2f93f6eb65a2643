"""Surface committed team outcomes to users and live viewers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from eventteams.schemas import TeamRead
from eventteams.services.broadcast import TeamEventBroker, get_team_broker

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TeamOutcome:
    action: str
    team: TeamRead
    actor_id: int
    message: str

    @property
    def event_id(self) -> int:
        return self.team.event_id

    def as_message(self) -> dict:
        return {
            "type": f"team.{self.action}",
            "actor_id": self.actor_id,
            "message": self.message,
            "team": self.team.model_dump(mode="json"),
        }


class NotificationSink(Protocol):
    def notify(self, outcome: TeamOutcome) -> None:
        ...


class BroadcastNotificationSink:
    """Log each outcome and push the team's new state to the event topic."""

    def __init__(self, broker: Optional[TeamEventBroker] = None) -> None:
        self._broker = broker

    @property
    def broker(self) -> TeamEventBroker:
        return self._broker or get_team_broker()

    def notify(self, outcome: TeamOutcome) -> None:
        _LOGGER.info(
            "team %s %s by user %s: %s",
            outcome.team.team_code,
            outcome.action,
            outcome.actor_id,
            outcome.message,
        )
        self.broker.publish(outcome.event_id, outcome.as_message())


__all__ = ["BroadcastNotificationSink", "NotificationSink", "TeamOutcome"]
