"""Typed failures raised by the team membership services."""


class TeamError(Exception):
    """Base error for team membership operations."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TeamError):
    """Malformed input, or a target the operation cannot accept."""

    status_code = 422


class ConflictError(TeamError):
    """The request is incompatible with current team state."""

    status_code = 409


class NotFoundError(TeamError):
    """A referenced team, user, event or request does not exist."""

    status_code = 404


class PermissionDenied(TeamError):
    """A non-leader attempted a leader-only action."""

    status_code = 403


class TransactionConflict(Exception):
    """A concurrent commit invalidated the current unit of work; retry it."""


__all__ = [
    "ConflictError",
    "NotFoundError",
    "PermissionDenied",
    "TeamError",
    "TransactionConflict",
    "ValidationError",
]
