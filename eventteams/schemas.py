# eventteams/schemas.py
# ------------------------------------------------------------
# Pydantic v2 schemas for the team membership API
# ------------------------------------------------------------
from datetime import datetime
import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_SCRIPT_TAG_RE = re.compile(r"<\s*/?\s*script", re.IGNORECASE)
UNIQUE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,32}$")

TEAM_NAME_MAX_LENGTH = 64


def sanitize_single_line_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if any(ch in {"\n", "\r"} for ch in cleaned):
        raise ValueError("Value must be a single line of text")
    if "<" in cleaned or ">" in cleaned:
        raise ValueError("HTML tags are not allowed in this field")
    if _SCRIPT_TAG_RE.search(cleaned):
        raise ValueError("Script tags are not allowed")
    return cleaned


def clean_team_name(value: str | None) -> str:
    """Return the trimmed team name or raise ``ValueError``."""
    cleaned = sanitize_single_line_text(value if value is not None else "")
    if len(cleaned) > TEAM_NAME_MAX_LENGTH:
        raise ValueError(f"Team name must be at most {TEAM_NAME_MAX_LENGTH} characters")
    return cleaned


def clean_unique_id(value: str | None) -> str:
    cleaned = (value or "").strip()
    if not UNIQUE_ID_RE.match(cleaned):
        raise ValueError("Unique ID must be 1-32 letters, digits, '-' or '_'")
    return cleaned


# ============================================================
# Requests
# ============================================================

class TeamCreate(BaseModel):
    name: str
    max_size: Optional[int] = Field(default=None, ge=1)

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: str) -> str:
        return clean_team_name(value)


class TeamRename(BaseModel):
    name: str

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: str) -> str:
        return clean_team_name(value)


class MemberAddDirect(BaseModel):
    unique_id: str

    @field_validator("unique_id", mode="before")
    @classmethod
    def _clean_unique_id(cls, value: str) -> str:
        return clean_unique_id(value)


class JoinByCaptain(BaseModel):
    captain_unique_id: str

    @field_validator("captain_unique_id", mode="before")
    @classmethod
    def _clean_unique_id(cls, value: str) -> str:
        return clean_unique_id(value)


class TeamStatusUpdate(BaseModel):
    status: Literal["open", "closed"]


# ============================================================
# Responses
# ============================================================

class TeamMemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    uid: int = Field(validation_alias="user_id")
    display_name: str
    email: str = ""
    unique_id: str = ""
    organization: str = ""
    phone: str = ""
    joined_at: datetime


class JoinRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    uid: int = Field(validation_alias="user_id")
    display_name: str
    unique_id: str = ""
    requested_at: datetime


class TeamRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    event_id: int
    team_name: str
    team_code: str
    leader_id: int
    leader_unique_id: str
    members: list[TeamMemberRead]
    pending_requests: list[JoinRequestRead] = Field(validation_alias="join_requests")
    max_size: int
    status: Literal["open", "closed"]
    created_at: datetime

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.max_size

    def member_ids(self) -> list[int]:
        return [member.uid for member in self.members]

    def pending_ids(self) -> list[int]:
        return [request.uid for request in self.pending_requests]


class TeamSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    team_name: str
    team_code: str
    leader_unique_id: str
    member_count: int
    max_size: int
    status: Literal["open", "closed"]


class TeamAck(BaseModel):
    detail: str
    team_id: int


class CodeCounterStatus(BaseModel):
    namespace: str
    current: int
    last_code: Optional[str] = None

