"""
Outward-facing shapes for accounts, reports and comments.

Reports and comments embed a PublicProfile copied from the owning account
when the row is read. It is a snapshot, not a live link to the account.
The password hash never appears in any of these models.
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at", mode="after", check_fields=False)
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Columns hold naive UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PublicProfile(_Record):
    id: int
    name: str
    email: str
    is_admin: bool


class UserOut(_Record):
    id: int
    name: str
    email: str
    is_admin: bool
    exp: int
    created_at: datetime
    updated_at: datetime


class ReportOut(_Record):
    id: int
    user_id: int
    user: PublicProfile
    latitude: float
    longitude: float
    image_path: str = ""
    description: str
    trail: str = ""
    created_at: datetime


class CommentOut(_Record):
    id: int
    post_id: int
    user_id: int
    user: PublicProfile
    content: str
    created_at: datetime


# ── Requests ──

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=200)
    password: str = Field(..., min_length=6)


class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, min_length=3, max_length=200)
    password: Optional[str] = Field(None, min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1)


# ── Responses ──

class TokenOut(BaseModel):
    token: str
    user: Optional[UserOut] = None


class LeaderboardEntry(BaseModel):
    rank: int
    user: PublicProfile
    exp: int


class RankOut(BaseModel):
    user_id: int
    rank: int
    exp: int
