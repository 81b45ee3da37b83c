"""User-related Pydantic models"""
from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from mindbloom.utils.datetime_helpers import now_utc


class User(BaseModel):
    """User profile with gamification counters"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    username: str = Field(..., min_length=3)
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: str = "default-avatar.png"
    is_admin: bool = False

    # Progress within the current level; always below the next-level threshold
    level: int = Field(default=1, ge=1)
    xp: int = Field(default=0, ge=0)
    total_xp_earned: int = Field(default=0, ge=0)

    streak_days: int = Field(default=0, ge=0)
    last_check_in: Optional[datetime] = None

    # Id of the most recent XP award and the level it started from; a retried
    # award with the same id is recognized instead of credited twice
    last_award_id: Optional[str] = None
    last_award_level: Optional[int] = None

    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
    # Optimistic concurrency token, bumped by the repository on every update
    version: int = 0
