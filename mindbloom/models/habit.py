"""Habit model"""
from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from mindbloom.utils.datetime_helpers import now_utc


class Habit(BaseModel):
    """A user habit with its own calendar-day streak"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    streak: int = Field(default=0, ge=0)
    last_completed: Optional[datetime] = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
    version: int = 0
