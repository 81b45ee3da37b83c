"""Journal models"""
from datetime import date, datetime
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from mindbloom.utils.datetime_helpers import now_utc


def _clean_strings(values: List[str]) -> List[str]:
    return [v.strip() for v in values if v and v.strip()]


class JournalEntryInput(BaseModel):
    """
    Validate a new journal entry

    Constraints:
    - mood: 1-10
    - content: non-empty after trimming
    - tags, gratitude, activities: trimmed, empty items dropped
    """
    mood: int = Field(..., ge=1, le=10)
    content: str = Field(..., min_length=1)
    prompt: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    gratitude: List[str] = Field(default_factory=list)
    activities: List[str] = Field(default_factory=list)
    is_private: bool = True
    date: Optional[datetime] = None

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        trimmed = v.strip()
        if not trimmed:
            raise ValueError("Journal content cannot be only whitespace")
        return trimmed

    @field_validator("tags", "gratitude", "activities")
    @classmethod
    def strip_items(cls, v: List[str]) -> List[str]:
        return _clean_strings(v)


class JournalEntryUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value"""
    mood: Optional[int] = Field(default=None, ge=1, le=10)
    content: Optional[str] = Field(default=None, min_length=1)
    prompt: Optional[str] = None
    tags: Optional[List[str]] = None
    gratitude: Optional[List[str]] = None
    activities: Optional[List[str]] = None


class JournalEntry(BaseModel):
    """Stored journal entry"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    date: datetime = Field(default_factory=now_utc)
    mood: int = Field(..., ge=1, le=10)
    content: str
    prompt: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    gratitude: List[str] = Field(default_factory=list)
    activities: List[str] = Field(default_factory=list)
    is_private: bool = True
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class StreakInfo(BaseModel):
    """Consecutive-day streak summary"""
    current_streak: int = 0
    longest_streak: int = 0
    last_entry_date: Optional[date] = None


class MoodAverage(BaseModel):
    """Average mood for one calendar day"""
    day: date
    average_mood: float
    count: int


class TagCount(BaseModel):
    """Tag usage frequency"""
    tag: str
    count: int
