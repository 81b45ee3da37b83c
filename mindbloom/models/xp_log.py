"""XP ledger entries"""
from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from mindbloom.utils.datetime_helpers import now_utc


class XPAction(str, Enum):
    """What earned the XP"""
    JOURNAL = "journal"
    HABIT = "habit"
    CHALLENGE = "challenge"
    ACHIEVEMENT = "achievement"
    CHECK_IN = "check_in"
    OTHER = "other"


class XPLog(BaseModel):
    """Append-only audit record of a single XP award"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    action: XPAction
    points: int = Field(..., gt=0)
    created_at: datetime = Field(default_factory=now_utc)
