"""Pydantic models for API request/response validation"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from mindbloom.models.achievement import AchievementCategory
from mindbloom.models.challenge import ChallengeCategory, ChallengeDifficulty, ChallengeTask


class RegisterUserRequest(BaseModel):
    """Request to register a user"""
    username: str = Field(..., min_length=3, description="Unique username")
    email: str = Field(..., description="Unique email address")
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    """Editable profile fields; empty or omitted fields keep their value"""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None


class ProgressUpdateRequest(BaseModel):
    """Request to add progress to an achievement"""
    delta: int = Field(..., gt=0, description="Positive progress increment")


class JoinChallengeRequest(BaseModel):
    """Join code for private challenges"""
    join_code: Optional[str] = Field(default=None, description="Required for private challenges")


class JoinByCodeRequest(BaseModel):
    join_code: str = Field(..., min_length=1)


class InviteRequest(BaseModel):
    """Users to invite to a challenge"""
    user_ids: List[str] = Field(..., min_length=1)


class ChallengeUpdateRequest(BaseModel):
    """Editable challenge fields; omitted fields keep their value"""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ChallengeCategory] = None
    difficulty: Optional[ChallengeDifficulty] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_private: Optional[bool] = None
    max_participants: Optional[int] = Field(default=None, ge=0)
    tasks: Optional[List[ChallengeTask]] = None
    completion_threshold: Optional[int] = Field(default=None, gt=0, le=100)
    xp_reward: Optional[int] = Field(default=None, ge=0)


class HabitCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class JournalEntryUpdateRequest(BaseModel):
    """Partial journal entry update"""
    mood: Optional[int] = Field(default=None, ge=1, le=10)
    content: Optional[str] = None
    prompt: Optional[str] = None
    tags: Optional[List[str]] = None
    gratitude: Optional[List[str]] = None
    activities: Optional[List[str]] = None


class TemplateRequest(BaseModel):
    """Achievement template fields"""
    title: str = Field(..., min_length=1)
    description: str
    category: AchievementCategory = AchievementCategory.SPECIAL
    icon: str = "default-achievement.png"
    target: int = Field(..., gt=0)
    xp_reward: int = Field(default=100, ge=0)
    badge_title: Optional[str] = None


class TemplateUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[AchievementCategory] = None
    icon: Optional[str] = None
    target: Optional[int] = Field(default=None, gt=0)
    xp_reward: Optional[int] = Field(default=None, ge=0)
    badge_title: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str
    timestamp: datetime
    version: str
