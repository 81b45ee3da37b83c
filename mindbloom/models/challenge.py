"""Challenge models"""
from datetime import date, datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from mindbloom.utils.datetime_helpers import now_utc


class ChallengeCategory(str, Enum):
    """Challenge categories"""
    MEDITATION = "Meditation"
    EXERCISE = "Exercise"
    JOURNALING = "Journaling"
    HABITS = "Habits"
    SLEEP = "Sleep"
    NUTRITION = "Nutrition"
    SOCIAL = "Social"
    OTHER = "Other"


class ChallengeDifficulty(str, Enum):
    """Challenge difficulty levels"""
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"


class ChallengeTask(BaseModel):
    """A task within a challenge"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    duration_minutes: int = Field(default=0, ge=0)
    points: int = Field(default=10, ge=0)


class TaskProgress(BaseModel):
    """A participant's completion record for one task"""
    task_id: str
    is_completed: bool = False
    completed_at: Optional[datetime] = None


class Participant(BaseModel):
    """A user's membership and progress within a challenge"""
    user_id: str
    join_date: datetime = Field(default_factory=now_utc)
    is_creator: bool = False
    # Derived from completed_days; never set directly
    progress: int = Field(default=0, ge=0, le=100)
    completed_days: List[date] = Field(default_factory=list)
    last_check_in: Optional[datetime] = None
    task_progress: List[TaskProgress] = Field(default_factory=list)
    is_active: bool = True

    def has_checked_in_on(self, day: date) -> bool:
        return day in self.completed_days

    def all_tasks_completed(self) -> bool:
        return bool(self.task_progress) and all(p.is_completed for p in self.task_progress)


class ChallengeDraft(BaseModel):
    """Input for creating or editing a challenge"""
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: ChallengeCategory = ChallengeCategory.OTHER
    difficulty: ChallengeDifficulty = ChallengeDifficulty.BEGINNER
    start_date: datetime
    end_date: datetime
    is_private: bool = False
    max_participants: int = Field(default=0, ge=0)  # 0 means unlimited
    tasks: List[ChallengeTask] = Field(default_factory=list)
    completion_threshold: int = Field(default=100, gt=0, le=100)
    xp_reward: int = Field(default=100, ge=0)
    badge_reward_id: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self) -> "ChallengeDraft":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        task_ids = [task.id for task in self.tasks]
        if len(task_ids) != len(set(task_ids)):
            raise ValueError("task ids must be unique")
        return self


class Challenge(BaseModel):
    """Multi-user, time-boxed activity"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    description: str
    category: ChallengeCategory = ChallengeCategory.OTHER
    difficulty: ChallengeDifficulty = ChallengeDifficulty.BEGINNER
    creator_id: str
    start_date: datetime
    end_date: datetime
    duration: int = Field(..., gt=0)  # days
    is_private: bool = False
    join_code: Optional[str] = None
    max_participants: int = Field(default=0, ge=0)
    tasks: List[ChallengeTask] = Field(default_factory=list)
    participants: List[Participant] = Field(default_factory=list)
    # Users who may join a private challenge without its join code
    invited_user_ids: List[str] = Field(default_factory=list)
    completion_threshold: int = Field(default=100, gt=0, le=100)
    xp_reward: int = Field(default=100, ge=0)
    badge_reward_id: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
    version: int = 0

    def get_participant(self, user_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def get_task(self, task_id: str) -> Optional[ChallengeTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None
