"""Achievement models for gamification"""
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from mindbloom.utils.datetime_helpers import now_utc


class AchievementCategory(str, Enum):
    """Achievement and badge categories"""
    STREAK = "Streak"
    JOURNALING = "Journaling"
    MINDFULNESS = "Mindfulness"
    CHALLENGES = "Challenges"
    TRACKING = "Tracking"
    HABITS = "Habits"
    SOCIAL = "Social"
    SPECIAL = "Special"


class BadgeRarity(str, Enum):
    """Badge rarity tiers"""
    COMMON = "Common"
    UNCOMMON = "Uncommon"
    RARE = "Rare"
    EPIC = "Epic"
    LEGENDARY = "Legendary"


class Badge(BaseModel):
    """Catalog badge, shared read-only across users"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    description: str
    category: AchievementCategory = AchievementCategory.SPECIAL
    icon: str = "default-badge.png"
    rarity: BadgeRarity = BadgeRarity.COMMON
    xp_reward: int = Field(default=50, ge=0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=now_utc)


class AchievementTemplate(BaseModel):
    """Catalog entry that per-user achievements are instantiated from"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str = Field(..., min_length=1)
    description: str
    category: AchievementCategory = AchievementCategory.SPECIAL
    icon: str = "default-achievement.png"
    target: int = Field(..., gt=0)
    xp_reward: int = Field(default=100, ge=0)
    # Linked by title, resolved against the badge catalog at initialization
    badge_title: Optional[str] = None


class Achievement(BaseModel):
    """Per-user progress toward a target"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    title: str
    description: str
    category: AchievementCategory = AchievementCategory.SPECIAL
    icon: str = "default-achievement.png"
    target: int = Field(..., gt=0)
    current_value: int = Field(default=0, ge=0)
    is_completed: bool = False
    completed_date: Optional[datetime] = None
    # Set once xp_reward has been credited; completed but unpaid is retried
    reward_paid: bool = False
    badge_id: Optional[str] = None
    xp_reward: int = Field(default=100, ge=0)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
    version: int = 0

    @model_validator(mode="after")
    def check_value_within_target(self) -> "Achievement":
        if self.current_value > self.target:
            raise ValueError(
                f"current_value ({self.current_value}) cannot exceed target ({self.target})"
            )
        return self

    @property
    def percentage(self) -> int:
        return min(100, int(self.current_value / self.target * 100))
