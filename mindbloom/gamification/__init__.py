"""
Gamification engine for MindBloom

This package implements the progress engine behind the wellness tracker:
- Calendar-day streaks (journal, daily check-in, habits)
- XP ledger with a linear leveling curve
- Achievement progress and completion rewards
- Challenge participation, check-ins and tasks
"""

from mindbloom.gamification.streak_system import StreakCalculator, calculate_streak, next_streak_value
from mindbloom.gamification.xp_system import (
    ExponentialLevelPolicy,
    LinearLevelPolicy,
    XPLedger,
    apply_xp,
)
from mindbloom.gamification.achievement_system import AchievementTracker
from mindbloom.gamification.challenges import ChallengeTracker
from mindbloom.gamification.habits import HabitTracker

__all__ = [
    "StreakCalculator",
    "calculate_streak",
    "next_streak_value",
    "LinearLevelPolicy",
    "ExponentialLevelPolicy",
    "XPLedger",
    "apply_xp",
    "AchievementTracker",
    "ChallengeTracker",
    "HabitTracker",
]
