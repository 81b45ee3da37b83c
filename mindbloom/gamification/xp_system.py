"""
XP and Leveling System

Manages XP awards, level calculations and the daily check-in streak.

Leveling policies are explicit, named strategies:
- LinearLevelPolicy (canonical, used for every award):
    xp_for_next_level(level) = base_xp * level
- ExponentialLevelPolicy (presentation only):
    xp_for_next_level(level) = base_xp * growth_factor ** level
  Only used to show estimates; it never moves a user's level.

A user's `xp` is progress inside the current level. After any award the
overflow is carried into level-ups until xp is below the next threshold,
so the final (level, xp) does not depend on the order of awards.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
import logging
from uuid import uuid4

from pydantic import BaseModel

from mindbloom.config import BASE_XP, DISPLAY_GROWTH_FACTOR
from mindbloom.db.repositories import UserRepository, XPLogRepository
from mindbloom.exceptions import DuplicateKeyError, RecordNotFoundError, ValidationError
from mindbloom.gamification.streak_system import next_streak_value
from mindbloom.models.user import User
from mindbloom.models.xp_log import XPAction, XPLog
from mindbloom.utils.datetime_helpers import now_utc, to_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinearLevelPolicy:
    """Canonical leveling curve: each level costs base_xp more than the last"""
    base_xp: int = BASE_XP
    name: str = "linear"

    def xp_for_next_level(self, level: int) -> int:
        return self.base_xp * level


@dataclass(frozen=True)
class ExponentialLevelPolicy:
    """Display-only curve used for presentation estimates"""
    base_xp: int = BASE_XP
    growth_factor: float = DISPLAY_GROWTH_FACTOR
    name: str = "exponential"

    def xp_for_next_level(self, level: int) -> int:
        return round(self.base_xp * self.growth_factor ** level)


def apply_xp(level: int, xp: int, amount: int, policy=None) -> Tuple[int, int, int]:
    """
    Add XP and carry the overflow into level-ups

    Handles multi-level jumps from one large award.

    Returns:
        (new_level, new_xp, levels_gained)

    Example:
        apply_xp(1, 90, 30) -> (2, 20, 1)   # 120 >= 100, 20 < 200
    """
    policy = policy or LinearLevelPolicy()
    new_level = level
    new_xp = xp + amount

    threshold = policy.xp_for_next_level(new_level)
    while new_xp >= threshold:
        new_xp -= threshold
        new_level += 1
        threshold = policy.xp_for_next_level(new_level)

    return new_level, new_xp, new_level - level


class XPAwardResult(BaseModel):
    """Outcome of a single XP award"""
    user_id: str
    action: XPAction
    xp_awarded: int
    old_level: int
    new_level: int
    leveled_up: bool
    levels_gained: int
    xp: int
    xp_for_next_level: int
    total_xp_earned: int


class StreakUpdateResult(BaseModel):
    """Outcome of a daily check-in"""
    user: User
    previous_streak: int
    streak_days: int
    is_new_day: bool


class DisplayEstimate(BaseModel):
    """Presentation-only projection from the exponential curve"""
    policy: str
    xp_for_next_level: int
    xp_progress: int


class LevelInfo(BaseModel):
    """Current level summary for a user"""
    user_id: str
    level: int
    xp: int
    xp_for_next_level: int
    xp_progress: int
    total_xp_earned: int
    streak_days: int
    last_check_in: Optional[datetime] = None
    display_estimate: DisplayEstimate


def estimate_display_progress(level: int, xp: int, policy=None) -> DisplayEstimate:
    """Project the user's standing onto the display-only exponential curve"""
    policy = policy or ExponentialLevelPolicy()
    needed = policy.xp_for_next_level(level)
    return DisplayEstimate(
        policy=policy.name,
        xp_for_next_level=needed,
        xp_progress=min(100, round(xp / needed * 100)) if needed > 0 else 0,
    )


class XPLedger:
    """
    Accumulates XP for users and keeps their level normalized

    Every award is persisted on the user record (guarded by its version)
    and appended to the XP log.
    """

    def __init__(
        self,
        users: UserRepository,
        xp_logs: XPLogRepository,
        policy=None,
        display_policy=None,
        clock=now_utc,
    ):
        self.users = users
        self.xp_logs = xp_logs
        self.policy = policy or LinearLevelPolicy()
        self.display_policy = display_policy or ExponentialLevelPolicy()
        self.clock = clock

    async def get_user(self, user_id: str) -> User:
        user = await self.users.get(user_id)
        if user is None:
            raise RecordNotFoundError(
                message=f"User {user_id} not found",
                record_type="User",
                record_id=user_id,
            )
        return user

    def xp_for_next_level(self, level: int) -> int:
        return self.policy.xp_for_next_level(level)

    async def add_xp(
        self,
        user_id: str,
        amount: int,
        action: XPAction = XPAction.OTHER,
        award_id: Optional[str] = None,
    ) -> XPAwardResult:
        """
        Award XP to user and carry any overflow into level-ups

        Safe to call again with the same award_id after a failure: if the
        user record already carries that award, the points are not credited
        a second time and only a missing XP log entry is written.

        Args:
            user_id: Recipient
            amount: Positive number of points
            action: What earned the XP (recorded in the XP log)
            award_id: Identifies this award across retries (generated when omitted)

        Raises:
            ValidationError: amount is not a positive integer
            RecordNotFoundError: unknown user
            ConcurrentModificationError: user changed since it was read
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(
                message="XP award must be a positive integer",
                field="amount",
                value=amount,
                user_id=user_id,
                operation="add_xp",
            )

        action = XPAction(action)
        award_id = award_id or str(uuid4())
        user = await self.get_user(user_id)

        if user.last_award_id == award_id:
            old_level = user.last_award_level or user.level
            logger.info(f"Award {award_id} already credited to user {user_id}, not applying again")
        else:
            old_level = user.level
            new_level, new_xp, _ = apply_xp(user.level, user.xp, amount, self.policy)
            user.level = new_level
            user.xp = new_xp
            user.total_xp_earned += amount
            user.last_award_id = award_id
            user.last_award_level = old_level

            user = await self.users.update(user)
            logger.info(
                f"Awarded {amount} XP to user {user_id} for {action.value}. "
                f"Level: {user.level}, XP: {user.xp}/{self.xp_for_next_level(user.level)}"
            )

        await self._append_log(
            XPLog(id=award_id, user_id=user_id, action=action, points=amount, created_at=self.clock())
        )

        levels_gained = user.level - old_level
        if levels_gained:
            logger.info(f"User {user_id} leveled up from {old_level} to {user.level}!")

        return XPAwardResult(
            user_id=user_id,
            action=action,
            xp_awarded=amount,
            old_level=old_level,
            new_level=user.level,
            leveled_up=levels_gained > 0,
            levels_gained=levels_gained,
            xp=user.xp,
            xp_for_next_level=self.xp_for_next_level(user.level),
            total_xp_earned=user.total_xp_earned,
        )

    async def _append_log(self, log: XPLog) -> None:
        """Write the log entry for an award; an entry that already exists is kept"""
        try:
            await self.xp_logs.append(log)
        except DuplicateKeyError:
            logger.debug(f"XP log entry {log.id} already written")

    async def update_streak(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> StreakUpdateResult:
        """
        Daily check-in: advance the user's streak by calendar day

        - First check-in: streak 1
        - Already checked in today: unchanged
        - Last check-in yesterday: +1
        - Older: reset to 1

        last_check_in is always stamped with `now`.
        """
        now = now or self.clock()
        user = await self.get_user(user_id)

        previous = user.streak_days
        last_day: Optional[date] = to_day(user.last_check_in) if user.last_check_in else None
        today = to_day(now)

        user.streak_days = next_streak_value(previous, last_day, today)
        user.last_check_in = now
        user = await self.users.update(user)

        is_new_day = last_day is None or last_day < today
        if is_new_day:
            logger.info(f"User {user_id} checked in: streak {previous} → {user.streak_days}")
        else:
            logger.debug(f"User {user_id} already checked in today (streak {user.streak_days})")

        return StreakUpdateResult(
            user=user,
            previous_streak=previous,
            streak_days=user.streak_days,
            is_new_day=is_new_day,
        )

    async def get_level_info(self, user_id: str) -> LevelInfo:
        """Level, progress to next level and the display-only estimate"""
        user = await self.get_user(user_id)
        needed = self.xp_for_next_level(user.level)

        return LevelInfo(
            user_id=user_id,
            level=user.level,
            xp=user.xp,
            xp_for_next_level=needed,
            xp_progress=round(user.xp / needed * 100),
            total_xp_earned=user.total_xp_earned,
            streak_days=user.streak_days,
            last_check_in=user.last_check_in,
            display_estimate=estimate_display_progress(user.level, user.xp, self.display_policy),
        )

    async def get_xp_history(self, user_id: str, days: int = 7, limit: int = 50) -> List[XPLog]:
        """
        Recent XP log entries, newest first

        Args:
            days: Number of days of history to retrieve
            limit: Maximum number of entries
        """
        since = self.clock() - timedelta(days=days)
        return await self.xp_logs.list_for_user(user_id, since=since, limit=limit)
