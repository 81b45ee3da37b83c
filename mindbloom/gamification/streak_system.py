"""
Streak Calculation

One canonical algorithm for every streak in MindBloom (journal streaks,
daily check-ins, habit streaks): activity is bucketed by calendar day and
a streak is a run of consecutive days. Time-of-day never matters.

Features:
- Current and longest streak from a full activity history
- Incremental step for counters that only remember the last active day
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union
import logging

from mindbloom.db.repositories import JournalRepository
from mindbloom.models.journal import StreakInfo
from mindbloom.utils.datetime_helpers import now_utc, to_day

logger = logging.getLogger(__name__)


def calculate_streak(
    activity_dates: Iterable[Union[datetime, date]],
    today: date,
) -> StreakInfo:
    """
    Compute current and longest streak from activity timestamps

    Logic:
    - Normalize to calendar days, drop duplicates, sort ascending
    - A day extends the running streak only if it is exactly one day after
      the previous active day; any gap restarts the run at 1
    - The run ending at the last active day is "current" only while it is
      still alive: the last active day is today or yesterday
    - Longest streak is kept even when the current one is broken

    Example:
        days 1, 2, 3, 5, 6 with today = day 6 -> current 2, longest 3
    """
    days = sorted({to_day(d) for d in activity_dates if to_day(d) <= today})

    if not days:
        return StreakInfo(current_streak=0, longest_streak=0, last_entry_date=None)

    longest = 1
    run = 1
    for previous, day in zip(days, days[1:]):
        if day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    last_day = days[-1]
    if last_day >= today - timedelta(days=1):
        current = run
    else:
        current = 0

    return StreakInfo(
        current_streak=current,
        longest_streak=longest,
        last_entry_date=last_day,
    )


def next_streak_value(
    current_streak: int,
    last_active_day: Optional[date],
    today: date,
) -> int:
    """
    Advance a stored streak counter for activity on `today`

    - No previous activity: 1
    - Already active today: unchanged
    - Active yesterday: +1
    - Anything older: restart at 1
    """
    if last_active_day is None:
        return 1

    gap = (today - last_active_day).days

    if gap <= 0:
        # Same day (or a clock that went backwards); nothing to count
        return max(current_streak, 1)
    if gap == 1:
        return current_streak + 1
    return 1


class StreakCalculator:
    """Journal streaks for a single user"""

    def __init__(self, journal: JournalRepository, clock=now_utc):
        self.journal = journal
        self.clock = clock

    async def get_streak_info(self, user_id: str, today: Optional[date] = None) -> StreakInfo:
        """
        Current and longest journaling streak

        Args:
            user_id: Owner of the journal entries
            today: Reference day (defaults to the clock's calendar day)
        """
        if today is None:
            today = to_day(self.clock())

        dates = await self.journal.list_dates(user_id)
        info = calculate_streak(dates, today)

        logger.debug(
            f"Streak for user {user_id}: current={info.current_streak}, "
            f"longest={info.longest_streak}, last={info.last_entry_date}"
        )
        return info
