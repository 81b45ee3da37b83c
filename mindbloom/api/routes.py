"""API routes for MindBloom"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from mindbloom import __version__
from mindbloom.api.auth import get_current_user_id
from mindbloom.api.middleware import limiter
from mindbloom.api.models import (
    ChallengeUpdateRequest,
    HabitCreateRequest,
    HealthCheckResponse,
    InviteRequest,
    JoinByCodeRequest,
    JoinChallengeRequest,
    JournalEntryUpdateRequest,
    ProfileUpdateRequest,
    ProgressUpdateRequest,
    RegisterUserRequest,
    TemplateRequest,
    TemplateUpdateRequest,
)
from mindbloom.gamification.achievement_system import AchievementStats, ProgressResult
from mindbloom.gamification.challenges import ChallengePage
from mindbloom.models.achievement import Achievement, AchievementTemplate
from mindbloom.models.challenge import Challenge, ChallengeDraft
from mindbloom.models.habit import Habit
from mindbloom.models.journal import JournalEntry, JournalEntryInput, MoodAverage, StreakInfo, TagCount
from mindbloom.models.user import User
from mindbloom.models.xp_log import XPLog
from mindbloom.services.container import ServiceContainer, get_container
from mindbloom.services.gamification_service import GamificationResult, UserStats
from mindbloom.services.journal_service import JournalPage
from mindbloom.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)

router = APIRouter()

API = "/api/v1"


def _visible(challenge: Challenge, user_id: str) -> Challenge:
    """Only the creator sees a private challenge's join code"""
    if challenge.join_code and challenge.creator_id != user_id:
        return challenge.model_copy(update={"join_code": None})
    return challenge


@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Health check endpoint"""
    return HealthCheckResponse(status="healthy", timestamp=now_utc(), version=__version__)


# ==========================================
# Users
# ==========================================

@router.post(f"{API}/users", response_model=GamificationResult, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def register_user(
    request: Request,
    payload: RegisterUserRequest,
    services: ServiceContainer = Depends(get_container),
):
    """Register a user and create their achievements"""
    return await services.gamification_service.register_user(
        payload.username, payload.email, payload.first_name, payload.last_name
    )


@router.get(f"{API}/users/me", response_model=User)
@limiter.limit("60/minute")
async def get_me(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.gamification_service.get_user(user_id)


@router.put(f"{API}/users/me", response_model=User)
@limiter.limit("20/minute")
async def update_me(
    request: Request,
    payload: ProfileUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Update first name, last name or avatar"""
    return await services.gamification_service.update_profile(user_id, payload.model_dump())


@router.get(f"{API}/users/me/stats", response_model=UserStats)
@limiter.limit("60/minute")
async def get_my_stats(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.gamification_service.get_user_stats(user_id)


@router.post(f"{API}/users/me/check-in", response_model=GamificationResult)
@limiter.limit("20/minute")
async def daily_check_in(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Daily check-in: streak, XP on the first check-in of a day"""
    return await services.gamification_service.daily_check_in(user_id)


@router.get(f"{API}/xp/history", response_model=List[XPLog])
@limiter.limit("60/minute")
async def get_xp_history(
    request: Request,
    days: int = Query(default=7, ge=1, le=365),
    limit: int = Query(default=50, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.ledger.get_xp_history(user_id, days=days, limit=limit)


# ==========================================
# Journal
# ==========================================

@router.post(f"{API}/journal", response_model=GamificationResult, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_journal_entry(
    request: Request,
    payload: JournalEntryInput,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Write a journal entry (awards XP and achievement progress)"""
    return await services.gamification_service.record_journal_entry(user_id, payload)


@router.get(f"{API}/journal", response_model=JournalPage)
@limiter.limit("60/minute")
async def list_journal_entries(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.journal_service.list_entries(user_id, limit=limit, skip=skip, start=start, end=end)


@router.get(f"{API}/journal/stats/mood", response_model=List[MoodAverage])
@limiter.limit("60/minute")
async def journal_mood_stats(
    request: Request,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Average mood per day; start and end are required"""
    return await services.journal_service.mood_averages_by_day(user_id, start, end)


@router.get(f"{API}/journal/stats/tags", response_model=List[TagCount])
@limiter.limit("60/minute")
async def journal_tag_stats(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.journal_service.most_used_tags(user_id, limit=limit)


@router.get(f"{API}/journal/stats/streak", response_model=StreakInfo)
@limiter.limit("60/minute")
async def journal_streak(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.journal_service.streak_info(user_id)


@router.get(f"{API}/journal/{{entry_id}}", response_model=JournalEntry)
@limiter.limit("60/minute")
async def get_journal_entry(
    request: Request,
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.journal_service.get_entry(user_id, entry_id)


@router.patch(f"{API}/journal/{{entry_id}}", response_model=JournalEntry)
@limiter.limit("30/minute")
async def update_journal_entry(
    request: Request,
    entry_id: str,
    payload: JournalEntryUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.journal_service.update_entry(
        user_id, entry_id, payload.model_dump(exclude_none=True)
    )


@router.delete(f"{API}/journal/{{entry_id}}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
async def delete_journal_entry(
    request: Request,
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    await services.journal_service.delete_entry(user_id, entry_id)


# ==========================================
# Achievements
# ==========================================

@router.get(f"{API}/achievements", response_model=List[Achievement])
@limiter.limit("60/minute")
async def list_achievements(
    request: Request,
    category: Optional[str] = None,
    completed: Optional[bool] = None,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.achievement_tracker.list_achievements(
        user_id, category=category, completed=completed
    )


@router.get(f"{API}/achievements/stats", response_model=AchievementStats)
@limiter.limit("60/minute")
async def achievement_stats(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.achievement_tracker.get_stats(user_id)


@router.get(f"{API}/achievements/recent", response_model=List[Achievement])
@limiter.limit("60/minute")
async def recent_achievements(
    request: Request,
    limit: int = Query(default=5, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.achievement_tracker.get_completed(user_id, limit=limit)


@router.get(f"{API}/achievements/in-progress", response_model=List[Achievement])
@limiter.limit("60/minute")
async def in_progress_achievements(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.achievement_tracker.get_in_progress(user_id)


@router.post(
    f"{API}/achievements/initialize",
    response_model=List[Achievement],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/minute")
async def initialize_achievements(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.gamification_service.initialize_achievements(user_id)


@router.get(f"{API}/achievements/templates", response_model=List[AchievementTemplate])
@limiter.limit("60/minute")
async def list_templates(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.achievement_tracker.list_templates()


@router.post(
    f"{API}/achievements/templates",
    response_model=AchievementTemplate,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("20/minute")
async def create_template(
    request: Request,
    payload: TemplateRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Admin only"""
    return await services.achievement_tracker.create_template(user_id, payload.model_dump())


@router.patch(f"{API}/achievements/templates/{{template_id}}", response_model=AchievementTemplate)
@limiter.limit("20/minute")
async def update_template(
    request: Request,
    template_id: str,
    payload: TemplateUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Admin only"""
    return await services.achievement_tracker.update_template(
        user_id, template_id, payload.model_dump(exclude_none=True)
    )


@router.delete(f"{API}/achievements/templates/{{template_id}}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
async def delete_template(
    request: Request,
    template_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Admin only"""
    await services.achievement_tracker.delete_template(user_id, template_id)


@router.get(f"{API}/achievements/{{achievement_id}}", response_model=Achievement)
@limiter.limit("60/minute")
async def get_achievement(
    request: Request,
    achievement_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.achievement_tracker.get_achievement(user_id, achievement_id)


@router.put(f"{API}/achievements/{{achievement_id}}/progress", response_model=ProgressResult)
@limiter.limit("30/minute")
async def update_achievement_progress(
    request: Request,
    achievement_id: str,
    payload: ProgressUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.gamification_service.update_achievement_progress(
        user_id, achievement_id, payload.delta
    )


# ==========================================
# Challenges
# ==========================================

@router.post(f"{API}/challenges", response_model=Challenge, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_challenge(
    request: Request,
    payload: ChallengeDraft,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.challenge_tracker.create_challenge(user_id, payload)


@router.get(f"{API}/challenges", response_model=ChallengePage)
@limiter.limit("60/minute")
async def list_public_challenges(
    request: Request,
    category: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(default=10, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Public, active challenges that have not ended, searchable by title or description"""
    page = await services.challenge_tracker.list_public_active(
        category=category, search=search, limit=limit, skip=skip
    )
    page.challenges = [_visible(c, user_id) for c in page.challenges]
    return page


@router.get(f"{API}/challenges/invited", response_model=List[Challenge])
@limiter.limit("60/minute")
async def list_invited_challenges(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Challenges the caller was invited to and has not joined yet"""
    challenges = await services.challenge_tracker.list_invited_for_user(user_id)
    return [_visible(c, user_id) for c in challenges]


@router.get(f"{API}/challenges/mine", response_model=List[Challenge])
@limiter.limit("60/minute")
async def list_my_challenges(
    request: Request,
    state: Optional[str] = Query(default=None, pattern="^(active|completed)$"),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    tracker = services.challenge_tracker
    if state == "active":
        challenges = await tracker.list_active_for_user(user_id)
    elif state == "completed":
        challenges = await tracker.list_completed_for_user(user_id)
    else:
        challenges = await tracker.list_for_user(user_id)
    return [_visible(c, user_id) for c in challenges]


@router.post(f"{API}/challenges/join", response_model=GamificationResult)
@limiter.limit("20/minute")
async def join_challenge_by_code(
    request: Request,
    payload: JoinByCodeRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Join a private challenge by its join code"""
    return await services.gamification_service.join_challenge_by_code(payload.join_code, user_id)


@router.get(f"{API}/challenges/{{challenge_id}}", response_model=Challenge)
@limiter.limit("60/minute")
async def get_challenge(
    request: Request,
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    challenge = await services.challenge_tracker.get_challenge(challenge_id)
    return _visible(challenge, user_id)


@router.patch(f"{API}/challenges/{{challenge_id}}", response_model=Challenge)
@limiter.limit("20/minute")
async def update_challenge(
    request: Request,
    challenge_id: str,
    payload: ChallengeUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Creator only, before the challenge starts"""
    return await services.challenge_tracker.update_challenge(
        challenge_id, user_id, payload.model_dump(exclude_none=True)
    )


@router.delete(f"{API}/challenges/{{challenge_id}}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
async def delete_challenge(
    request: Request,
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    await services.challenge_tracker.delete_challenge(challenge_id, user_id)


@router.post(f"{API}/challenges/{{challenge_id}}/join", response_model=GamificationResult)
@limiter.limit("20/minute")
async def join_challenge(
    request: Request,
    challenge_id: str,
    payload: Optional[JoinChallengeRequest] = None,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    join_code = payload.join_code if payload else None
    return await services.gamification_service.join_challenge(challenge_id, user_id, join_code)


@router.post(f"{API}/challenges/{{challenge_id}}/invite", response_model=Challenge)
@limiter.limit("20/minute")
async def invite_to_challenge(
    request: Request,
    challenge_id: str,
    payload: InviteRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    """Creator only; invited users join without the join code"""
    return await services.challenge_tracker.invite(challenge_id, user_id, payload.user_ids)


@router.post(f"{API}/challenges/{{challenge_id}}/leave", response_model=Challenge)
@limiter.limit("20/minute")
async def leave_challenge(
    request: Request,
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    challenge = await services.challenge_tracker.leave(challenge_id, user_id)
    return _visible(challenge, user_id)


@router.post(f"{API}/challenges/{{challenge_id}}/check-in", response_model=GamificationResult)
@limiter.limit("20/minute")
async def challenge_check_in(
    request: Request,
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.gamification_service.challenge_check_in(challenge_id, user_id)


@router.post(
    f"{API}/challenges/{{challenge_id}}/tasks/{{task_id}}/complete",
    response_model=GamificationResult,
)
@limiter.limit("30/minute")
async def complete_challenge_task(
    request: Request,
    challenge_id: str,
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.gamification_service.complete_challenge_task(challenge_id, user_id, task_id)


# ==========================================
# Habits
# ==========================================

@router.get(f"{API}/habits", response_model=List[Habit])
@limiter.limit("60/minute")
async def list_habits(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.habit_tracker.list_habits(user_id)


@router.post(f"{API}/habits", response_model=Habit, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_habit(
    request: Request,
    payload: HabitCreateRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.habit_tracker.create_habit(user_id, payload.name, payload.description)


@router.post(f"{API}/habits/{{habit_id}}/complete", response_model=GamificationResult)
@limiter.limit("30/minute")
async def complete_habit(
    request: Request,
    habit_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    return await services.gamification_service.complete_habit(user_id, habit_id)


@router.delete(f"{API}/habits/{{habit_id}}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
async def delete_habit(
    request: Request,
    habit_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_container),
):
    await services.habit_tracker.delete_habit(user_id, habit_id)
