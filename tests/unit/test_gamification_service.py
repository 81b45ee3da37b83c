"""Unit tests for GamificationService (mindbloom/services/gamification_service.py)"""
import asyncio
import pytest
from datetime import datetime, timedelta

from mindbloom.config import CHECK_IN_XP, HABIT_XP, JOURNAL_XP, TASK_BONUS_XP
from mindbloom.exceptions import (
    CapacityError,
    ConcurrentModificationError,
    ConflictError,
    ConnectionError,
    PersistenceTimeoutError,
    RecordNotFoundError,
    ValidationError,
)
from mindbloom.gamification.achievement_system import (
    CHALLENGE_ACCEPTED,
    CHALLENGE_CONQUEROR,
    CONSISTENCY_CHAMPION,
    DEFAULT_ACHIEVEMENT_TEMPLATES,
    GRATITUDE_GURU,
    HABIT_BUILDER,
    JOURNALING_NOVICE,
)
from mindbloom.models.challenge import ChallengeDraft, ChallengeTask
from mindbloom.models.user import User
from mindbloom.utils.datetime_helpers import UTC


TODAY = datetime(2024, 3, 10, 0, 0, tzinfo=UTC)


async def _register(service, username):
    result = await service.register_user(username, f"{username}@example.com")
    return result.user


async def _progress(container, user_id, title):
    for achievement in await container.achievement_tracker.list_achievements(user_id):
        if achievement.title == title:
            return achievement
    raise AssertionError(f"{title} missing")


def _draft(days=7, **overrides) -> ChallengeDraft:
    data = {
        "title": "Gratitude Week",
        "description": "Write one thing you are thankful for every day",
        "start_date": TODAY,
        "end_date": TODAY + timedelta(days=days),
        "tasks": [
            ChallengeTask(id="t1", name="Morning note", points=15),
            ChallengeTask(id="t2", name="Evening note", points=10),
        ],
        "xp_reward": 200,
    }
    data.update(overrides)
    return ChallengeDraft(**data)


@pytest.fixture
async def alice(gamification_service):
    return await _register(gamification_service, "alice")


@pytest.fixture
async def bobby(gamification_service):
    return await _register(gamification_service, "bobby")


# ============================================================================
# Registration
# ============================================================================

@pytest.mark.asyncio
async def test_register_user_initializes_achievements(gamification_service, container):
    result = await gamification_service.register_user("alice", "alice@example.com", first_name="Alice")

    assert result.action == "register_user"
    assert result.user.level == 1
    assert result.user.first_name == "Alice"
    assert len(result.achievements) == len(DEFAULT_ACHIEVEMENT_TEMPLATES)
    assert await container.repositories.achievements.count_for_user(result.user.id) == len(
        DEFAULT_ACHIEVEMENT_TEMPLATES
    )


@pytest.mark.asyncio
async def test_register_duplicate_username_conflicts(gamification_service, alice):
    with pytest.raises(ConflictError):
        await gamification_service.register_user("alice", "other@example.com")


@pytest.mark.asyncio
async def test_register_duplicate_email_conflicts(gamification_service, alice):
    with pytest.raises(ConflictError):
        await gamification_service.register_user("alice2", "alice@example.com")


@pytest.mark.asyncio
async def test_register_short_username_rejected(gamification_service):
    with pytest.raises(ValidationError):
        await gamification_service.register_user("al", "al@example.com")


# ============================================================================
# Direct XP
# ============================================================================

@pytest.mark.asyncio
async def test_award_xp_level_up_example(gamification_service, alice):
    """Level 1 with 90 XP gains 30 -> level 2 with 20 XP"""
    await gamification_service.award_xp(alice.id, 90)
    result = await gamification_service.award_xp(alice.id, 30)

    user = await gamification_service.get_user(alice.id)

    assert result.leveled_up is True
    assert result.new_level == 2
    assert (user.level, user.xp) == (2, 20)


@pytest.mark.asyncio
async def test_concurrent_awards_are_not_lost(gamification_service, alice):
    await asyncio.gather(*(gamification_service.award_xp(alice.id, 10) for _ in range(12)))

    user = await gamification_service.get_user(alice.id)

    assert user.total_xp_earned == 120
    assert (user.level, user.xp) == (2, 20)


@pytest.mark.asyncio
async def test_award_retries_version_conflict(gamification_service, container, alice, monkeypatch):
    users = container.repositories.users
    original_update = users.update
    calls = {"count": 0}

    async def flaky_update(user):
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConcurrentModificationError(
                message="stale write", record_type="User", record_id=user.id
            )
        return await original_update(user)

    monkeypatch.setattr(users, "update", flaky_update)

    result = await gamification_service.award_xp(alice.id, 40)
    user = await gamification_service.get_user(alice.id)

    assert result.xp_awarded == 40
    assert calls["count"] == 2
    assert user.xp == 40


@pytest.fixture
def no_backoff(monkeypatch):
    """Skip real retry delays"""
    async def instant(_delay):
        return None

    monkeypatch.setattr("mindbloom.resilience.retry.asyncio.sleep", instant)


@pytest.mark.asyncio
async def test_award_not_credited_twice_when_log_write_fails(
    gamification_service, container, alice, monkeypatch, no_backoff
):
    """The user record is saved, the XP log write fails once, the step is retried"""
    xp_logs = container.repositories.xp_logs
    original_append = xp_logs.append
    calls = {"count": 0}

    async def failing_append(log):
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConnectionError()
        return await original_append(log)

    monkeypatch.setattr(xp_logs, "append", failing_append)

    result = await gamification_service.award_xp(alice.id, 50)
    user = await gamification_service.get_user(alice.id)
    logs = await xp_logs.list_for_user(alice.id)

    assert result.xp_awarded == 50
    assert result.leveled_up is False
    assert (user.level, user.xp, user.total_xp_earned) == (1, 50, 50)
    assert [log.points for log in logs] == [50]


@pytest.mark.asyncio
async def test_award_not_credited_twice_when_save_times_out_after_commit(
    gamification_service, container, alice, monkeypatch, no_backoff
):
    users = container.repositories.users
    original_update = users.update
    calls = {"count": 0}

    async def late_update(user):
        calls["count"] += 1
        saved = await original_update(user)
        if calls["count"] == 1:
            raise PersistenceTimeoutError(operation="update_user")
        return saved

    monkeypatch.setattr(users, "update", late_update)

    result = await gamification_service.award_xp(alice.id, 130)
    user = await gamification_service.get_user(alice.id)

    assert calls["count"] == 1
    assert (result.old_level, result.new_level, result.leveled_up) == (1, 2, True)
    assert (user.level, user.xp, user.total_xp_earned) == (2, 30, 130)
    assert len(await container.repositories.xp_logs.list_for_user(alice.id)) == 1


# ============================================================================
# Users & Achievements
# ============================================================================

@pytest.mark.asyncio
async def test_update_profile(gamification_service, alice):
    user = await gamification_service.update_profile(
        alice.id, {"first_name": "Alice", "last_name": "", "avatar": None, "is_admin": True}
    )

    assert user.first_name == "Alice"
    assert user.last_name is None
    assert user.avatar == "default-avatar.png"
    assert user.is_admin is False
    assert (await gamification_service.get_user(alice.id)).first_name == "Alice"


@pytest.mark.asyncio
async def test_concurrent_initialize_creates_one_set(gamification_service, container, monkeypatch):
    user = await container.repositories.users.create(User(username="carol", email="carol@example.com"))
    achievements = container.repositories.achievements
    original_count = achievements.count_for_user

    async def slow_count(user_id):
        count = await original_count(user_id)
        await asyncio.sleep(0)
        return count

    monkeypatch.setattr(achievements, "count_for_user", slow_count)

    results = await asyncio.gather(
        gamification_service.initialize_achievements(user.id),
        gamification_service.initialize_achievements(user.id),
        return_exceptions=True,
    )

    created = [r for r in results if isinstance(r, list)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 1
    assert await achievements.count_for_user(user.id) == len(DEFAULT_ACHIEVEMENT_TEMPLATES)


@pytest.mark.asyncio
async def test_update_achievement_progress_pays_reward(gamification_service, container, alice):
    accepted = await _progress(container, alice.id, CHALLENGE_ACCEPTED)

    result = await gamification_service.update_achievement_progress(alice.id, accepted.id, 1)

    assert result.completed_now is True
    assert result.achievement.reward_paid is True
    assert result.xp_result.xp_awarded == accepted.xp_reward


# ============================================================================
# Journal Entries
# ============================================================================

@pytest.mark.asyncio
async def test_journal_entry_awards_xp_and_progress(gamification_service, container, alice):
    result = await gamification_service.record_journal_entry(
        alice.id,
        {"mood": 7, "content": "Good day", "gratitude": ["sunshine", "coffee"]},
    )

    assert result.action == "record_journal_entry"
    assert result.xp_awarded == JOURNAL_XP
    assert result.entry.mood == 7
    assert result.streak_info.current_streak == 1
    assert (await _progress(container, alice.id, JOURNALING_NOVICE)).current_value == 1
    assert (await _progress(container, alice.id, GRATITUDE_GURU)).current_value == 2


@pytest.mark.asyncio
async def test_journal_entry_without_gratitude_skips_guru(gamification_service, container, alice):
    await gamification_service.record_journal_entry(alice.id, {"mood": 5, "content": "Quiet day"})

    assert (await _progress(container, alice.id, GRATITUDE_GURU)).current_value == 0


@pytest.mark.asyncio
async def test_tenth_entry_completes_journaling_novice(gamification_service, alice):
    for _ in range(9):
        await gamification_service.record_journal_entry(alice.id, {"mood": 6, "content": "Entry"})

    result = await gamification_service.record_journal_entry(alice.id, {"mood": 6, "content": "Entry"})
    user = await gamification_service.get_user(alice.id)

    assert [a.title for a in result.achievements_completed] == [JOURNALING_NOVICE]
    assert result.xp_awarded == JOURNAL_XP + 100
    assert result.leveled_up is True
    assert result.new_level == 3
    assert user.total_xp_earned == 10 * JOURNAL_XP + 100


@pytest.mark.asyncio
async def test_invalid_journal_entry_has_no_side_effects(gamification_service, container, alice):
    with pytest.raises(ValidationError):
        await gamification_service.record_journal_entry(alice.id, {"mood": 12, "content": "Too happy"})

    user = await gamification_service.get_user(alice.id)
    assert user.total_xp_earned == 0
    assert await container.journal_service.count_entries(alice.id) == 0


@pytest.mark.asyncio
async def test_journal_entry_for_unknown_user(gamification_service, container):
    with pytest.raises(RecordNotFoundError):
        await gamification_service.record_journal_entry("ghost", {"mood": 5, "content": "Boo"})

    assert await container.journal_service.count_entries("ghost") == 0


# ============================================================================
# Daily Check-in
# ============================================================================

@pytest.mark.asyncio
async def test_daily_check_in_rewards_once_per_day(gamification_service, container, alice, clock):
    first = await gamification_service.daily_check_in(alice.id)
    clock.advance(hours=3)
    second = await gamification_service.daily_check_in(alice.id)

    assert (first.streak_days, first.is_new_day, first.xp_awarded) == (1, True, CHECK_IN_XP)
    assert (second.streak_days, second.is_new_day, second.xp_awarded) == (1, False, 0)
    assert (await _progress(container, alice.id, CONSISTENCY_CHAMPION)).current_value == 1


@pytest.mark.asyncio
async def test_daily_check_in_builds_streak(gamification_service, alice, clock):
    for _ in range(3):
        result = await gamification_service.daily_check_in(alice.id)
        clock.advance(days=1)

    assert result.streak_days == 3
    assert result.user.streak_days == 3


# ============================================================================
# Challenges
# ============================================================================

@pytest.mark.asyncio
async def test_join_challenge_completes_challenge_accepted(gamification_service, container, alice, bobby):
    challenge = await container.challenge_tracker.create_challenge(bobby.id, _draft())

    result = await gamification_service.join_challenge(challenge.id, alice.id)

    assert result.participant.user_id == alice.id
    assert [a.title for a in result.achievements_completed] == [CHALLENGE_ACCEPTED]
    assert result.xp_awarded == 100


@pytest.mark.asyncio
async def test_join_private_challenge_by_code(gamification_service, container, alice, bobby):
    challenge = await container.challenge_tracker.create_challenge(bobby.id, _draft(is_private=True))

    result = await gamification_service.join_challenge_by_code(challenge.join_code.lower(), alice.id)

    assert result.challenge.id == challenge.id
    assert len(result.challenge.participants) == 2


@pytest.mark.asyncio
async def test_achievement_reward_paid_when_award_fails_after_completion(
    gamification_service, container, alice, bobby, monkeypatch, no_backoff
):
    """Every award attempt of the first advance fails; the retried advance still pays"""
    challenge = await container.challenge_tracker.create_challenge(bobby.id, _draft())
    ledger = container.ledger
    original_add_xp = ledger.add_xp
    calls = {"count": 0}

    async def failing_add_xp(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] <= 4:
            raise ConnectionError()
        return await original_add_xp(*args, **kwargs)

    monkeypatch.setattr(ledger, "add_xp", failing_add_xp)

    result = await gamification_service.join_challenge(challenge.id, alice.id)
    user = await gamification_service.get_user(alice.id)
    accepted = await _progress(container, alice.id, CHALLENGE_ACCEPTED)

    assert [a.title for a in result.achievements_completed] == [CHALLENGE_ACCEPTED]
    assert result.xp_awarded == 100
    assert user.total_xp_earned == 100
    assert accepted.is_completed is True
    assert accepted.reward_paid is True

@pytest.mark.asyncio
async def test_capacity_example(gamification_service, container, alice, bobby):
    """max_participants 2: creator + one joiner fills it, the next join fails"""
    carol = await _register(gamification_service, "carol")
    challenge = await container.challenge_tracker.create_challenge(
        bobby.id, _draft(max_participants=2)
    )

    await gamification_service.join_challenge(challenge.id, alice.id)

    with pytest.raises(CapacityError):
        await gamification_service.join_challenge(challenge.id, carol.id)

    stored = await container.challenge_tracker.get_challenge(challenge.id)
    assert len(stored.participants) == 2
    assert (await _progress(container, carol.id, CHALLENGE_ACCEPTED)).current_value == 0


@pytest.mark.asyncio
async def test_challenge_check_in_pays_reward_on_completion(gamification_service, container, alice, bobby):
    challenge = await container.challenge_tracker.create_challenge(bobby.id, _draft(days=1))
    await gamification_service.join_challenge(challenge.id, alice.id)

    result = await gamification_service.challenge_check_in(challenge.id, alice.id)

    assert result.completed_challenge is True
    assert result.participant.progress == 100
    assert result.xp_awarded == 200
    assert (await _progress(container, alice.id, CHALLENGE_CONQUEROR)).current_value == 1


@pytest.mark.asyncio
async def test_challenge_check_in_partial_progress(gamification_service, container, alice, bobby):
    challenge = await container.challenge_tracker.create_challenge(bobby.id, _draft(days=7))
    await gamification_service.join_challenge(challenge.id, alice.id)

    result = await gamification_service.challenge_check_in(challenge.id, alice.id)

    assert result.completed_challenge is False
    assert result.participant.progress == 14
    assert result.xp_awarded == 0


@pytest.mark.asyncio
async def test_challenge_check_in_twice_same_day(gamification_service, container, alice, bobby):
    challenge = await container.challenge_tracker.create_challenge(bobby.id, _draft())
    await gamification_service.join_challenge(challenge.id, alice.id)
    await gamification_service.challenge_check_in(challenge.id, alice.id)

    with pytest.raises(ConflictError):
        await gamification_service.challenge_check_in(challenge.id, alice.id)


@pytest.mark.asyncio
async def test_complete_tasks_awards_points_and_bonus(gamification_service, container, alice, bobby):
    challenge = await container.challenge_tracker.create_challenge(bobby.id, _draft())
    await gamification_service.join_challenge(challenge.id, alice.id)

    first = await gamification_service.complete_challenge_task(challenge.id, alice.id, "t1")
    repeat = await gamification_service.complete_challenge_task(challenge.id, alice.id, "t1")
    last = await gamification_service.complete_challenge_task(challenge.id, alice.id, "t2")

    assert (first.xp_awarded, first.all_tasks_completed) == (15, False)
    assert repeat.xp_awarded == 0
    assert last.all_tasks_completed is True
    assert last.xp_awarded == 10 + TASK_BONUS_XP
    assert (await _progress(container, alice.id, CHALLENGE_CONQUEROR)).current_value == 1


@pytest.mark.asyncio
async def test_task_completion_requires_participation(gamification_service, container, alice, bobby):
    challenge = await container.challenge_tracker.create_challenge(bobby.id, _draft())

    with pytest.raises(ConflictError):
        await gamification_service.complete_challenge_task(challenge.id, alice.id, "t1")


# ============================================================================
# Habits
# ============================================================================

@pytest.mark.asyncio
async def test_complete_habit_rewards_once_per_day(gamification_service, container, alice, clock):
    habit = await container.habit_tracker.create_habit(alice.id, "Drink water")

    first = await gamification_service.complete_habit(alice.id, habit.id)
    again = await gamification_service.complete_habit(alice.id, habit.id)
    clock.advance(days=1)
    next_day = await gamification_service.complete_habit(alice.id, habit.id)

    assert (first.xp_awarded, first.streak_days) == (HABIT_XP, 1)
    assert (again.xp_awarded, again.is_new_day) == (0, False)
    assert (next_day.xp_awarded, next_day.streak_days) == (HABIT_XP, 2)
    assert (await _progress(container, alice.id, HABIT_BUILDER)).current_value == 2


# ============================================================================
# Stats
# ============================================================================

@pytest.mark.asyncio
async def test_get_user_stats(gamification_service, alice):
    await gamification_service.record_journal_entry(alice.id, {"mood": 8, "content": "Nice"})
    await gamification_service.daily_check_in(alice.id)

    stats = await gamification_service.get_user_stats(alice.id)

    assert stats.level.total_xp_earned == JOURNAL_XP + CHECK_IN_XP
    assert stats.journal_entries == 1
    assert stats.journal_streak.current_streak == 1
    assert stats.achievements.total_achievements == len(DEFAULT_ACHIEVEMENT_TEMPLATES)
