"""Unit tests for Challenge System (mindbloom/gamification/challenges.py)"""
import pytest
from datetime import datetime, timedelta

from pydantic import ValidationError as PydanticValidationError

from mindbloom.exceptions import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    DuplicateKeyError,
    RecordNotFoundError,
    ValidationError,
)
from mindbloom.gamification.challenges import (
    JOIN_CODE_ALPHABET,
    compute_progress,
    generate_join_code,
    is_completed_by_user,
    total_challenge_days,
)
from mindbloom.models.challenge import ChallengeDraft, ChallengeTask
from mindbloom.utils.datetime_helpers import UTC


START = datetime(2024, 3, 10, 0, 0, tzinfo=UTC)


def make_draft(**overrides) -> ChallengeDraft:
    data = {
        "title": "Mindful March",
        "description": "Meditate every day for a week",
        "category": "Meditation",
        "start_date": START,
        "end_date": START + timedelta(days=7),
        "tasks": [
            ChallengeTask(id="t1", name="Morning sit", points=15),
            ChallengeTask(id="t2", name="Evening reflection", points=10),
        ],
        "xp_reward": 200,
    }
    data.update(overrides)
    return ChallengeDraft(**data)


# ============================================================================
# Helpers
# ============================================================================

def test_total_challenge_days_rounds_up():
    assert total_challenge_days(START, START + timedelta(days=7)) == 7
    assert total_challenge_days(START, START + timedelta(days=7, hours=6)) == 8
    assert total_challenge_days(START, START + timedelta(hours=2)) == 1


def test_compute_progress():
    assert compute_progress(0, 7) == 0
    assert compute_progress(3, 7) == 43
    assert compute_progress(7, 7) == 100
    assert compute_progress(9, 7) == 100


def test_generate_join_code_format():
    code = generate_join_code()

    assert len(code) == 8
    assert all(ch in JOIN_CODE_ALPHABET for ch in code)


def test_draft_rejects_end_before_start():
    with pytest.raises(PydanticValidationError):
        make_draft(end_date=START - timedelta(days=1))


def test_draft_rejects_duplicate_task_ids():
    with pytest.raises(PydanticValidationError):
        make_draft(tasks=[ChallengeTask(id="x", name="a"), ChallengeTask(id="x", name="b")])


# ============================================================================
# Creation
# ============================================================================

@pytest.mark.asyncio
async def test_create_adds_creator_as_participant(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    assert challenge.duration == 7
    assert len(challenge.participants) == 1
    creator = challenge.participants[0]
    assert creator.user_id == "user-1"
    assert creator.is_creator is True
    assert creator.progress == 0
    assert [p.task_id for p in creator.task_progress] == ["t1", "t2"]
    assert challenge.join_code is None


@pytest.mark.asyncio
async def test_private_challenge_gets_join_code(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))

    assert challenge.join_code is not None
    assert len(challenge.join_code) == 8


@pytest.mark.asyncio
async def test_join_code_collision_is_regenerated(challenge_tracker, store, monkeypatch):
    first = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))

    codes = iter([first.join_code, "NEWCODE1"])
    monkeypatch.setattr(
        "mindbloom.gamification.challenges.generate_join_code", lambda: next(codes)
    )

    second = await challenge_tracker.create_challenge("user-2", make_draft(is_private=True))

    assert second.join_code == "NEWCODE1"


@pytest.mark.asyncio
async def test_join_code_attempts_exhausted(challenge_tracker, monkeypatch):
    first = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))
    monkeypatch.setattr(
        "mindbloom.gamification.challenges.generate_join_code", lambda: first.join_code
    )

    with pytest.raises(ConflictError):
        await challenge_tracker.create_challenge("user-2", make_draft(is_private=True))


@pytest.mark.asyncio
async def test_repository_rejects_duplicate_join_code(store, challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))
    clone = challenge.model_copy(update={"id": "other"})

    with pytest.raises(DuplicateKeyError):
        await store.challenges.create(clone)


# ============================================================================
# Joining & Leaving
# ============================================================================

@pytest.mark.asyncio
async def test_add_participant(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    updated = await challenge_tracker.add_participant(challenge.id, "user-2")
    participant = updated.get_participant("user-2")

    assert participant.is_creator is False
    assert participant.progress == 0
    assert not participant.all_tasks_completed()
    assert len(participant.task_progress) == 2


@pytest.mark.asyncio
async def test_add_participant_unknown_challenge(challenge_tracker):
    with pytest.raises(RecordNotFoundError):
        await challenge_tracker.add_participant("missing", "user-2")


@pytest.mark.asyncio
async def test_add_participant_twice_conflicts(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(ConflictError):
        await challenge_tracker.add_participant(challenge.id, "user-1")


@pytest.mark.asyncio
async def test_private_challenge_requires_matching_code(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))

    with pytest.raises(AuthorizationError):
        await challenge_tracker.add_participant(challenge.id, "user-2")
    with pytest.raises(AuthorizationError):
        await challenge_tracker.add_participant(challenge.id, "user-2", "WRONG123")

    updated = await challenge_tracker.add_participant(challenge.id, "user-2", challenge.join_code)
    assert updated.get_participant("user-2") is not None


@pytest.mark.asyncio
async def test_private_join_code_is_case_and_space_insensitive(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))

    updated = await challenge_tracker.add_participant(
        challenge.id, "user-2", f"  {challenge.join_code.lower()} "
    )

    assert updated.get_participant("user-2") is not None


@pytest.mark.asyncio
async def test_invited_user_joins_private_challenge_without_code(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))
    invited = await challenge_tracker.invite(challenge.id, "user-1", ["user-2"])

    assert invited.invited_user_ids == ["user-2"]

    updated = await challenge_tracker.add_participant(challenge.id, "user-2")
    assert updated.get_participant("user-2") is not None

    with pytest.raises(AuthorizationError):
        await challenge_tracker.add_participant(challenge.id, "user-3")


@pytest.mark.asyncio
async def test_invite_by_non_creator(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))

    with pytest.raises(AuthorizationError):
        await challenge_tracker.invite(challenge.id, "user-2", ["user-3"])

    stored = await challenge_tracker.get_challenge(challenge.id)
    assert stored.invited_user_ids == []


@pytest.mark.asyncio
async def test_invite_requires_user_ids(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(ValidationError):
        await challenge_tracker.invite(challenge.id, "user-1", [" ", ""])


@pytest.mark.asyncio
async def test_invite_skips_participants_and_repeat_invites(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())
    await challenge_tracker.add_participant(challenge.id, "user-2")
    await challenge_tracker.invite(challenge.id, "user-1", ["user-3"])

    updated = await challenge_tracker.invite(
        challenge.id, "user-1", ["user-1", "user-2", "user-3", " user-4 "]
    )

    assert updated.invited_user_ids == ["user-3", "user-4"]


@pytest.mark.asyncio
async def test_capacity_limit(challenge_tracker):
    """max_participants=2 with 2 present -> CapacityError, count unchanged"""
    challenge = await challenge_tracker.create_challenge("user-1", make_draft(max_participants=2))
    await challenge_tracker.add_participant(challenge.id, "user-2")

    with pytest.raises(CapacityError) as exc_info:
        await challenge_tracker.add_participant(challenge.id, "user-3")

    assert isinstance(exc_info.value, ConflictError)
    stored = await challenge_tracker.get_challenge(challenge.id)
    assert len(stored.participants) == 2


@pytest.mark.asyncio
async def test_join_by_code(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft(is_private=True))

    updated = await challenge_tracker.join_by_code(challenge.join_code.lower(), "user-2")

    assert updated.id == challenge.id
    assert updated.get_participant("user-2") is not None


@pytest.mark.asyncio
async def test_join_by_unknown_code(challenge_tracker):
    with pytest.raises(RecordNotFoundError):
        await challenge_tracker.join_by_code("NOPE0000", "user-2")


@pytest.mark.asyncio
async def test_leave(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())
    await challenge_tracker.add_participant(challenge.id, "user-2")

    updated = await challenge_tracker.leave(challenge.id, "user-2")

    assert updated.get_participant("user-2") is None


@pytest.mark.asyncio
async def test_creator_cannot_leave(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(ConflictError):
        await challenge_tracker.leave(challenge.id, "user-1")


@pytest.mark.asyncio
async def test_leave_when_not_participating(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(ConflictError):
        await challenge_tracker.leave(challenge.id, "user-9")


# ============================================================================
# Check-ins
# ============================================================================

@pytest.mark.asyncio
async def test_check_in_updates_progress(challenge_tracker, clock):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    result = await challenge_tracker.check_in(challenge.id, "user-1")

    assert result.participant.completed_days == [clock().date()]
    assert result.participant.last_check_in == clock()
    assert result.participant.progress == 14
    assert result.completed_challenge is False


@pytest.mark.asyncio
async def test_second_check_in_same_day_conflicts(challenge_tracker, clock):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())
    await challenge_tracker.check_in(challenge.id, "user-1")
    clock.advance(hours=8)

    with pytest.raises(ConflictError):
        await challenge_tracker.check_in(challenge.id, "user-1")

    stored = await challenge_tracker.get_challenge(challenge.id)
    assert len(stored.get_participant("user-1").completed_days) == 1


@pytest.mark.asyncio
async def test_check_in_not_participant(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(ConflictError):
        await challenge_tracker.check_in(challenge.id, "user-9")


@pytest.mark.asyncio
async def test_check_in_reports_threshold_crossing_once(challenge_tracker, clock):
    """7-day challenge with threshold 50: the 4th check-in crosses (57%)"""
    challenge = await challenge_tracker.create_challenge(
        "user-1", make_draft(completion_threshold=50)
    )

    crossings = []
    for _ in range(6):
        result = await challenge_tracker.check_in(challenge.id, "user-1")
        crossings.append(result.completed_challenge)
        clock.advance(days=1)

    assert crossings == [False, False, False, True, False, False]
    stored = await challenge_tracker.get_challenge(challenge.id)
    assert is_completed_by_user(stored, "user-1")
    assert not is_completed_by_user(stored, "user-9")


# ============================================================================
# Tasks
# ============================================================================

@pytest.mark.asyncio
async def test_complete_task(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    result = await challenge_tracker.complete_task(challenge.id, "user-1", "t1")

    assert result.newly_completed is True
    assert result.points == 15
    assert result.all_tasks_completed is False


@pytest.mark.asyncio
async def test_complete_all_tasks(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())
    await challenge_tracker.complete_task(challenge.id, "user-1", "t1")

    result = await challenge_tracker.complete_task(challenge.id, "user-1", "t2")

    assert result.all_tasks_completed is True


@pytest.mark.asyncio
async def test_complete_task_twice_is_noop(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())
    first = await challenge_tracker.complete_task(challenge.id, "user-1", "t1")

    second = await challenge_tracker.complete_task(challenge.id, "user-1", "t1")

    assert second.newly_completed is False
    assert second.points == 0
    assert second.challenge.version == first.challenge.version


@pytest.mark.asyncio
async def test_complete_unknown_task(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(RecordNotFoundError):
        await challenge_tracker.complete_task(challenge.id, "user-1", "nope")


@pytest.mark.asyncio
async def test_complete_task_not_participant(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(ConflictError):
        await challenge_tracker.complete_task(challenge.id, "user-9", "t1")


# ============================================================================
# Update & Delete
# ============================================================================

@pytest.mark.asyncio
async def test_update_before_start(challenge_tracker, clock):
    future = clock() + timedelta(days=2)
    challenge = await challenge_tracker.create_challenge(
        "user-1", make_draft(start_date=future, end_date=future + timedelta(days=5))
    )

    updated = await challenge_tracker.update_challenge(
        challenge.id, "user-1", {"title": "Mindful April", "end_date": future + timedelta(days=10)}
    )

    assert updated.title == "Mindful April"
    assert updated.duration == 10


@pytest.mark.asyncio
async def test_update_after_start_conflicts(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(ConflictError):
        await challenge_tracker.update_challenge(challenge.id, "user-1", {"title": "Late edit"})


@pytest.mark.asyncio
async def test_update_by_non_creator(challenge_tracker, clock):
    future = clock() + timedelta(days=2)
    challenge = await challenge_tracker.create_challenge(
        "user-1", make_draft(start_date=future, end_date=future + timedelta(days=5))
    )

    with pytest.raises(AuthorizationError):
        await challenge_tracker.update_challenge(challenge.id, "user-2", {"title": "Hijack"})


@pytest.mark.asyncio
async def test_delete_started_challenge_with_participants_conflicts(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())
    await challenge_tracker.add_participant(challenge.id, "user-2")

    with pytest.raises(ConflictError):
        await challenge_tracker.delete_challenge(challenge.id, "user-1")


@pytest.mark.asyncio
async def test_delete_started_challenge_alone(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    await challenge_tracker.delete_challenge(challenge.id, "user-1")

    with pytest.raises(RecordNotFoundError):
        await challenge_tracker.get_challenge(challenge.id)


@pytest.mark.asyncio
async def test_delete_by_non_creator(challenge_tracker):
    challenge = await challenge_tracker.create_challenge("user-1", make_draft())

    with pytest.raises(AuthorizationError):
        await challenge_tracker.delete_challenge(challenge.id, "user-2")


# ============================================================================
# Queries
# ============================================================================

@pytest.mark.asyncio
async def test_list_public_active(challenge_tracker, clock):
    later = await challenge_tracker.create_challenge(
        "user-1", make_draft(title="Later", start_date=START + timedelta(days=1),
                             end_date=START + timedelta(days=8))
    )
    sooner = await challenge_tracker.create_challenge("user-1", make_draft(title="Sooner"))
    await challenge_tracker.create_challenge("user-1", make_draft(title="Secret", is_private=True))
    await challenge_tracker.create_challenge(
        "user-1", make_draft(title="Over", start_date=START - timedelta(days=10),
                             end_date=START - timedelta(days=3))
    )
    await challenge_tracker.create_challenge("user-1", make_draft(title="Sleepy", category="Sleep"))

    page = await challenge_tracker.list_public_active(category="Meditation")

    assert [c.id for c in page.challenges] == [sooner.id, later.id]
    assert page.total == 2
    assert page.has_more is False


@pytest.mark.asyncio
async def test_list_public_active_search_and_paging(challenge_tracker, clock):
    first = await challenge_tracker.create_challenge("user-1", make_draft(title="Calm Mornings"))
    second = await challenge_tracker.create_challenge(
        "user-1", make_draft(title="Evening walk", description="A calm stroll",
                             start_date=START + timedelta(days=1),
                             end_date=START + timedelta(days=8))
    )
    await challenge_tracker.create_challenge(
        "user-1", make_draft(title="Hydrate", description="Drink water")
    )

    page = await challenge_tracker.list_public_active(search="CALM", limit=1)

    assert [c.id for c in page.challenges] == [first.id]
    assert page.total == 2
    assert page.has_more is True

    page = await challenge_tracker.list_public_active(search="calm", limit=1, skip=1)

    assert [c.id for c in page.challenges] == [second.id]
    assert page.has_more is False


@pytest.mark.asyncio
async def test_list_invited_for_user(challenge_tracker):
    pending = await challenge_tracker.create_challenge("user-1", make_draft(title="Pending"))
    joined = await challenge_tracker.create_challenge("user-1", make_draft(title="Joined"))
    await challenge_tracker.invite(pending.id, "user-1", ["user-2"])
    await challenge_tracker.invite(joined.id, "user-1", ["user-2"])
    await challenge_tracker.add_participant(joined.id, "user-2")

    invited = await challenge_tracker.list_invited_for_user("user-2")

    assert [c.id for c in invited] == [pending.id]


@pytest.mark.asyncio
async def test_list_active_and_completed_for_user(challenge_tracker, clock):
    done = await challenge_tracker.create_challenge(
        "user-1", make_draft(title="Short", end_date=START + timedelta(days=1))
    )
    running = await challenge_tracker.create_challenge("user-2", make_draft(title="Long"))
    await challenge_tracker.add_participant(running.id, "user-1")
    await challenge_tracker.check_in(done.id, "user-1")

    active = await challenge_tracker.list_active_for_user("user-1")
    completed = await challenge_tracker.list_completed_for_user("user-1")
    everything = await challenge_tracker.list_for_user("user-1")

    assert [c.id for c in active] == [running.id]
    assert [c.id for c in completed] == [done.id]
    assert {c.id for c in everything} == {done.id, running.id}
