"""
Challenge System

Multi-user, time-boxed challenges with join codes, daily check-ins and
per-task completion.

Progress for a participant is derived from the number of distinct calendar
days they checked in, relative to the challenge length:

    progress = round(min(100, completed_days / total_days * 100))

A participant has completed the challenge once progress reaches the
challenge's completion_threshold.
"""

import logging
import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mindbloom.config import JOIN_CODE_MAX_ATTEMPTS
from mindbloom.db.repositories import ChallengeRepository
from mindbloom.exceptions import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    DuplicateKeyError,
    RecordNotFoundError,
    ValidationError,
)
from mindbloom.models.challenge import (
    Challenge,
    ChallengeDraft,
    ChallengeTask,
    Participant,
    TaskProgress,
)
from mindbloom.utils.datetime_helpers import ceil_days, now_utc, to_day, to_utc

logger = logging.getLogger(__name__)

JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
JOIN_CODE_LENGTH = 8


def total_challenge_days(start: datetime, end: datetime) -> int:
    """Challenge length in days, rounded up, never less than 1"""
    return max(1, ceil_days(start, end))


def compute_progress(completed_days: int, total_days: int) -> int:
    """Percentage of challenge days checked in, capped at 100"""
    if total_days <= 0:
        return 0
    return round(min(100.0, completed_days / total_days * 100))


def generate_join_code() -> str:
    """Random 8-character code from A-Z0-9"""
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))


def is_completed_by_user(challenge: Challenge, user_id: str) -> bool:
    """True when the user's progress has reached the completion threshold"""
    participant = challenge.get_participant(user_id)
    if participant is None:
        return False
    return participant.progress >= challenge.completion_threshold


class CheckInResult(BaseModel):
    """Outcome of a daily challenge check-in"""
    challenge: Challenge
    participant: Participant
    completed_challenge: bool = False


class ChallengePage(BaseModel):
    """One page of a challenge listing"""
    challenges: List[Challenge]
    total: int
    limit: int
    skip: int
    has_more: bool


class TaskCompletionResult(BaseModel):
    """Outcome of completing one challenge task"""
    challenge: Challenge
    task: ChallengeTask
    points: int
    newly_completed: bool
    all_tasks_completed: bool


def _may_join_private(challenge: Challenge, user_id: str, join_code: Optional[str]) -> bool:
    if user_id in challenge.invited_user_ids:
        return True
    return bool(join_code) and join_code.strip().upper() == challenge.join_code


def _new_participant(challenge: Challenge, user_id: str, is_creator: bool = False) -> Participant:
    return Participant(
        user_id=user_id,
        is_creator=is_creator,
        task_progress=[TaskProgress(task_id=task.id) for task in challenge.tasks],
    )


class ChallengeTracker:
    """Challenge lifecycle and participation"""

    def __init__(self, challenges: ChallengeRepository, clock=now_utc):
        self.challenges = challenges
        self.clock = clock

    # ==========================================
    # Lookup
    # ==========================================

    async def get_challenge(self, challenge_id: str) -> Challenge:
        challenge = await self.challenges.get(challenge_id)
        if challenge is None:
            raise RecordNotFoundError(
                message=f"Challenge {challenge_id} not found",
                record_type="Challenge",
                record_id=challenge_id,
            )
        return challenge

    def _require_participant(self, challenge: Challenge, user_id: str, operation: str) -> Participant:
        participant = challenge.get_participant(user_id)
        if participant is None:
            raise ConflictError(
                message="You are not participating in this challenge",
                conflict="not_participant",
                user_id=user_id,
                operation=operation,
                context={"challenge_id": challenge.id},
            )
        return participant

    def _require_creator(self, challenge: Challenge, user_id: str, operation: str) -> None:
        if challenge.creator_id != user_id:
            raise AuthorizationError(
                message=f"Only the creator can {operation.replace('_', ' ')}",
                resource=f"challenge {challenge.id}",
                user_id=user_id,
                operation=operation,
            )

    # ==========================================
    # Lifecycle
    # ==========================================

    async def create_challenge(self, creator_id: str, draft: ChallengeDraft) -> Challenge:
        """
        Create a challenge with the creator as its first participant

        Private challenges get a join code; a code collision reported by the
        repository is retried with a fresh code.
        """
        start = to_utc(draft.start_date)
        end = to_utc(draft.end_date)

        challenge = Challenge(
            **draft.model_dump(exclude={"start_date", "end_date", "tasks"}),
            tasks=draft.tasks,
            creator_id=creator_id,
            start_date=start,
            end_date=end,
            duration=total_challenge_days(start, end),
        )
        challenge.participants.append(_new_participant(challenge, creator_id, is_creator=True))

        if not challenge.is_private:
            created = await self.challenges.create(challenge)
            logger.info(f"User {creator_id} created challenge '{created.title}' ({created.id})")
            return created

        for attempt in range(1, JOIN_CODE_MAX_ATTEMPTS + 1):
            challenge.join_code = generate_join_code()
            try:
                created = await self.challenges.create(challenge)
            except DuplicateKeyError:
                logger.warning(f"Join code collision (attempt {attempt}/{JOIN_CODE_MAX_ATTEMPTS})")
                continue

            logger.info(
                f"User {creator_id} created private challenge '{created.title}' ({created.id})"
            )
            return created

        raise ConflictError(
            message="Could not allocate a unique join code, please try again",
            conflict="join_code_exhausted",
            user_id=creator_id,
            operation="create_challenge",
        )

    async def update_challenge(
        self,
        challenge_id: str,
        user_id: str,
        changes: Dict[str, Any],
    ) -> Challenge:
        """Edit a challenge that has not started yet (creator only)"""
        challenge = await self.get_challenge(challenge_id)
        self._require_creator(challenge, user_id, "update_challenge")

        if self.clock() >= challenge.start_date:
            raise ConflictError(
                message="Cannot update a challenge that has already started",
                conflict="challenge_started",
                user_id=user_id,
                operation="update_challenge",
            )

        merged = challenge.model_dump(include=set(ChallengeDraft.model_fields))
        merged.update({k: v for k, v in changes.items() if v is not None})
        try:
            draft = ChallengeDraft(**merged)
        except PydanticValidationError as e:
            raise ValidationError(
                message=str(e), field="challenge", user_id=user_id, operation="update_challenge"
            ) from e

        for field_name, value in draft.model_dump(exclude={"tasks"}).items():
            setattr(challenge, field_name, value)
        challenge.tasks = draft.tasks
        challenge.start_date = to_utc(draft.start_date)
        challenge.end_date = to_utc(draft.end_date)
        challenge.duration = total_challenge_days(challenge.start_date, challenge.end_date)

        # Keep every participant's task list aligned with the edited tasks
        task_ids = [task.id for task in challenge.tasks]
        for participant in challenge.participants:
            existing = {p.task_id: p for p in participant.task_progress}
            participant.task_progress = [
                existing.get(task_id) or TaskProgress(task_id=task_id) for task_id in task_ids
            ]

        if challenge.is_private and not challenge.join_code:
            challenge.join_code = generate_join_code()

        updated = await self.challenges.update(challenge)
        logger.info(f"User {user_id} updated challenge {challenge_id}")
        return updated

    async def delete_challenge(self, challenge_id: str, user_id: str) -> None:
        """Delete a challenge (creator only, not once others have joined a started one)"""
        challenge = await self.get_challenge(challenge_id)
        self._require_creator(challenge, user_id, "delete_challenge")

        if self.clock() >= challenge.start_date and len(challenge.participants) > 1:
            raise ConflictError(
                message="Cannot delete a challenge that has started and has participants",
                conflict="challenge_in_progress",
                user_id=user_id,
                operation="delete_challenge",
            )

        await self.challenges.delete(challenge_id)
        logger.info(f"User {user_id} deleted challenge {challenge_id}")

    # ==========================================
    # Participation
    # ==========================================

    async def add_participant(
        self,
        challenge_id: str,
        user_id: str,
        join_code: Optional[str] = None,
    ) -> Challenge:
        """
        Join a challenge

        A private challenge admits invited users, and anyone else presenting
        its join code (compared case-insensitively).

        Raises:
            RecordNotFoundError: unknown challenge
            AuthorizationError: private challenge, not invited and wrong join code
            ConflictError: already participating
            CapacityError: challenge is full
        """
        challenge = await self.get_challenge(challenge_id)

        if challenge.is_private and not _may_join_private(challenge, user_id, join_code):
            raise AuthorizationError(
                message="Invalid join code for private challenge",
                resource=f"challenge {challenge_id}",
                user_id=user_id,
                operation="add_participant",
            )

        if challenge.get_participant(user_id) is not None:
            raise ConflictError(
                message="You are already participating in this challenge",
                conflict="already_participant",
                user_id=user_id,
                operation="add_participant",
            )

        if challenge.max_participants > 0 and len(challenge.participants) >= challenge.max_participants:
            raise CapacityError(
                max_participants=challenge.max_participants,
                user_id=user_id,
                operation="add_participant",
            )

        challenge.participants.append(_new_participant(challenge, user_id))
        updated = await self.challenges.update(challenge)
        logger.info(f"User {user_id} joined challenge {challenge_id}")
        return updated

    async def join_by_code(self, join_code: str, user_id: str) -> Challenge:
        """Join a private challenge using only its code"""
        challenge = await self.challenges.get_by_join_code(join_code.strip().upper())
        if challenge is None:
            raise RecordNotFoundError(
                message="No challenge matches that join code",
                record_type="Challenge",
                record_id=join_code,
                user_id=user_id,
            )
        return await self.add_participant(challenge.id, user_id, challenge.join_code)

    async def invite(self, challenge_id: str, user_id: str, invitee_ids: List[str]) -> Challenge:
        """
        Add users to the challenge's invite list (creator only)

        Invited users may join a private challenge without its join code.
        Ids already invited or already participating are skipped.
        """
        invitee_ids = [i.strip() for i in invitee_ids if i and i.strip()]
        if not invitee_ids:
            raise ValidationError(
                message="At least one user id is required",
                field="user_ids",
                user_id=user_id,
                operation="invite",
            )

        challenge = await self.get_challenge(challenge_id)
        self._require_creator(challenge, user_id, "invite")

        added = []
        for invitee_id in invitee_ids:
            if invitee_id in challenge.invited_user_ids or challenge.get_participant(invitee_id):
                continue
            challenge.invited_user_ids.append(invitee_id)
            added.append(invitee_id)

        if not added:
            return challenge

        updated = await self.challenges.update(challenge)
        logger.info(f"User {user_id} invited {added} to challenge {challenge_id}")
        return updated

    async def leave(self, challenge_id: str, user_id: str) -> Challenge:
        challenge = await self.get_challenge(challenge_id)
        participant = self._require_participant(challenge, user_id, "leave")

        if participant.is_creator:
            raise ConflictError(
                message="The creator cannot leave the challenge, delete it instead",
                conflict="creator_cannot_leave",
                user_id=user_id,
                operation="leave",
            )

        challenge.participants = [p for p in challenge.participants if p.user_id != user_id]
        updated = await self.challenges.update(challenge)
        logger.info(f"User {user_id} left challenge {challenge_id}")
        return updated

    async def check_in(
        self,
        challenge_id: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> CheckInResult:
        """
        Record today's check-in for a participant

        Raises:
            ConflictError: not a participant, or already checked in today
        """
        now = now or self.clock()
        today = to_day(now)

        challenge = await self.get_challenge(challenge_id)
        participant = self._require_participant(challenge, user_id, "check_in")

        if participant.has_checked_in_on(today):
            raise ConflictError(
                message="You have already checked in today",
                conflict="already_checked_in",
                user_id=user_id,
                operation="check_in",
            )

        was_completed = participant.progress >= challenge.completion_threshold

        participant.completed_days.append(today)
        participant.completed_days.sort()
        participant.last_check_in = now
        participant.progress = compute_progress(
            len(participant.completed_days), total_challenge_days(challenge.start_date, challenge.end_date)
        )

        challenge = await self.challenges.update(challenge)
        participant = challenge.get_participant(user_id)

        completed_now = not was_completed and participant.progress >= challenge.completion_threshold
        logger.info(
            f"User {user_id} checked in to challenge {challenge_id}: "
            f"progress {participant.progress}%"
        )
        if completed_now:
            logger.info(f"User {user_id} completed challenge '{challenge.title}'")

        return CheckInResult(
            challenge=challenge,
            participant=participant,
            completed_challenge=completed_now,
        )

    async def complete_task(
        self,
        challenge_id: str,
        user_id: str,
        task_id: str,
    ) -> TaskCompletionResult:
        """
        Mark one task complete for a participant

        Completing an already-completed task changes nothing and reports
        newly_completed=False.
        """
        challenge = await self.get_challenge(challenge_id)
        participant = self._require_participant(challenge, user_id, "complete_task")

        task = challenge.get_task(task_id)
        if task is None:
            raise RecordNotFoundError(
                message=f"Task {task_id} not found in challenge",
                record_type="ChallengeTask",
                record_id=task_id,
                user_id=user_id,
            )

        progress = next((p for p in participant.task_progress if p.task_id == task_id), None)
        if progress is not None and progress.is_completed:
            return TaskCompletionResult(
                challenge=challenge,
                task=task,
                points=0,
                newly_completed=False,
                all_tasks_completed=participant.all_tasks_completed(),
            )

        if progress is None:
            progress = TaskProgress(task_id=task_id)
            participant.task_progress.append(progress)
        progress.is_completed = True
        progress.completed_at = self.clock()

        challenge = await self.challenges.update(challenge)
        participant = challenge.get_participant(user_id)
        all_done = len(challenge.tasks) > 0 and all(
            any(p.task_id == t.id and p.is_completed for p in participant.task_progress)
            for t in challenge.tasks
        )

        logger.info(f"User {user_id} completed task '{task.name}' in challenge {challenge_id}")
        return TaskCompletionResult(
            challenge=challenge,
            task=task,
            points=task.points,
            newly_completed=True,
            all_tasks_completed=all_done,
        )

    # ==========================================
    # Queries
    # ==========================================

    async def list_public_active(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 10,
        skip: int = 0,
    ) -> ChallengePage:
        """
        Public, active challenges that have not ended, soonest start first

        search matches title or description, case-insensitively.
        """
        search = search.strip() if search else None
        challenges, total = await self.challenges.list_public_active(
            self.clock(), category=category, search=search or None, limit=limit, skip=skip
        )
        return ChallengePage(
            challenges=challenges,
            total=total,
            limit=limit,
            skip=skip,
            has_more=total > skip + len(challenges),
        )

    async def list_invited_for_user(self, user_id: str) -> List[Challenge]:
        """Challenges the user was invited to and has not joined"""
        challenges = await self.challenges.list_invited(user_id)
        return [c for c in challenges if c.get_participant(user_id) is None]

    async def list_for_user(self, user_id: str) -> List[Challenge]:
        challenges = await self.challenges.list_for_user(user_id)
        challenges.sort(key=lambda c: c.start_date)
        return challenges

    async def list_active_for_user(self, user_id: str) -> List[Challenge]:
        """Challenges the user is in that are running and not yet completed by them"""
        now = self.clock()
        return [
            c for c in await self.list_for_user(user_id)
            if c.is_active and c.end_date >= now and not is_completed_by_user(c, user_id)
        ]

    async def list_completed_for_user(self, user_id: str) -> List[Challenge]:
        return [c for c in await self.list_for_user(user_id) if is_completed_by_user(c, user_id)]
