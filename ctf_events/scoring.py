"""
Answer evaluation against an event's frozen snapshot.

The pure functions at the top decide correctness and points. AnswerEvaluator
runs the submission state machine: roster check, lookup, idempotency gate,
ledger append and score update, all inside one write transaction.
"""

import logging
import math
from typing import Any, Optional, Tuple

import aiosqlite

from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import AnswerRecord, AnswerResult, Event, Hint, utcnow
from .snapshot import SnapshotCategory, SnapshotQuestion

logger = logging.getLogger(__name__)


def normalize_answer(text: str) -> str:
    """Answers compare case-insensitively with surrounding whitespace ignored."""
    return text.strip().lower()


def is_correct_answer(submitted: str, stored: str) -> bool:
    return normalize_answer(submitted) == normalize_answer(stored)


def apply_hint_penalty(points: int, hint: Hint) -> int:
    """
    Points left after the hint penalty.

    Percentage reductions round down; static reductions never go below zero.

    @param points: Base points of the question
    @param hint: Hint configuration carrying the reduction
    @return: Awarded points
    """
    if hint.reduction_type == "percentage":
        return max(0, math.floor(points - points * hint.point_reduction / 100))
    return max(0, points - hint.point_reduction)


def compute_awarded_points(
    question: SnapshotQuestion,
    correct: bool,
    hint_used: bool,
) -> int:
    if not correct:
        return 0
    if hint_used:
        return apply_hint_penalty(question.points, question.hint)
    return question.points


def find_question(
    event: Event,
    question_id: int,
) -> Tuple[SnapshotCategory, SnapshotQuestion]:
    """
    Locate a question in the event's snapshot.

    @raise NotFoundError: If the snapshot does not embed the question
    """
    found = event.snapshot.find_question(question_id)
    if found is None:
        raise NotFoundError("Question not found")
    return found


def check_hint_claim(
    question: SnapshotQuestion,
    claimed_reduction: Optional[Any],
    claimed_type: Optional[str],
    policy: str,
) -> None:
    """
    Compare client-supplied hint parameters with the embedded configuration.

    The embedded hint is authoritative. Under the "reject" policy a mismatch
    raises; under "ignore" it is logged and the claim discarded.

    @raise ValidationError: On mismatch when policy is "reject"
    """
    details = []
    if claimed_reduction is not None and claimed_reduction != question.hint.point_reduction:
        details.append(
            {
                "field": "hintReduction",
                "message": f"Hint reduction for this question is {question.hint.point_reduction}",
            }
        )
    if claimed_type is not None and claimed_type != question.hint.reduction_type:
        details.append(
            {
                "field": "hintReductionType",
                "message": f"Hint reduction type for this question is {question.hint.reduction_type}",
            }
        )
    if not details:
        return

    if policy == "reject":
        raise ValidationError("Hint parameters do not match the question", details)
    logger.warning(
        "Ignoring client hint parameters for question %s: %s",
        question.original_id,
        "; ".join(d["message"] for d in details),
    )


class AnswerEvaluator:
    """Scores submissions and discloses hints for a single event at a time."""

    def __init__(
        self,
        db_manager: Any,
        config: Any,
    ) -> None:
        self.db = db_manager
        self.config = config

    def _validate_answer_text(self, answer: Any) -> str:
        if not isinstance(answer, str) or not answer.strip():
            raise ValidationError.for_field("answer", "Answer is required")
        max_length = self.config.get("submission", "max_answer_length")
        if len(answer) > max_length:
            raise ValidationError.for_field(
                "answer", f"Answer too long (max {max_length} characters)"
            )
        return answer

    async def _load_for_participant(
        self,
        event_id: int,
        user_id: str,
        question_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Tuple[Event, SnapshotCategory, SnapshotQuestion]:
        event = await self.db.get_event(event_id, conn=conn)
        if event.find_participant(user_id) is None:
            raise ForbiddenError("You must join this event before submitting answers")
        category, question = find_question(event, question_id)
        return event, category, question

    async def submit_answer(
        self,
        event_id: int,
        user_id: str,
        question_id: int,
        submitted_text: Any,
        hint_used: bool = False,
        hint_reduction: Optional[Any] = None,
        hint_reduction_type: Optional[str] = None,
    ) -> AnswerResult:
        """
        Evaluate one answer attempt and record it in the ledger.

        A question is credited at most once per participant; later attempts
        report already_answered with zero points.

        @param event_id: Event being played
        @param user_id: Submitting participant
        @param question_id: originalId of the question
        @param submitted_text: Raw answer text
        @param hint_used: Client's claim that the hint was used
        @param hint_reduction: Client's claimed reduction amount (advisory)
        @param hint_reduction_type: Client's claimed reduction type (advisory)
        @return: AnswerResult for the attempt
        @raise NotFoundError: Unknown event or question
        @raise ForbiddenError: User has not joined the event
        @raise ValidationError: Missing answer or mismatching hint claim
        """
        answer = self._validate_answer_text(submitted_text)

        try:
            async with self.db.transaction() as conn:
                result = await self._evaluate_in_transaction(
                    conn,
                    event_id,
                    user_id,
                    question_id,
                    answer,
                    bool(hint_used),
                    hint_reduction,
                    hint_reduction_type,
                )
        except aiosqlite.IntegrityError:
            # The credit index rejected a second point-granting row
            logger.warning(
                "Duplicate credit blocked for user %s, event %s, question %s",
                user_id,
                event_id,
                question_id,
            )
            event = await self.db.get_event(event_id, with_participants=False)
            category, _ = find_question(event, question_id)
            return AnswerResult(
                correct=True,
                already_answered=True,
                points_awarded=0,
                category_name=category.name,
            )

        if result.correct and not result.already_answered:
            self.db.invalidate_leaderboard(event_id)
        return result

    async def _evaluate_in_transaction(
        self,
        conn: aiosqlite.Connection,
        event_id: int,
        user_id: str,
        question_id: int,
        answer: str,
        claimed_hint_used: bool,
        hint_reduction: Optional[Any],
        hint_reduction_type: Optional[str],
    ) -> AnswerResult:
        _, category, question = await self._load_for_participant(
            event_id, user_id, question_id, conn=conn
        )
        correct = is_correct_answer(answer, question.answer)
        hint_used = claimed_hint_used or await self.db.hint_disclosed(
            event_id, user_id, question_id, conn=conn
        )

        def ledger_row(is_correct: bool, points: int, credited: bool) -> AnswerRecord:
            return AnswerRecord(
                event_id=event_id,
                user_id=user_id,
                question_id=question_id,
                question_title=question.title,
                category_name=category.name,
                user_answer=answer.strip(),
                is_correct=is_correct,
                hint_used=hint_used,
                points_awarded=points,
                credited=credited,
                submitted_at=utcnow().isoformat(),
            )

        if await self.db.has_credit(event_id, user_id, question_id, conn=conn):
            if self.config.is_feature_enabled("audit_repeat_attempts"):
                await self.db.append_answer(ledger_row(correct, 0, False), conn=conn)
            return AnswerResult(
                correct=True,
                already_answered=True,
                points_awarded=0,
                category_name=category.name,
                hint_used=hint_used,
            )

        if hint_used:
            check_hint_claim(
                question,
                hint_reduction,
                hint_reduction_type,
                self.config.get("scoring", "hint_mismatch_policy"),
            )

        awarded = compute_awarded_points(question, correct, hint_used)
        await self.db.append_answer(ledger_row(correct, awarded, correct), conn=conn)
        if correct:
            await self.db.add_to_score(event_id, user_id, awarded, conn=conn)
            logger.info(
                "User %s solved question %s in event %s for %d points",
                user_id,
                question_id,
                event_id,
                awarded,
            )

        return AnswerResult(
            correct=correct,
            already_answered=False,
            points_awarded=awarded,
            category_name=category.name,
            hint_used=hint_used,
        )

    async def request_hint(
        self,
        event_id: int,
        user_id: str,
        question_id: int,
    ) -> str:
        """
        Disclose a question's hint to a participant.

        Non-empty hints are recorded in the hint log so later submissions
        carry the penalty regardless of what the client reports.

        @return: Hint text, possibly empty
        @raise NotFoundError: Unknown event or question
        @raise ForbiddenError: User has not joined the event
        """
        _, _, question = await self._load_for_participant(event_id, user_id, question_id)
        if question.hint.text:
            if await self.db.record_hint_request(event_id, user_id, question_id):
                logger.info(
                    "Hint for question %s disclosed to user %s in event %s",
                    question_id,
                    user_id,
                    event_id,
                )
        return question.hint.text
