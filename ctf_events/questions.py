"""
Question and question-set management.

Edits and deletions are written to the catalog first and then propagated into
every event snapshot that embeds the changed item.
"""

import logging
from typing import Any, Dict, List, Tuple

from .errors import ConflictError, IncompletePropagationError, ValidationError
from .models import Identity, PropagationReport, Question, QuestionSet
from .propagation import SnapshotPropagator
from .snapshot import build_snapshot
from .validation import parse_question, parse_question_set

logger = logging.getLogger(__name__)


class QuestionService:
    """Admin operations on the live question catalog."""

    def __init__(
        self,
        db_manager: Any,
        config: Any,
        propagator: SnapshotPropagator,
    ) -> None:
        self.db = db_manager
        self.config = config
        self.propagator = propagator

    async def list_questions(self) -> List[Question]:
        return await self.db.list_questions()

    async def get_question(self, question_id: int) -> Question:
        return await self.db.get_question(question_id)

    async def create_question(self, identity: Identity, body: Any) -> Question:
        fields = parse_question(body, self.config)
        return await self.db.create_question(
            created_by=identity.user_id,
            creator_email=identity.email,
            **fields,
        )

    async def update_question(
        self,
        question_id: int,
        body: Any,
    ) -> Tuple[Question, PropagationReport]:
        """
        Apply a partial edit and push the changed fields into event snapshots.

        @return: Updated question and the propagation report
        @raise NotFoundError: If the question does not exist
        """
        fields = parse_question(body, self.config, partial=True)
        question = await self.db.update_question(question_id, fields)
        report = await self.propagator.propagate_question_edit(question_id, fields)
        return question, report

    async def delete_question(self, question_id: int) -> PropagationReport:
        """
        Remove a question from every event snapshot, then from the catalog.

        Ledger rows that reference the question are kept as history. If any
        event could not be updated the catalog row and set references stay in
        place, so calling this again finishes the job.

        @raise IncompletePropagationError: If some event snapshots still embed the question
        """
        await self.db.get_question(question_id)
        report = await self.propagator.propagate_question_deletion(question_id)
        if report.failed:
            logger.warning(
                "Question %s kept: %d event(s) still embed it", question_id, len(report.failed)
            )
            raise IncompletePropagationError(
                "Question could not be removed from every event, retry the deletion", report
            )

        # Drop the dangling reference so later snapshot builds of the set succeed
        for question_set in await self.db.list_question_sets():
            if question_id not in question_set.question_ids():
                continue
            for category in question_set.categories:
                category.questions = [q for q in category.questions if q != question_id]
            await self.db.update_question_set(
                question_set.id, {"categories": question_set.categories}
            )

        await self.db.delete_question(question_id)
        logger.info("Deleted question %s", question_id)
        return report


class QuestionSetService:
    """Admin operations on question sets."""

    def __init__(
        self,
        db_manager: Any,
        propagator: SnapshotPropagator,
    ) -> None:
        self.db = db_manager
        self.propagator = propagator

    async def _check_questions_exist(self, fields: Dict[str, Any]) -> None:
        categories = fields.get("categories") or []
        wanted = {q for category in categories for q in category.questions}
        found = await self.db.get_questions_by_ids(sorted(wanted))
        missing = sorted(wanted - set(found))
        if missing:
            raise ValidationError(
                "Question set references unknown questions",
                [
                    {"field": "categories", "message": f"Question {question_id} not found"}
                    for question_id in missing
                ],
            )

    async def list_question_sets(self) -> List[QuestionSet]:
        return await self.db.list_question_sets()

    async def get_question_set(self, question_set_id: int) -> Dict[str, Any]:
        """
        Fetch a set with a summary of each referenced question.

        @return: Question set dictionary whose categories list question summaries
        """
        question_set = await self.db.get_question_set(question_set_id)
        questions = await self.db.get_questions_by_ids(question_set.question_ids())
        data = question_set.to_dict()
        for category in data["categories"]:
            category["questions"] = [
                {
                    "id": q.id,
                    "title": q.title,
                    "difficulty": q.difficulty,
                    "points": q.points,
                    "product": q.product,
                }
                for q in (questions.get(qid) for qid in category["questions"])
                if q is not None
            ]
        return data

    async def create_question_set(self, identity: Identity, body: Any) -> QuestionSet:
        fields = parse_question_set(body)
        await self._check_questions_exist(fields)
        return await self.db.create_question_set(
            created_by=identity.user_id,
            creator_email=identity.email,
            **fields,
        )

    async def update_question_set(
        self,
        question_set_id: int,
        body: Any,
    ) -> Tuple[QuestionSet, PropagationReport]:
        """
        Apply a partial edit and rebuild the snapshot of every event using the set.

        Event-level answer overrides and visibility toggles are replaced.

        @return: Updated set and the propagation report
        """
        fields = parse_question_set(body, partial=True)
        await self._check_questions_exist(fields)
        question_set = await self.db.update_question_set(question_set_id, fields)

        questions = await self.db.get_questions_by_ids(question_set.question_ids())
        snapshot = build_snapshot(question_set, questions)
        report = await self.propagator.propagate_question_set_edit(question_set_id, snapshot)
        return question_set, report

    async def delete_question_set(self, question_set_id: int) -> None:
        """
        Delete a set that no event references.

        @raise ConflictError: If any event was built from the set
        """
        await self.db.get_question_set(question_set_id)
        event_ids = await self.db.find_event_ids_by_question_set(question_set_id)
        if event_ids:
            raise ConflictError(
                f"Cannot delete question set. It is being used by {len(event_ids)} event(s)."
            )
        await self.db.delete_question_set(question_set_id)
        logger.info("Deleted question set %s", question_set_id)
