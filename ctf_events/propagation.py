"""
Propagation of catalog edits into event snapshots.

Each pass loads one event at a time, derives a new snapshot with a pure
transform, and saves it in its own transaction. A failing event is logged
and counted without stopping the pass; re-running a pass is safe.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import aiosqlite

from .errors import CTFEventsError
from .models import PropagationReport
from .snapshot import Snapshot, build_snapshot

logger = logging.getLogger(__name__)

SnapshotTransform = Callable[[Snapshot], Snapshot]


class SnapshotPropagator:
    """Pushes question and question-set edits into the events that embed them."""

    def __init__(
        self,
        db_manager: Any,
    ) -> None:
        self.db = db_manager

    async def _apply(
        self,
        event_ids: List[int],
        transform: SnapshotTransform,
        description: str,
    ) -> PropagationReport:
        """
        Apply a snapshot transform to each event, best effort.

        @param event_ids: Events to visit
        @param transform: Pure function from old to new snapshot
        @param description: What is being propagated, for log lines
        @return: Counts of matched, updated, unchanged and failed events
        """
        report = PropagationReport(matched=len(event_ids))
        logger.info("Propagating %s to %d event(s)", description, len(event_ids))

        for event_id in event_ids:
            try:
                async with self.db.transaction() as conn:
                    event = await self.db.get_event(event_id, conn=conn, with_participants=False)
                    new_snapshot = transform(event.snapshot)
                    if new_snapshot == event.snapshot:
                        report.skipped += 1
                        continue
                    await self.db.save_snapshot(event_id, new_snapshot, conn=conn)
            except (CTFEventsError, aiosqlite.Error) as e:
                logger.error("Failed to propagate %s to event %s: %s", description, event_id, e)
                report.failed.append(event_id)
                continue

            report.updated += 1
            logger.info("Updated snapshot of event %s", event_id)

        logger.info(
            "Propagation of %s finished: %d updated, %d unchanged, %d failed",
            description,
            report.updated,
            report.skipped,
            len(report.failed),
        )
        return report

    async def propagate_question_edit(
        self,
        question_id: int,
        fields: Dict[str, Any],
    ) -> PropagationReport:
        """
        Overwrite the edited fields on every embedded copy of a question.

        A supplied answer replaces any per-event answer override.

        @param question_id: Catalog id of the edited question
        @param fields: Edited snapshot fields (title, points, hint, ...)
        """
        event_ids = await self.db.find_event_ids_embedding_question(question_id)
        return await self._apply(
            event_ids,
            lambda snapshot: snapshot.with_question_fields(question_id, fields),
            f"edit of question {question_id}",
        )

    async def propagate_question_deletion(self, question_id: int) -> PropagationReport:
        """Remove a deleted question from every snapshot that embeds it."""
        event_ids = await self.db.find_event_ids_embedding_question(question_id)
        return await self._apply(
            event_ids,
            lambda snapshot: snapshot.without_question(question_id),
            f"deletion of question {question_id}",
        )

    async def propagate_question_set_edit(
        self,
        question_set_id: int,
        snapshot: Optional[Snapshot] = None,
    ) -> PropagationReport:
        """
        Replace the snapshot of every event built from a question set.

        This is a full replace: per-event answer overrides and category
        visibility toggles on those events are discarded.

        @param question_set_id: The edited set
        @param snapshot: Pre-built snapshot of the set; built here if omitted
        @raise NotFoundError: If the set or a referenced question is missing
        """
        if snapshot is None:
            question_set = await self.db.get_question_set(question_set_id)
            questions = await self.db.get_questions_by_ids(question_set.question_ids())
            snapshot = build_snapshot(question_set, questions)

        event_ids = await self.db.find_event_ids_by_question_set(question_set_id)
        return await self._apply(
            event_ids,
            lambda _: snapshot,
            f"edit of question set {question_set_id}",
        )
