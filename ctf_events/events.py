"""
Event lifecycle: creation with an embedded snapshot, re-embedding, joining,
per-event customization and the role-aware views of an event.
"""

import logging
from typing import Any, Dict, List, Optional

from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .models import AnswerRecord, Event, Identity, Participant, utcnow
from .snapshot import Snapshot, build_snapshot
from .validation import parse_event

logger = logging.getLogger(__name__)


class EventService:
    """Admin and participant operations on events."""

    def __init__(
        self,
        db_manager: Any,
        config: Any,
    ) -> None:
        self.db = db_manager
        self.config = config

    async def build_snapshot(self, question_set_id: int) -> Snapshot:
        """
        Materialize the current state of a question set.

        @raise NotFoundError: If the set or any referenced question is missing
        """
        question_set = await self.db.get_question_set(question_set_id)
        questions = await self.db.get_questions_by_ids(question_set.question_ids())
        return build_snapshot(question_set, questions)

    async def _load_event_as(self, event_id: int, identity: Identity) -> Event:
        """Load an event the identity may see: admins always, others if joined."""
        event = await self.db.get_event(event_id)
        if not identity.is_admin and event.find_participant(identity.user_id) is None:
            raise ForbiddenError("Access denied")
        return event

    async def create_event(self, identity: Identity, body: Any) -> Event:
        """
        Create an event that embeds a snapshot of its question set.

        @raise ConflictError: If the event code is taken
        @raise NotFoundError: If the question set or one of its questions is gone
        """
        fields = parse_event(body)
        if await self.db.event_code_in_use(fields["event_code"]):
            raise ConflictError("Event code already in use")

        snapshot = await self.build_snapshot(fields["question_set_ref"])
        return await self.db.create_event(
            snapshot=snapshot,
            description=fields.get("description", ""),
            created_by=identity.user_id,
            creator_email=identity.email,
            **{k: v for k, v in fields.items() if k != "description"},
        )

    async def update_event(self, event_id: int, body: Any) -> Event:
        """
        Partially update an event.

        Switching to a different question set replaces the embedded snapshot
        with a fresh one built from the new set.
        """
        fields = parse_event(body, partial=True)
        event = await self.db.get_event(event_id, with_participants=False)

        code = fields.get("event_code")
        if code and code != event.event_code:
            if await self.db.event_code_in_use(code, exclude_event_id=event_id):
                raise ConflictError("Event code already in use")

        new_ref = fields.get("question_set_ref")
        if new_ref is not None and new_ref != event.question_set_ref:
            fields["snapshot"] = await self.build_snapshot(new_ref)
            logger.info(
                "Event %s switched from question set %s to %s",
                event_id,
                event.question_set_ref,
                new_ref,
            )

        await self.db.update_event(event_id, fields)
        return await self.db.get_event(event_id)

    async def resync_event(self, event_id: int) -> Event:
        """Rebuild an event's snapshot from its current question set."""
        event = await self.db.get_event(event_id, with_participants=False)
        snapshot = await self.build_snapshot(event.question_set_ref)
        await self.db.save_snapshot(event_id, snapshot)
        logger.info("Resynced event %s from question set %s", event_id, event.question_set_ref)
        return await self.db.get_event(event_id)

    async def delete_event(self, event_id: int) -> None:
        await self.db.delete_event(event_id)
        logger.info("Deleted event %s", event_id)

    async def join_event(self, identity: Identity, event_code: str) -> Event:
        """
        Add the caller to the roster of the active event with this code.

        @raise NotFoundError: Unknown code or inactive event
        @raise ValidationError: The event has already ended
        @raise ConflictError: The caller already joined
        """
        async with self.db.transaction() as conn:
            event = await self.db.get_event_by_code(event_code, conn=conn)
            if event is None or not event.active:
                raise NotFoundError("Invalid event code or event is not active")
            if event.has_ended():
                raise ValidationError.for_field("eventCode", "This event has already ended")
            if event.find_participant(identity.user_id) is not None:
                raise ConflictError("You have already joined this event")

            await self.db.add_participant(
                Participant(
                    event_id=event.id,
                    user_id=identity.user_id,
                    display_name=identity.resolved_display_name(),
                    email=identity.email,
                    first_name=identity.first_name,
                    last_name=identity.last_name,
                    organization=identity.organization,
                    joined_at=utcnow().isoformat(),
                ),
                conn=conn,
            )

        self.db.invalidate_leaderboard(event.id)
        logger.info("User %s joined event %s", identity.user_id, event.id)
        return event

    async def _with_rosters(self, events: List[Event]) -> List[Event]:
        for event in events:
            event.participants = await self.db.get_participants(event.id)
        return events

    async def list_events(self) -> List[Event]:
        return await self._with_rosters(await self.db.list_events())

    async def list_active_events(self) -> List[Event]:
        return await self._with_rosters(await self.db.list_events(active_only=True))

    async def list_user_events(self, user_id: str) -> List[Event]:
        """Events the user joined, rosters loaded so scores can be reported."""
        return await self._with_rosters(await self.db.list_events(user_id=user_id))

    async def get_event(self, event_id: int, identity: Identity) -> Dict[str, Any]:
        """
        Role-aware view of an event.

        Admins get the full document. Participants get visible categories
        only, without answers, solutions or hint text, plus their own
        credited questions and score.
        """
        event = await self._load_event_as(event_id, identity)
        if identity.is_admin:
            return event.to_dict()

        participant = event.find_participant(identity.user_id)
        data = event.to_dict(include_snapshot=False)
        data.pop("participants")
        data["questionSet"] = event.snapshot.participant_view(participant.answered_questions)
        data["score"] = participant.score
        data["answeredQuestions"] = list(participant.answered_questions)
        data["participantCount"] = len(event.participants)
        return data

    async def get_admin_board(self, event_id: int) -> Dict[str, Any]:
        """Board preview for admins, hidden categories included and marked."""
        event = await self.db.get_event(event_id, with_participants=False)
        return event.snapshot.participant_view(include_hidden=True)

    async def get_participants(self, event_id: int) -> List[Participant]:
        await self.db.get_event(event_id, with_participants=False)
        return await self.db.get_participants(event_id)

    async def set_category_visibility(
        self,
        event_id: int,
        category_name: str,
        visible: bool,
    ) -> Snapshot:
        """
        Show or hide a category on the participant board.

        Visibility does not affect scoring.

        @raise NotFoundError: Unknown event or category
        """
        async with self.db.transaction() as conn:
            event = await self.db.get_event(event_id, conn=conn, with_participants=False)
            snapshot = event.snapshot.with_category_visibility(category_name, visible)
            await self.db.save_snapshot(event_id, snapshot, conn=conn)
        logger.info(
            "Category '%s' of event %s is now %s",
            category_name,
            event_id,
            "visible" if visible else "hidden",
        )
        return snapshot

    async def override_answer(
        self,
        event_id: int,
        question_id: int,
        answer: str,
    ) -> Snapshot:
        """
        Correct the accepted answer of a question in this event only.

        A later edit of the catalog question's answer overwrites the override.
        """
        async with self.db.transaction() as conn:
            event = await self.db.get_event(event_id, conn=conn, with_participants=False)
            snapshot = event.snapshot.with_answer(question_id, answer)
            await self.db.save_snapshot(event_id, snapshot, conn=conn)
        logger.info("Answer of question %s overridden in event %s", question_id, event_id)
        return snapshot

    async def list_answers(
        self,
        event_id: int,
        identity: Identity,
        user_id: Optional[str] = None,
    ) -> List[AnswerRecord]:
        """
        Ledger rows for an event.

        Admins see everyone's rows, or one user's with user_id. Participants
        only ever see their own.
        """
        await self._load_event_as(event_id, identity)
        if identity.is_admin:
            return await self.db.list_answers(event_id, user_id=user_id)
        if user_id is not None and user_id != identity.user_id:
            raise ForbiddenError("Access denied")
        return await self.db.list_answers(event_id, user_id=identity.user_id)

    async def get_leaderboard(
        self,
        event_id: int,
        identity: Identity,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        if not self.config.is_feature_enabled("leaderboard_enabled"):
            raise NotFoundError("Leaderboard is disabled")
        await self._load_event_as(event_id, identity)
        return await self.db.get_leaderboard(event_id, limit)
