"""
Web route handlers for CTF events.
"""

import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from aiohttp import web
from jinja2 import Environment, FileSystemLoader

from .errors import NotFoundError, ValidationError
from .events import EventService
from .middleware import get_identity, require_admin
from .questions import QuestionService, QuestionSetService
from .scoring import AnswerEvaluator
from .validation import (
    parse_answer_override,
    parse_event_code,
    parse_submission,
    parse_visibility,
)

TEMPLATES_PATH = os.path.join(os.path.dirname(__file__), "templates")


def _int_param(request: web.Request, name: str) -> int:
    """Path ids are integers; anything else cannot name an existing row."""
    try:
        return int(request.match_info[name])
    except ValueError:
        raise NotFoundError("Not found") from None


async def _json_body(request: web.Request) -> Any:
    if not request.can_read_body:
        raise ValidationError("Request body is required")
    return await request.json()


def format_timestamp(timestamp: Optional[str]) -> str:
    try:
        dt = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M")
    except (ValueError, TypeError, AttributeError):
        return timestamp[:19] if timestamp else "Unknown"


class WebHandlers:
    """Handles web routes and responses."""

    def __init__(
        self,
        config: Any,
        questions: QuestionService,
        question_sets: QuestionSetService,
        events: EventService,
        evaluator: AnswerEvaluator,
        templates_path: str = TEMPLATES_PATH,
    ) -> None:
        self.config = config
        self.questions = questions
        self.question_sets = question_sets
        self.events = events
        self.evaluator = evaluator

        self.jinja_env = Environment(
            loader=FileSystemLoader(templates_path),
            autoescape=True,
            auto_reload=False,
            cache_size=50,
        )
        self.jinja_env.filters["timestamp"] = format_timestamp

    def calculate_ranks_with_ties(
        self,
        leaderboard_data: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """
        Calculate ranks accounting for ties (same scores get same rank).

        @param leaderboard_data: Leaderboard entries ordered by score, highest first
        @return: Entries extended with rank, rank_class and is_tied
        """
        ranked_data = []
        current_rank = 1
        previous_score = None

        for i, entry in enumerate(leaderboard_data):
            score = entry["score"]
            if previous_score is not None and score != previous_score:
                current_rank = i + 1

            is_tied = (i > 0 and leaderboard_data[i - 1]["score"] == score) or (
                i < len(leaderboard_data) - 1 and leaderboard_data[i + 1]["score"] == score
            )

            rank_class = {1: "gold", 2: "silver", 3: "bronze"}.get(current_rank, "")

            ranked_data.append(
                dict(entry, rank=current_rank, rank_class=rank_class, is_tied=is_tied)
            )
            previous_score = score

        return ranked_data

    def _render(self, template_name: str, **context: Any) -> web.Response:
        template = self.jinja_env.get_template(template_name)
        html = template.render(config=self.config, **context)
        return web.Response(text=html, content_type="text/html")

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def api_list_questions(self, request: web.Request) -> web.Response:
        require_admin(request)
        questions = await self.questions.list_questions()
        return web.json_response([q.to_dict() for q in questions])

    async def api_create_question(self, request: web.Request) -> web.Response:
        identity = require_admin(request)
        question = await self.questions.create_question(identity, await _json_body(request))
        return web.json_response(question.to_dict(), status=201)

    async def api_get_question(self, request: web.Request) -> web.Response:
        require_admin(request)
        question = await self.questions.get_question(_int_param(request, "question_id"))
        return web.json_response(question.to_dict())

    async def api_update_question(self, request: web.Request) -> web.Response:
        """
        Edit a catalog question and propagate the change into event snapshots.

        @param request: HTTP request with the question id and a partial body
        @return: JSON with the updated question and the propagation report
        """
        require_admin(request)
        question, report = await self.questions.update_question(
            _int_param(request, "question_id"), await _json_body(request)
        )
        return web.json_response({"question": question.to_dict(), "propagation": report.to_dict()})

    async def api_delete_question(self, request: web.Request) -> web.Response:
        require_admin(request)
        report = await self.questions.delete_question(_int_param(request, "question_id"))
        return web.json_response({"msg": "Question deleted", "propagation": report.to_dict()})

    # ------------------------------------------------------------------
    # Question sets
    # ------------------------------------------------------------------

    async def api_list_question_sets(self, request: web.Request) -> web.Response:
        require_admin(request)
        question_sets = await self.question_sets.list_question_sets()
        return web.json_response([qs.to_dict() for qs in question_sets])

    async def api_create_question_set(self, request: web.Request) -> web.Response:
        identity = require_admin(request)
        question_set = await self.question_sets.create_question_set(
            identity, await _json_body(request)
        )
        return web.json_response(question_set.to_dict(), status=201)

    async def api_get_question_set(self, request: web.Request) -> web.Response:
        require_admin(request)
        data = await self.question_sets.get_question_set(_int_param(request, "set_id"))
        return web.json_response(data)

    async def api_update_question_set(self, request: web.Request) -> web.Response:
        require_admin(request)
        question_set, report = await self.question_sets.update_question_set(
            _int_param(request, "set_id"), await _json_body(request)
        )
        return web.json_response(
            {"questionSet": question_set.to_dict(), "propagation": report.to_dict()}
        )

    async def api_delete_question_set(self, request: web.Request) -> web.Response:
        require_admin(request)
        await self.question_sets.delete_question_set(_int_param(request, "set_id"))
        return web.json_response({"msg": "Question set deleted"})

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def api_list_events(self, request: web.Request) -> web.Response:
        require_admin(request)
        events = await self.events.list_events()
        return web.json_response([e.to_dict(include_snapshot=False) for e in events])

    async def api_create_event(self, request: web.Request) -> web.Response:
        identity = require_admin(request)
        event = await self.events.create_event(identity, await _json_body(request))
        return web.json_response(event.to_dict(), status=201)

    async def api_active_events(self, request: web.Request) -> web.Response:
        """Active events with the roster reduced to a count."""
        get_identity(request)
        events = await self.events.list_active_events()
        return web.json_response(
            [
                {
                    "id": e.id,
                    "name": e.name,
                    "description": e.description,
                    "eventDate": e.event_date,
                    "duration": e.duration,
                    "questionSet": {"title": e.snapshot.title},
                    "participantCount": len(e.participants),
                }
                for e in events
            ]
        )

    async def api_user_events(self, request: web.Request) -> web.Response:
        identity = get_identity(request)
        events = await self.events.list_user_events(identity.user_id)
        result = []
        for event in events:
            participant = event.find_participant(identity.user_id)
            result.append(
                {
                    "id": event.id,
                    "name": event.name,
                    "description": event.description,
                    "eventDate": event.event_date,
                    "duration": event.duration,
                    "active": event.active,
                    "questionSet": {"title": event.snapshot.title},
                    "score": participant.score if participant else 0,
                }
            )
        return web.json_response(result)

    async def api_join_event(self, request: web.Request) -> web.Response:
        identity = get_identity(request)
        event = await self.events.join_event(identity, parse_event_code(await _json_body(request)))
        return web.json_response(
            {"msg": "Successfully joined the event", "eventId": event.id, "name": event.name}
        )

    async def api_get_event(self, request: web.Request) -> web.Response:
        identity = get_identity(request)
        data = await self.events.get_event(_int_param(request, "event_id"), identity)
        return web.json_response(data)

    async def api_update_event(self, request: web.Request) -> web.Response:
        require_admin(request)
        event = await self.events.update_event(
            _int_param(request, "event_id"), await _json_body(request)
        )
        return web.json_response(event.to_dict())

    async def api_delete_event(self, request: web.Request) -> web.Response:
        require_admin(request)
        await self.events.delete_event(_int_param(request, "event_id"))
        return web.json_response({"msg": "Event deleted"})

    async def api_resync_event(self, request: web.Request) -> web.Response:
        require_admin(request)
        event = await self.events.resync_event(_int_param(request, "event_id"))
        return web.json_response(event.to_dict())

    async def api_participants(self, request: web.Request) -> web.Response:
        require_admin(request)
        participants = await self.events.get_participants(_int_param(request, "event_id"))
        return web.json_response([p.to_dict() for p in participants])

    async def api_leaderboard(self, request: web.Request) -> web.Response:
        """
        API endpoint for an event leaderboard.

        @param request: HTTP request with the event id and optional limit
        @return: JSON response with ranked entries
        """
        identity = get_identity(request)
        event_id = _int_param(request, "event_id")
        try:
            limit = int(request.query.get("limit", 10))
        except ValueError:
            raise ValidationError.for_field("limit", "Limit must be an integer") from None
        if limit < 1:
            raise ValidationError.for_field("limit", "Limit must be a positive integer")

        leaderboard = await self.events.get_leaderboard(event_id, identity, limit)
        return web.json_response(
            {
                "eventId": event_id,
                "leaderboard": [
                    {
                        "rank": entry["rank"],
                        "player": entry["player"],
                        "organization": entry["organization"],
                        "score": entry["score"],
                        "solved": entry["solved"],
                        "tied": entry["is_tied"],
                    }
                    for entry in self.calculate_ranks_with_ties(leaderboard)
                ],
            }
        )

    # ------------------------------------------------------------------
    # Answering
    # ------------------------------------------------------------------

    async def api_submit_answer(self, request: web.Request) -> web.Response:
        identity = get_identity(request)
        submission = parse_submission(await _json_body(request))
        result = await self.evaluator.submit_answer(
            _int_param(request, "event_id"),
            identity.user_id,
            _int_param(request, "question_id"),
            submission["answer"],
            hint_used=submission["hint_used"],
            hint_reduction=submission["hint_reduction"],
            hint_reduction_type=submission["hint_reduction_type"],
        )
        return web.json_response(result.to_dict())

    async def api_get_hint(self, request: web.Request) -> web.Response:
        identity = get_identity(request)
        hint = await self.evaluator.request_hint(
            _int_param(request, "event_id"),
            identity.user_id,
            _int_param(request, "question_id"),
        )
        return web.json_response({"hint": hint})

    async def api_override_answer(self, request: web.Request) -> web.Response:
        require_admin(request)
        event_id = _int_param(request, "event_id")
        question_id = _int_param(request, "question_id")
        await self.events.override_answer(
            event_id, question_id, parse_answer_override(await _json_body(request))
        )
        return web.json_response(
            {"msg": "Answer updated", "eventId": event_id, "questionId": question_id}
        )

    async def api_list_answers(self, request: web.Request) -> web.Response:
        identity = get_identity(request)
        records = await self.events.list_answers(_int_param(request, "event_id"), identity)
        return web.json_response([r.to_dict() for r in records])

    async def api_user_answers(self, request: web.Request) -> web.Response:
        identity = require_admin(request)
        records = await self.events.list_answers(
            _int_param(request, "event_id"), identity, user_id=request.match_info["user_id"]
        )
        return web.json_response([r.to_dict() for r in records])

    async def api_category_visibility(self, request: web.Request) -> web.Response:
        require_admin(request)
        event_id = _int_param(request, "event_id")
        category_name = request.match_info["category_name"]
        visible = parse_visibility(await _json_body(request))
        await self.events.set_category_visibility(event_id, category_name, visible)
        return web.json_response(
            {"msg": "Category visibility updated", "category": category_name, "isVisible": visible}
        )

    # ------------------------------------------------------------------
    # HTML pages
    # ------------------------------------------------------------------

    async def web_event_board(self, request: web.Request) -> web.Response:
        """
        Participant board: visible categories with per-question status.

        @param request: HTTP request containing the event id
        @return: Rendered event page, or 404 when pages are disabled
        """
        if not self.config.is_feature_enabled("html_pages_enabled"):
            return web.Response(text="Event pages are disabled", status=404, content_type="text/plain")

        identity = get_identity(request)
        event_id = _int_param(request, "event_id")
        event = await self.events.get_event(event_id, identity)
        if identity.is_admin:
            board = await self.events.get_admin_board(event_id)
        else:
            board = event["questionSet"]

        return self._render(
            "event_board.html",
            title=event["name"],
            event=event,
            board=board,
            is_admin=identity.is_admin,
        )

    async def web_leaderboard(self, request: web.Request) -> web.Response:
        """
        Leaderboard page for an event.

        @param request: HTTP request containing the event id
        @return: Rendered leaderboard page, or 404 when disabled
        """
        if not (
            self.config.is_feature_enabled("html_pages_enabled")
            and self.config.is_feature_enabled("leaderboard_enabled")
        ):
            return web.Response(text="Leaderboard is disabled", status=404, content_type="text/plain")

        identity = get_identity(request)
        event_id = _int_param(request, "event_id")
        event = await self.events.get_event(event_id, identity)
        leaderboard = await self.events.get_leaderboard(
            event_id, identity, self.config.get("ui", "max_leaderboard_entries")
        )

        return self._render(
            "leaderboard.html",
            title=f"{event['name']} Leaderboard",
            event=event,
            leaderboard=self.calculate_ranks_with_ties(leaderboard),
        )
