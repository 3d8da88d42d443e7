"""
Domain models for CTF events.

Questions and question sets are the mutable, admin-authored catalog. Events
embed an immutable Snapshot of a question set (see snapshot.py) and own their
participants and answer ledger.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .snapshot import Snapshot

ADMIN_ROLE = "admin"
USER_ROLE = "user"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as stored in the database.

    Naive values are taken to be UTC.

    @param value: ISO-8601 string or None
    @return: Aware datetime, or None when value is empty
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Hint:
    """Hint text plus the penalty applied when it is used."""

    text: str = ""
    point_reduction: int = 10
    reduction_type: str = "percentage"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "pointReduction": self.point_reduction,
            "reductionType": self.reduction_type,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Hint":
        """Build a hint, defaulting any missing part."""
        if not data:
            return cls()
        reduction = data.get("pointReduction")
        return cls(
            text=data.get("text") or "",
            point_reduction=10 if reduction is None else int(reduction),
            reduction_type=data.get("reductionType") or "percentage",
        )


@dataclass(frozen=True)
class Solution:
    """Admin-only walkthrough for a question."""

    description: str = ""
    url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "url": self.url}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Solution":
        if not data:
            return cls()
        return cls(description=data.get("description") or "", url=data.get("url") or "")


@dataclass
class Question:
    """A reusable question in the live catalog."""

    id: int
    title: str
    description: str
    points: int
    difficulty: str
    product: str
    answer: str
    hint: Hint = field(default_factory=Hint)
    solution: Solution = field(default_factory=Solution)
    environment: str = ""
    created_by: str = ""
    creator_email: str = ""
    active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "points": self.points,
            "difficulty": self.difficulty,
            "product": self.product,
            "environment": self.environment,
            "answer": self.answer,
            "hint": self.hint.to_dict(),
            "solution": self.solution.to_dict(),
            "createdBy": self.created_by,
            "creatorEmail": self.creator_email,
            "active": self.active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Category:
    """Named, ordered group of question ids inside a question set."""

    name: str
    description: str = ""
    is_visible: bool = True
    questions: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "isVisible": self.is_visible,
            "questions": list(self.questions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Category":
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            is_visible=data.get("isVisible", True) is not False,
            questions=[int(q) for q in data.get("questions") or []],
        )


@dataclass
class QuestionSet:
    """A named grouping of catalog questions into ordered categories."""

    id: int
    title: str
    description: str = ""
    categories: List[Category] = field(default_factory=list)
    created_by: str = ""
    creator_email: str = ""
    active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def question_ids(self) -> List[int]:
        """All referenced question ids in category order, without duplicates."""
        seen: List[int] = []
        for category in self.categories:
            for question_id in category.questions:
                if question_id not in seen:
                    seen.append(question_id)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "categories": [c.to_dict() for c in self.categories],
            "createdBy": self.created_by,
            "creatorEmail": self.creator_email,
            "active": self.active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as asserted by the upstream gateway."""

    user_id: str
    role: str = USER_ROLE
    email: str = ""
    display_name: str = ""
    first_name: str = ""
    last_name: str = ""
    organization: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def resolved_display_name(self) -> str:
        """Display name, else "first last", else the local part of the email."""
        if self.display_name:
            return self.display_name
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        if self.email:
            return self.email.split("@")[0]
        return self.user_id


@dataclass
class Participant:
    """Roster entry, denormalized from the identity at join time."""

    event_id: int
    user_id: str
    display_name: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    organization: str = ""
    joined_at: Optional[str] = None
    score: int = 0
    answered_questions: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user_id,
            "displayName": self.display_name,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "organization": self.organization,
            "joinedAt": self.joined_at,
            "score": self.score,
            "answeredQuestions": list(self.answered_questions),
        }


@dataclass(frozen=True)
class AnswerRecord:
    """One row of the append-only answer ledger."""

    event_id: int
    user_id: str
    question_id: int
    question_title: str
    category_name: str
    user_answer: str
    is_correct: bool
    hint_used: bool
    points_awarded: int
    credited: bool
    submitted_at: str
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "userId": self.user_id,
            "questionId": self.question_id,
            "questionTitle": self.question_title,
            "categoryName": self.category_name,
            "userAnswer": self.user_answer,
            "isCorrect": self.is_correct,
            "hintUsed": self.hint_used,
            "pointsAwarded": self.points_awarded,
            "ts": self.submitted_at,
        }


@dataclass(frozen=True)
class AnswerResult:
    """Outcome of a single answer submission."""

    correct: bool
    already_answered: bool
    points_awarded: int
    category_name: str
    hint_used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correct": self.correct,
            "alreadyAnswered": self.already_answered,
            "points": self.points_awarded,
            "category": self.category_name,
            "hintUsed": self.hint_used,
        }


@dataclass
class PropagationReport:
    """Summary of one propagation pass over event snapshots."""

    matched: int = 0
    updated: int = 0
    skipped: int = 0
    failed: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["failedEvents"] = data.pop("failed")
        return data


@dataclass
class Event:
    """A scheduled event playing against its own embedded snapshot."""

    id: int
    name: str
    question_set_ref: int
    snapshot: "Snapshot"
    event_code: str
    event_date: str
    description: str = ""
    duration: int = 60
    active: bool = True
    created_by: str = ""
    creator_email: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    participants: List[Participant] = field(default_factory=list)

    def ends_at(self) -> datetime:
        """Scheduled start plus duration."""
        return parse_timestamp(self.event_date) + timedelta(minutes=self.duration)

    def has_ended(self, now: Optional[datetime] = None) -> bool:
        return self.ends_at() < (now or utcnow())

    def find_participant(self, user_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def to_dict(self, include_snapshot: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "questionSetRef": self.question_set_ref,
            "eventCode": self.event_code,
            "eventDate": self.event_date,
            "duration": self.duration,
            "active": self.active,
            "createdBy": self.created_by,
            "creatorEmail": self.creator_email,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "participants": [p.to_dict() for p in self.participants],
        }
        if include_snapshot:
            data["questionSet"] = self.snapshot.to_dict()
        else:
            data["questionSet"] = {"title": self.snapshot.title}
        return data
