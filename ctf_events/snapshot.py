"""
Immutable event snapshots.

A Snapshot is the self-contained copy of a question set that an event plays
against. It is linked to the live catalog only through each question's
original_id. All changes are pure transforms that return a new Snapshot, so
a propagation pass can be re-run on the same input with the same result.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .errors import DataIntegrityError, NotFoundError
from .models import Hint, Question, QuestionSet, Solution

# Fields an upstream question edit may push into embedded copies
PROPAGATED_FIELDS = (
    "title",
    "description",
    "points",
    "difficulty",
    "product",
    "answer",
    "hint",
    "solution",
)


@dataclass(frozen=True)
class SnapshotQuestion:
    """Embedded copy of a catalog question."""

    original_id: int
    title: str
    description: str
    points: int
    difficulty: str
    product: str
    answer: str
    hint: Hint = field(default_factory=Hint)
    solution: Solution = field(default_factory=Solution)
    creator_email: str = ""

    @classmethod
    def from_question(cls, question: Question) -> "SnapshotQuestion":
        return cls(
            original_id=question.id,
            title=question.title,
            description=question.description,
            points=question.points,
            difficulty=question.difficulty,
            product=question.product,
            answer=question.answer,
            hint=question.hint,
            solution=question.solution,
            creator_email=question.creator_email,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalId": self.original_id,
            "title": self.title,
            "description": self.description,
            "points": self.points,
            "difficulty": self.difficulty,
            "product": self.product,
            "answer": self.answer,
            "hint": self.hint.to_dict(),
            "solution": self.solution.to_dict(),
            "creatorEmail": self.creator_email,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SnapshotQuestion":
        original_id = data.get("originalId")
        if original_id is None:
            raise DataIntegrityError(
                f"Embedded question '{data.get('title', '?')}' has no originalId"
            )
        return cls(
            original_id=int(original_id),
            title=data["title"],
            description=data.get("description") or "",
            points=int(data["points"]),
            difficulty=data.get("difficulty") or "medium",
            product=data.get("product") or "",
            answer=data.get("answer") or "",
            hint=Hint.from_dict(data.get("hint")),
            solution=Solution.from_dict(data.get("solution")),
            creator_email=data.get("creatorEmail") or "",
        )


@dataclass(frozen=True)
class SnapshotCategory:
    """Embedded category with its questions in play order."""

    name: str
    description: str = ""
    is_visible: bool = True
    questions: Tuple[SnapshotQuestion, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "isVisible": self.is_visible,
            "questions": [q.to_dict() for q in self.questions],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SnapshotCategory":
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            is_visible=data.get("isVisible", True) is not False,
            questions=tuple(SnapshotQuestion.from_dict(q) for q in data.get("questions") or []),
        )


@dataclass(frozen=True)
class Snapshot:
    """Frozen copy of a question set owned by a single event."""

    title: str
    description: str = ""
    categories: Tuple[SnapshotCategory, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "categories": [c.to_dict() for c in self.categories],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        return cls(
            title=data.get("title") or "",
            description=data.get("description") or "",
            categories=tuple(SnapshotCategory.from_dict(c) for c in data.get("categories") or []),
        )

    def iter_questions(self) -> Iterable[Tuple[SnapshotCategory, SnapshotQuestion]]:
        """Yield (category, question) pairs in category order then question order."""
        for category in self.categories:
            for question in category.questions:
                yield category, question

    def find_question(
        self,
        question_id: int,
    ) -> Optional[Tuple[SnapshotCategory, SnapshotQuestion]]:
        """
        Locate an embedded question by its original id.

        The first match wins; uniqueness across categories is not checked.

        @param question_id: Catalog id of the question
        @return: (category, question) tuple, or None if absent
        """
        for category, question in self.iter_questions():
            if question.original_id == question_id:
                return category, question
        return None

    def contains_question(self, question_id: int) -> bool:
        return self.find_question(question_id) is not None

    def question_count(self) -> int:
        return sum(len(c.questions) for c in self.categories)

    def _map_questions(self, question_id: int, transform) -> "Snapshot":
        categories = tuple(
            replace(
                category,
                questions=tuple(
                    transform(q) if q.original_id == question_id else q
                    for q in category.questions
                ),
            )
            for category in self.categories
        )
        return replace(self, categories=categories)

    def with_question_fields(
        self,
        question_id: int,
        fields: Mapping[str, Any],
    ) -> "Snapshot":
        """
        Overwrite the supplied fields on every embedded copy of a question.

        original_id is never touched. Unknown keys are ignored.

        @param question_id: Catalog id of the edited question
        @param fields: Subset of PROPAGATED_FIELDS with their new values
        @return: New snapshot
        """
        changes = {k: v for k, v in fields.items() if k in PROPAGATED_FIELDS}
        if not changes:
            return self
        return self._map_questions(question_id, lambda q: replace(q, **changes))

    def without_question(self, question_id: int) -> "Snapshot":
        """Drop every embedded copy of a question, keeping category order."""
        categories = tuple(
            replace(
                category,
                questions=tuple(q for q in category.questions if q.original_id != question_id),
            )
            for category in self.categories
        )
        return replace(self, categories=categories)

    def with_answer(self, question_id: int, answer: str) -> "Snapshot":
        """
        Replace the embedded answer of a question in this snapshot only.

        @raise NotFoundError: If the question is not embedded
        """
        if not self.contains_question(question_id):
            raise NotFoundError("Question not found")
        return self._map_questions(question_id, lambda q: replace(q, answer=answer))

    def with_category_visibility(self, category_name: str, visible: bool) -> "Snapshot":
        """
        Set the visibility flag on the first category with the given name.

        @raise NotFoundError: If no category has that name
        """
        categories = list(self.categories)
        for index, category in enumerate(categories):
            if category.name == category_name:
                categories[index] = replace(category, is_visible=visible)
                return replace(self, categories=tuple(categories))
        raise NotFoundError("Category not found")

    def participant_view(
        self,
        answered: Iterable[int] = (),
        include_hidden: bool = False,
    ) -> Dict[str, Any]:
        """
        Participant-facing rendition: visible categories only, no answers,
        no solutions, no hint text.

        @param answered: Question ids already credited to the viewer
        @param include_hidden: Keep hidden categories (admin preview)
        @return: JSON-ready dictionary
        """
        answered_ids = set(answered)
        categories = []
        for category in self.categories:
            if not category.is_visible and not include_hidden:
                continue
            categories.append(
                {
                    "name": category.name,
                    "description": category.description,
                    "isVisible": category.is_visible,
                    "questions": [
                        {
                            "id": q.original_id,
                            "title": q.title,
                            "description": q.description,
                            "points": q.points,
                            "difficulty": q.difficulty,
                            "product": q.product,
                            "hasHint": bool(q.hint.text),
                            "hintPointReduction": q.hint.point_reduction,
                            "hintReductionType": q.hint.reduction_type,
                            "answered": q.original_id in answered_ids,
                        }
                        for q in category.questions
                    ],
                }
            )
        return {"title": self.title, "description": self.description, "categories": categories}


def build_snapshot(
    question_set: QuestionSet,
    questions_by_id: Mapping[int, Question],
) -> Snapshot:
    """
    Materialize a self-contained snapshot of a question set.

    @param question_set: The set to embed
    @param questions_by_id: Catalog questions keyed by id
    @return: New Snapshot with original_id stamped on every question
    @raise NotFoundError: If any referenced question is missing
    """
    categories = []
    for category in question_set.categories:
        embedded = []
        for question_id in category.questions:
            question = questions_by_id.get(question_id)
            if question is None:
                raise NotFoundError(
                    f"Question {question_id} referenced by question set "
                    f"'{question_set.title}' not found"
                )
            embedded.append(SnapshotQuestion.from_question(question))
        categories.append(
            SnapshotCategory(
                name=category.name,
                description=category.description,
                is_visible=category.is_visible,
                questions=tuple(embedded),
            )
        )
    return Snapshot(
        title=question_set.title,
        description=question_set.description,
        categories=tuple(categories),
    )
