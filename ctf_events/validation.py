"""
Validation of admin and participant payloads.

Each parser takes the decoded JSON body and returns the cleaned values,
raising ValidationError listing every offending field.
"""

from typing import Any, Dict, List, Optional

from .config import DIFFICULTIES, REDUCTION_TYPES
from .errors import ValidationError
from .models import Category, Hint, Solution, parse_timestamp


class _Errors:
    """Collects field errors and raises them together."""

    def __init__(self) -> None:
        self.details: List[Dict[str, str]] = []

    def add(self, field: str, message: str) -> None:
        self.details.append({"field": field, "message": message})

    def raise_if_any(self) -> None:
        if self.details:
            message = self.details[0]["message"] if len(self.details) == 1 else "Invalid input"
            raise ValidationError(message, self.details)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _coerce_int(value: Any) -> Optional[int]:
    """Accept ints and integral strings/floats; anything else is None."""
    if _is_int(value):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


def require_object(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def parse_hint(data: Any, errors: _Errors, config: Any) -> Hint:
    if data is None:
        return Hint(
            point_reduction=config.get("scoring", "default_hint_reduction"),
            reduction_type=config.get("scoring", "default_hint_reduction_type"),
        )
    if not isinstance(data, dict):
        errors.add("hint", "Hint must be an object")
        return Hint()

    reduction: Optional[int] = config.get("scoring", "default_hint_reduction")
    if data.get("pointReduction") is not None:
        reduction = _coerce_int(data["pointReduction"])
        if reduction is None or reduction < 0:
            errors.add("hint.pointReduction", "Point reduction must be a non-negative integer")
            reduction = 0

    reduction_type = data.get("reductionType") or config.get(
        "scoring", "default_hint_reduction_type"
    )
    if reduction_type not in REDUCTION_TYPES:
        errors.add("hint.reductionType", "Reduction type must be percentage or static")
        reduction_type = "percentage"
    elif reduction_type == "percentage" and reduction > 100:
        errors.add("hint.pointReduction", "Percentage reduction must be between 0 and 100")
        reduction = 100

    text = data.get("text") or ""
    if not isinstance(text, str):
        errors.add("hint.text", "Hint text must be a string")
        text = ""

    return Hint(text=text, point_reduction=reduction, reduction_type=reduction_type)


def parse_solution(data: Any, errors: _Errors) -> Solution:
    if data is None:
        return Solution()
    if not isinstance(data, dict):
        errors.add("solution", "Solution must be an object")
        return Solution()
    return Solution.from_dict(data)


def parse_question(body: Any, config: Any, partial: bool = False) -> Dict[str, Any]:
    """
    Validate a question create or update payload.

    On create, omitted points default to the difficulty's canonical value.

    @param body: Decoded JSON body
    @param config: EventConfig for products and defaults
    @param partial: True for updates, where every field is optional
    @return: Cleaned fields keyed by storage column name
    """
    body = require_object(body)
    errors = _Errors()
    fields: Dict[str, Any] = {}

    for name in ("title", "description", "answer"):
        if name in body:
            if _non_empty_str(body[name]):
                fields[name] = body[name].strip()
            else:
                errors.add(name, f"{name.capitalize()} is required")
        elif not partial:
            errors.add(name, f"{name.capitalize()} is required")

    if "difficulty" in body:
        if body["difficulty"] in DIFFICULTIES:
            fields["difficulty"] = body["difficulty"]
        else:
            errors.add("difficulty", "Difficulty must be easy, medium, or hard")
    elif not partial:
        errors.add("difficulty", "Difficulty must be easy, medium, or hard")

    if body.get("points") is not None:
        points = _coerce_int(body["points"])
        if points is None or points < 1:
            errors.add("points", "Points must be a positive number")
        else:
            fields["points"] = points
    elif not partial and "difficulty" in fields:
        fields["points"] = config.points_for_difficulty(fields["difficulty"])

    if "product" in body:
        if body["product"] in config.products:
            fields["product"] = body["product"]
        else:
            errors.add("product", f"Product must be one of: {', '.join(config.products)}")
    elif not partial:
        errors.add("product", "Product is required")

    if "environment" in body:
        fields["environment"] = str(body["environment"] or "").strip()

    if "active" in body:
        active = _coerce_bool(body["active"])
        if active is None:
            errors.add("active", "Active must be a boolean")
        else:
            fields["active"] = active

    if "hint" in body and body["hint"] is not None:
        fields["hint"] = parse_hint(body["hint"], errors, config)
    elif not partial:
        fields["hint"] = parse_hint(None, errors, config)

    if "solution" in body and body["solution"] is not None:
        fields["solution"] = parse_solution(body["solution"], errors)
    elif not partial:
        fields["solution"] = Solution()

    errors.raise_if_any()
    return fields


def parse_categories(data: Any, errors: _Errors) -> List[Category]:
    if not isinstance(data, list):
        errors.add("categories", "Categories must be a list")
        return []

    categories = []
    for index, item in enumerate(data):
        prefix = f"categories[{index}]"
        if not isinstance(item, dict) or not _non_empty_str(item.get("name")):
            errors.add(f"{prefix}.name", "Category name is required")
            continue
        question_ids = []
        for position, raw_id in enumerate(item.get("questions") or []):
            question_id = _coerce_int(raw_id)
            if question_id is None:
                errors.add(f"{prefix}.questions[{position}]", "Question id must be an integer")
            else:
                question_ids.append(question_id)
        categories.append(
            Category(
                name=item["name"].strip(),
                description=(item.get("description") or "").strip(),
                is_visible=item.get("isVisible", True) is not False,
                questions=question_ids,
            )
        )
    return categories


def parse_question_set(body: Any, partial: bool = False) -> Dict[str, Any]:
    body = require_object(body)
    errors = _Errors()
    fields: Dict[str, Any] = {}

    if "title" in body:
        if _non_empty_str(body["title"]):
            fields["title"] = body["title"].strip()
        else:
            errors.add("title", "Title is required")
    elif not partial:
        errors.add("title", "Title is required")

    if "description" in body:
        fields["description"] = str(body["description"] or "").strip()
    elif not partial:
        fields["description"] = ""

    if "categories" in body and body["categories"] is not None:
        fields["categories"] = parse_categories(body["categories"], errors)
    elif not partial:
        fields["categories"] = []

    if "active" in body:
        active = _coerce_bool(body["active"])
        if active is None:
            errors.add("active", "Active must be a boolean")
        else:
            fields["active"] = active

    errors.raise_if_any()
    return fields


def parse_event(body: Any, partial: bool = False) -> Dict[str, Any]:
    """
    Validate an event create or update payload.

    @return: Cleaned fields; "question_set_ref" holds the question set id
    """
    body = require_object(body)
    errors = _Errors()
    fields: Dict[str, Any] = {}

    if "name" in body:
        if _non_empty_str(body["name"]):
            fields["name"] = body["name"].strip()
        else:
            errors.add("name", "Name is required")
    elif not partial:
        errors.add("name", "Name is required")

    if "description" in body:
        fields["description"] = str(body["description"] or "").strip()

    if body.get("questionSet") is not None:
        question_set_id = _coerce_int(body["questionSet"])
        if question_set_id is None:
            errors.add("questionSet", "Question set is required")
        else:
            fields["question_set_ref"] = question_set_id
    elif not partial:
        errors.add("questionSet", "Question set is required")

    if "eventCode" in body:
        if _non_empty_str(body["eventCode"]):
            fields["event_code"] = body["eventCode"].strip()
        else:
            errors.add("eventCode", "Event code is required")
    elif not partial:
        errors.add("eventCode", "Event code is required")

    if "eventDate" in body:
        try:
            parsed = parse_timestamp(body["eventDate"]) if isinstance(body["eventDate"], str) else None
        except ValueError:
            parsed = None
        if parsed is None:
            errors.add("eventDate", "Event date must be a valid ISO-8601 date")
        else:
            fields["event_date"] = parsed.isoformat()
    elif not partial:
        errors.add("eventDate", "Event date is required")

    if body.get("duration") is not None:
        duration = _coerce_int(body["duration"])
        if duration is None or duration < 1:
            errors.add("duration", "Duration must be a positive number")
        else:
            fields["duration"] = duration

    if "active" in body:
        active = _coerce_bool(body["active"])
        if active is None:
            errors.add("active", "Active must be a boolean")
        else:
            fields["active"] = active

    errors.raise_if_any()
    return fields


def parse_submission(body: Any) -> Dict[str, Any]:
    """
    Validate an answer submission.

    The answer text itself is checked by the evaluator.

    @return: answer, hint_used, hint_reduction, hint_reduction_type
    """
    body = require_object(body)
    errors = _Errors()

    hint_used = _coerce_bool(body.get("hintUsed", False))
    if hint_used is None:
        errors.add("hintUsed", "hintUsed must be a boolean")

    hint_reduction = None
    if body.get("hintReduction") is not None:
        raw = body["hintReduction"]
        if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw < 0:
            errors.add("hintReduction", "hintReduction must be a non-negative number")
        else:
            hint_reduction = raw

    hint_reduction_type = body.get("hintReductionType")
    if hint_reduction_type is not None and hint_reduction_type not in REDUCTION_TYPES:
        errors.add("hintReductionType", "hintReductionType must be percentage or static")

    errors.raise_if_any()
    return {
        "answer": body.get("answer"),
        "hint_used": bool(hint_used),
        "hint_reduction": hint_reduction,
        "hint_reduction_type": hint_reduction_type,
    }


def parse_visibility(body: Any) -> bool:
    body = require_object(body)
    visible = _coerce_bool(body.get("isVisible"))
    if visible is None:
        raise ValidationError.for_field("isVisible", "isVisible must be a boolean")
    return visible


def parse_answer_override(body: Any) -> str:
    body = require_object(body)
    if not _non_empty_str(body.get("answer")):
        raise ValidationError.for_field("answer", "Answer is required")
    return body["answer"].strip()


def parse_event_code(body: Any) -> str:
    body = require_object(body)
    if not _non_empty_str(body.get("eventCode")):
        raise ValidationError.for_field("eventCode", "Event code is required")
    return body["eventCode"].strip()
