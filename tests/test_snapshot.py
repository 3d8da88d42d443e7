"""Pure snapshot construction and transforms."""

import pytest

from ctf_events.errors import DataIntegrityError, NotFoundError
from ctf_events.models import Category, Hint, Question, QuestionSet
from ctf_events.snapshot import Snapshot, SnapshotQuestion, build_snapshot


def _question(question_id, title, answer="flag"):
    return Question(
        id=question_id,
        title=title,
        description=f"{title} text",
        points=100,
        difficulty="medium",
        product="Wiz Cloud",
        answer=answer,
        hint=Hint(text="look closer", point_reduction=20),
    )


@pytest.fixture
def question_set():
    return QuestionSet(
        id=1,
        title="Basics",
        categories=[
            Category(name="Cloud", questions=[1, 2]),
            Category(name="Code", description="Source", is_visible=False, questions=[3, 1]),
        ],
    )


@pytest.fixture
def questions():
    return {i: _question(i, f"Q{i}", answer=f"answer{i}") for i in (1, 2, 3)}


@pytest.fixture
def snapshot(question_set, questions):
    return build_snapshot(question_set, questions)


def test_build_snapshot_embeds_copies_in_order(snapshot):
    assert snapshot.title == "Basics"
    assert [c.name for c in snapshot.categories] == ["Cloud", "Code"]
    assert [q.original_id for q in snapshot.categories[0].questions] == [1, 2]
    assert [q.original_id for q in snapshot.categories[1].questions] == [3, 1]
    assert snapshot.categories[1].is_visible is False
    assert snapshot.question_count() == 4


def test_build_snapshot_missing_question(question_set, questions):
    del questions[2]
    with pytest.raises(NotFoundError):
        build_snapshot(question_set, questions)


def test_stored_question_without_original_id_is_rejected(snapshot):
    data = snapshot.to_dict()
    del data["categories"][0]["questions"][0]["originalId"]
    with pytest.raises(DataIntegrityError):
        Snapshot.from_dict(data)


def test_stored_form_decodes_to_equal_snapshot(snapshot):
    assert Snapshot.from_dict(snapshot.to_dict()) == snapshot


def test_find_question_returns_first_category(snapshot):
    category, question = snapshot.find_question(1)
    assert category.name == "Cloud"
    assert question.answer == "answer1"
    assert snapshot.find_question(99) is None


def test_with_question_fields_updates_every_copy(snapshot):
    updated = snapshot.with_question_fields(1, {"title": "Renamed", "points": 150})

    copies = [q for _, q in updated.iter_questions() if q.original_id == 1]
    assert len(copies) == 2
    assert all(q.title == "Renamed" and q.points == 150 for q in copies)
    # Input snapshot is untouched
    assert snapshot.find_question(1)[1].title == "Q1"


def test_with_question_fields_ignores_non_propagated_keys(snapshot):
    assert snapshot.with_question_fields(1, {"active": False, "environment": "x"}) is snapshot
    updated = snapshot.with_question_fields(1, {"original_id": 7, "title": "T"})
    assert updated.contains_question(1)
    assert not updated.contains_question(7)


def test_with_question_fields_is_idempotent(snapshot):
    once = snapshot.with_question_fields(2, {"answer": "new"})
    assert once.with_question_fields(2, {"answer": "new"}) == once


def test_without_question_keeps_categories(snapshot):
    updated = snapshot.without_question(1)
    assert [c.name for c in updated.categories] == ["Cloud", "Code"]
    assert [q.original_id for q in updated.categories[0].questions] == [2]
    assert [q.original_id for q in updated.categories[1].questions] == [3]


def test_with_answer(snapshot):
    updated = snapshot.with_answer(1, "override")
    assert all(q.answer == "override" for _, q in updated.iter_questions() if q.original_id == 1)
    assert updated.find_question(2)[1].answer == "answer2"
    with pytest.raises(NotFoundError):
        snapshot.with_answer(42, "x")


def test_with_category_visibility(snapshot):
    updated = snapshot.with_category_visibility("Code", True)
    assert updated.categories[1].is_visible is True
    assert snapshot.categories[1].is_visible is False
    with pytest.raises(NotFoundError):
        snapshot.with_category_visibility("Missing", False)


def test_participant_view_hides_secrets_and_hidden_categories(snapshot):
    view = snapshot.participant_view(answered=[2])

    assert [c["name"] for c in view["categories"]] == ["Cloud"]
    first, second = view["categories"][0]["questions"]
    assert set(first) == {
        "id",
        "title",
        "description",
        "points",
        "difficulty",
        "product",
        "hasHint",
        "hintPointReduction",
        "hintReductionType",
        "answered",
    }
    assert first["hasHint"] is True
    assert first["answered"] is False
    assert second["answered"] is True


def test_participant_view_can_include_hidden(snapshot):
    view = snapshot.participant_view(include_hidden=True)
    assert [(c["name"], c["isVisible"]) for c in view["categories"]] == [
        ("Cloud", True),
        ("Code", False),
    ]


def test_snapshot_question_defaults_hint():
    question = SnapshotQuestion.from_dict(
        {"originalId": 5, "title": "Bare", "points": 10, "answer": "a"}
    )
    assert question.hint == Hint()
    assert question.hint.point_reduction == 10
    assert question.hint.reduction_type == "percentage"
