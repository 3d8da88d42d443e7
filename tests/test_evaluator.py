"""
Answer submission against an event snapshot: credit, idempotency, hints
and access checks.
"""

import asyncio

import pytest

from ctf_events.errors import ForbiddenError, NotFoundError, ValidationError
from ctf_events.models import Hint

from .conftest import ALICE, BOB, make_event, make_question, make_question_set


async def _score(db, event_id, user_id):
    participants = await db.get_participants(event_id)
    return next(p.score for p in participants if p.user_id == user_id)


@pytest.mark.asyncio
async def test_correct_answer_is_credited(db, evaluator, cloud_event):
    event, question = cloud_event

    result = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "  WIZ ")

    assert result.correct is True
    assert result.already_answered is False
    assert result.points_awarded == 100
    assert result.category_name == "Cloud"
    assert await _score(db, event.id, ALICE.user_id) == 100

    [record] = await db.list_answers(event.id)
    assert record.credited is True
    assert record.points_awarded == 100
    assert record.question_title == "Cloud101"
    assert record.user_answer == "WIZ"


@pytest.mark.asyncio
async def test_wrong_answer_then_correct(db, evaluator, cloud_event):
    event, question = cloud_event

    wrong = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "aws")
    assert wrong.correct is False
    assert wrong.points_awarded == 0

    right = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "wiz")
    assert right.correct is True
    assert right.points_awarded == 100

    records = await db.list_answers(event.id, user_id=ALICE.user_id)
    assert [r.credited for r in records] == [True, False]
    assert await _score(db, event.id, ALICE.user_id) == 100


@pytest.mark.asyncio
async def test_repeat_correct_answer_scores_once(db, evaluator, cloud_event):
    event, question = cloud_event

    await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")
    again = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "wiz")

    assert again.correct is True
    assert again.already_answered is True
    assert again.points_awarded == 0
    assert await _score(db, event.id, ALICE.user_id) == 100

    records = await db.list_answers(event.id)
    assert len(records) == 2
    assert sum(r.credited for r in records) == 1
    assert sum(r.points_awarded for r in records) == 100


@pytest.mark.asyncio
async def test_repeat_attempts_not_audited_when_disabled(db, config, evaluator, cloud_event):
    event, question = cloud_event
    config.config["features"]["audit_repeat_attempts"] = False

    await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")
    await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")

    assert len(await db.list_answers(event.id)) == 1


@pytest.mark.asyncio
async def test_concurrent_correct_submissions_credit_once(db, evaluator, cloud_event):
    event, question = cloud_event

    results = await asyncio.gather(
        *(
            evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")
            for _ in range(5)
        )
    )

    assert sum(r.points_awarded for r in results) == 100
    assert sum(not r.already_answered for r in results) == 1
    assert await _score(db, event.id, ALICE.user_id) == 100


@pytest.mark.asyncio
async def test_claimed_hint_applies_penalty(db, evaluator, cloud_event):
    event, question = cloud_event

    result = await evaluator.submit_answer(
        event.id,
        ALICE.user_id,
        question.id,
        "Wiz",
        hint_used=True,
        hint_reduction=10,
        hint_reduction_type="percentage",
    )

    assert result.points_awarded == 90
    assert result.hint_used is True
    assert await _score(db, event.id, ALICE.user_id) == 90


@pytest.mark.asyncio
async def test_disclosed_hint_applies_penalty_without_claim(db, evaluator, cloud_event):
    event, question = cloud_event

    hint = await evaluator.request_hint(event.id, ALICE.user_id, question.id)
    assert hint == "think security"

    result = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")
    assert result.hint_used is True
    assert result.points_awarded == 90


@pytest.mark.asyncio
async def test_empty_hint_is_not_logged(db, evaluator, event_service):
    question = await make_question(db, title="NoHint", hint=Hint())
    question_set = await make_question_set(db, [("Misc", [question.id])])
    event = await make_event(event_service, question_set.id, code="NOHINT")
    await event_service.join_event(ALICE, "NOHINT")

    assert await evaluator.request_hint(event.id, ALICE.user_id, question.id) == ""
    assert not await db.hint_disclosed(event.id, ALICE.user_id, question.id)

    result = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")
    assert result.points_awarded == 100


@pytest.mark.asyncio
async def test_mismatching_hint_claim_rejected(db, evaluator, cloud_event):
    event, question = cloud_event

    with pytest.raises(ValidationError):
        await evaluator.submit_answer(
            event.id, ALICE.user_id, question.id, "Wiz", hint_used=True, hint_reduction=0
        )

    assert await db.list_answers(event.id) == []
    assert await _score(db, event.id, ALICE.user_id) == 0


@pytest.mark.asyncio
async def test_mismatching_hint_claim_ignored(db, config, evaluator, cloud_event):
    event, question = cloud_event
    config.config["scoring"]["hint_mismatch_policy"] = "ignore"

    result = await evaluator.submit_answer(
        event.id,
        ALICE.user_id,
        question.id,
        "Wiz",
        hint_used=True,
        hint_reduction=0,
        hint_reduction_type="static",
    )

    assert result.points_awarded == 90


@pytest.mark.asyncio
async def test_hidden_category_still_scores(db, evaluator, event_service, cloud_event):
    event, question = cloud_event
    await event_service.set_category_visibility(event.id, "Cloud", False)

    result = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")
    assert result.points_awarded == 100


@pytest.mark.asyncio
async def test_catalog_edits_without_propagation_do_not_affect_scoring(
    db, evaluator, cloud_event
):
    event, question = cloud_event
    await db.update_question(question.id, {"answer": "Changed", "points": 500})

    result = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")
    assert result.correct is True
    assert result.points_awarded == 100


@pytest.mark.asyncio
async def test_non_participant_is_forbidden(evaluator, cloud_event):
    event, question = cloud_event
    with pytest.raises(ForbiddenError):
        await evaluator.submit_answer(event.id, BOB.user_id, question.id, "Wiz")
    with pytest.raises(ForbiddenError):
        await evaluator.request_hint(event.id, BOB.user_id, question.id)


@pytest.mark.asyncio
async def test_unknown_event_or_question(evaluator, cloud_event):
    event, question = cloud_event
    with pytest.raises(NotFoundError):
        await evaluator.submit_answer(event.id + 100, ALICE.user_id, question.id, "Wiz")
    with pytest.raises(NotFoundError):
        await evaluator.submit_answer(event.id, ALICE.user_id, question.id + 100, "Wiz")


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", [None, "", "   ", 42, "x" * 1001])
async def test_invalid_answer_text(evaluator, cloud_event, answer):
    event, question = cloud_event
    with pytest.raises(ValidationError):
        await evaluator.submit_answer(event.id, ALICE.user_id, question.id, answer)


@pytest.mark.asyncio
async def test_zero_point_credit_refreshes_leaderboard(db, evaluator, event_service):
    question = await make_question(
        db, hint=Hint(text="the answer is Wiz", point_reduction=100, reduction_type="static")
    )
    question_set = await make_question_set(db, [("Cloud", [question.id])])
    event = await make_event(event_service, question_set.id, code="FREEBIE")
    await event_service.join_event(ALICE, "FREEBIE")

    [before] = await db.get_leaderboard(event.id)
    assert before["solved"] == 0

    result = await evaluator.submit_answer(
        event.id,
        ALICE.user_id,
        question.id,
        "Wiz",
        hint_used=True,
        hint_reduction=100,
        hint_reduction_type="static",
    )
    assert result.correct is True
    assert result.points_awarded == 0

    [after] = await db.get_leaderboard(event.id)
    assert after["solved"] == 1
    assert after["score"] == 0
