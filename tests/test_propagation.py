"""
Catalog edits reaching event snapshots: question edits and deletions,
question-set edits, failure isolation and re-runs.
"""

import json

import aiosqlite
import pytest

from ctf_events.errors import IncompletePropagationError

from .conftest import ALICE, make_event, make_question, make_question_set


@pytest.fixture
async def two_events(db, event_service):
    """
    Two events sharing question q1; the second also holds q2. A third event
    uses an unrelated question.
    """
    q1 = await make_question(db, title="Shared", answer="one")
    q2 = await make_question(db, title="Second", answer="two")
    q3 = await make_question(db, title="Other", answer="three")

    set_a = await make_question_set(db, [("Cloud", [q1.id])], title="Set A")
    set_b = await make_question_set(db, [("Cloud", [q1.id]), ("Code", [q2.id])], title="Set B")
    set_c = await make_question_set(db, [("Misc", [q3.id])], title="Set C")

    event_a = await make_event(event_service, set_a.id, code="A")
    event_b = await make_event(event_service, set_b.id, code="B")
    event_c = await make_event(event_service, set_c.id, code="C")
    return {
        "questions": (q1, q2, q3),
        "sets": (set_a, set_b, set_c),
        "events": (event_a, event_b, event_c),
    }


@pytest.mark.asyncio
async def test_question_edit_reaches_every_embedding_event(db, question_service, two_events):
    q1, _, _ = two_events["questions"]
    event_a, event_b, event_c = two_events["events"]

    question, report = await question_service.update_question(
        q1.id, {"title": "Shared v2", "points": 150, "hint": {"text": "new hint"}}
    )

    assert question.title == "Shared v2"
    assert report.matched == 2
    assert report.updated == 2
    assert report.failed == []

    for event_id in (event_a.id, event_b.id):
        event = await db.get_event(event_id)
        _, embedded = event.snapshot.find_question(q1.id)
        assert embedded.title == "Shared v2"
        assert embedded.points == 150
        assert embedded.hint.text == "new hint"
        assert embedded.original_id == q1.id

    untouched = await db.get_event(event_c.id)
    assert untouched.snapshot == event_c.snapshot


@pytest.mark.asyncio
async def test_rerunning_an_edit_is_a_no_op(db, question_service, propagator, two_events):
    q1, _, _ = two_events["questions"]
    await question_service.update_question(q1.id, {"title": "Shared v2"})

    report = await propagator.propagate_question_edit(q1.id, {"title": "Shared v2"})

    assert report.matched == 2
    assert report.updated == 0
    assert report.skipped == 2


@pytest.mark.asyncio
async def test_answer_edit_overwrites_event_override(
    db, question_service, event_service, two_events
):
    q1, _, _ = two_events["questions"]
    event_a, _, _ = two_events["events"]
    await event_service.override_answer(event_a.id, q1.id, "override")

    await question_service.update_question(q1.id, {"title": "Renamed"})
    event = await db.get_event(event_a.id)
    assert event.snapshot.find_question(q1.id)[1].answer == "override"

    await question_service.update_question(q1.id, {"answer": "catalog"})
    event = await db.get_event(event_a.id)
    assert event.snapshot.find_question(q1.id)[1].answer == "catalog"


@pytest.mark.asyncio
async def test_question_deletion(db, question_service, evaluator, event_service, two_events):
    q1, q2, _ = two_events["questions"]
    set_a, set_b, _ = two_events["sets"]
    _, event_b, _ = two_events["events"]

    await event_service.join_event(ALICE, "B")
    await evaluator.submit_answer(event_b.id, ALICE.user_id, q1.id, "one")

    report = await question_service.delete_question(q1.id)
    assert report.updated == 2

    event = await db.get_event(event_b.id)
    assert not event.snapshot.contains_question(q1.id)
    assert event.snapshot.contains_question(q2.id)
    assert [c.name for c in event.snapshot.categories] == ["Cloud", "Code"]

    assert (await db.get_question_set(set_a.id)).question_ids() == []
    assert (await db.get_question_set(set_b.id)).question_ids() == [q2.id]

    # Ledger history and score survive
    [record] = await db.list_answers(event_b.id)
    assert record.question_id == q1.id
    assert event.find_participant(ALICE.user_id).score == 100


@pytest.mark.asyncio
async def test_question_set_edit_replaces_snapshots(
    db, question_set_service, event_service, two_events
):
    q1, q2, q3 = two_events["questions"]
    _, set_b, _ = two_events["sets"]
    _, event_b, _ = two_events["events"]
    await event_service.set_category_visibility(event_b.id, "Code", False)

    question_set, report = await question_set_service.update_question_set(
        set_b.id,
        {
            "title": "Set B v2",
            "categories": [
                {"name": "Code", "questions": [q2.id, q3.id]},
                {"name": "Cloud", "questions": [q1.id]},
            ],
        },
    )

    assert question_set.title == "Set B v2"
    assert report.matched == 1
    assert report.updated == 1

    event = await db.get_event(event_b.id)
    assert event.snapshot.title == "Set B v2"
    assert [c.name for c in event.snapshot.categories] == ["Code", "Cloud"]
    assert [q.original_id for q in event.snapshot.categories[0].questions] == [q2.id, q3.id]
    # Full replace resets the visibility toggle
    assert event.snapshot.categories[0].is_visible is True


@pytest.mark.asyncio
async def test_failing_event_does_not_stop_the_pass(db, event_service, propagator, two_events):
    q1, _, _ = two_events["questions"]
    set_a, _, _ = two_events["sets"]
    good = two_events["events"][0]
    broken = await make_event(event_service, set_a.id, code="BROKEN")

    async with db.connect() as conn:
        await conn.execute(
            "UPDATE events SET snapshot = ? WHERE id = ?",
            (
                json.dumps(
                    {"title": "x", "categories": [{"name": "Cloud", "questions": [{"title": "?"}]}]}
                ),
                broken.id,
            ),
        )

    report = await propagator.propagate_question_set_edit(set_a.id)

    assert report.matched == 2
    assert report.failed == [broken.id]
    # The good event was rebuilt from the current set and left unchanged
    assert report.skipped == 1
    assert (await db.get_event(good.id)).snapshot.contains_question(q1.id)

    rerun = await propagator.propagate_question_set_edit(set_a.id)
    assert rerun.failed == [broken.id]
    assert rerun.skipped == 1


@pytest.mark.asyncio
async def test_deletion_is_retried_when_an_event_fails(
    db, question_service, two_events, monkeypatch
):
    q1, _, _ = two_events["questions"]
    set_a, set_b, _ = two_events["sets"]
    event_a, event_b, _ = two_events["events"]

    save_snapshot = db.save_snapshot

    async def locked_for_event_b(event_id, snapshot, conn=None):
        if event_id == event_b.id:
            raise aiosqlite.OperationalError("database is locked")
        await save_snapshot(event_id, snapshot, conn=conn)

    monkeypatch.setattr(db, "save_snapshot", locked_for_event_b)

    with pytest.raises(IncompletePropagationError) as excinfo:
        await question_service.delete_question(q1.id)

    assert excinfo.value.status == 409
    assert excinfo.value.report.failed == [event_b.id]
    assert excinfo.value.to_dict()["propagation"]["updated"] == 1
    # Catalog and sets are untouched until every snapshot is clean
    assert (await db.get_question(q1.id)).id == q1.id
    assert q1.id in (await db.get_question_set(set_b.id)).question_ids()
    assert not (await db.get_event(event_a.id)).snapshot.contains_question(q1.id)
    assert (await db.get_event(event_b.id)).snapshot.contains_question(q1.id)

    monkeypatch.setattr(db, "save_snapshot", save_snapshot)
    report = await question_service.delete_question(q1.id)

    assert report.matched == 1
    assert report.updated == 1
    assert report.failed == []
    assert not (await db.get_event(event_b.id)).snapshot.contains_question(q1.id)
    assert (await db.get_question_set(set_a.id)).question_ids() == []
