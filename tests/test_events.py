"""Event lifecycle, joining, per-event customization and role-aware views."""

from datetime import timedelta

import pytest

from ctf_events.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ctf_events.models import Identity, utcnow

from .conftest import ADMIN, ALICE, BOB, make_event, make_question, make_question_set


@pytest.mark.asyncio
async def test_create_event_embeds_snapshot(db, event_service):
    question = await make_question(db)
    question_set = await make_question_set(db, [("Cloud", [question.id])])

    event = await make_event(event_service, question_set.id)

    assert event.event_code == "CLOUD101"
    assert event.question_set_ref == question_set.id
    assert event.created_by == ADMIN.user_id
    assert event.snapshot.title == "Cloud Basics"
    _, embedded = event.snapshot.find_question(question.id)
    assert embedded.answer == "Wiz"
    assert embedded.hint.text == "think security"


@pytest.mark.asyncio
async def test_create_event_validation_and_conflicts(db, event_service):
    question = await make_question(db)
    question_set = await make_question_set(db, [("Cloud", [question.id])])
    await make_event(event_service, question_set.id)

    with pytest.raises(ConflictError):
        await make_event(event_service, question_set.id)
    with pytest.raises(NotFoundError):
        await make_event(event_service, question_set.id + 50, code="OTHER")
    with pytest.raises(ValidationError) as excinfo:
        await event_service.create_event(ADMIN, {"name": "", "eventDate": "yesterday"})

    fields = {detail["field"] for detail in excinfo.value.details}
    assert fields == {"name", "questionSet", "eventCode", "eventDate"}


@pytest.mark.asyncio
async def test_switching_question_set_re_embeds(db, event_service, cloud_event):
    event, _ = cloud_event
    other = await make_question(db, title="Code101", answer="scan")
    other_set = await make_question_set(db, [("Code", [other.id])], title="Code Basics")

    updated = await event_service.update_event(
        event.id, {"questionSet": other_set.id, "name": "Renamed"}
    )

    assert updated.name == "Renamed"
    assert updated.question_set_ref == other_set.id
    assert updated.snapshot.title == "Code Basics"
    assert updated.snapshot.contains_question(other.id)


@pytest.mark.asyncio
async def test_update_event_code_conflict(db, event_service, cloud_event):
    event, question = cloud_event
    question_set = await make_question_set(db, [("Cloud", [question.id])], title="Copy")
    await make_event(event_service, question_set.id, code="TAKEN")

    with pytest.raises(ConflictError):
        await event_service.update_event(event.id, {"eventCode": "TAKEN"})
    # Keeping its own code is fine
    await event_service.update_event(event.id, {"eventCode": "CLOUD101"})


@pytest.mark.asyncio
async def test_resync_event_picks_up_catalog_state(db, event_service, cloud_event):
    event, question = cloud_event
    await db.update_question(question.id, {"title": "Cloud101 v2"})

    resynced = await event_service.resync_event(event.id)

    assert resynced.snapshot.find_question(question.id)[1].title == "Cloud101 v2"


@pytest.mark.asyncio
async def test_join_event_denormalizes_identity(db, event_service, cloud_event):
    event, _ = cloud_event
    await event_service.join_event(BOB, "CLOUD101")

    participants = {p.user_id: p for p in await db.get_participants(event.id)}
    assert participants["alice"].display_name == "Alice Smith"
    assert participants["alice"].organization == "Acme"
    assert participants["bob"].display_name == "Bobby"
    assert participants["bob"].score == 0


@pytest.mark.asyncio
async def test_join_event_rejections(db, event_service, cloud_event):
    event, question = cloud_event

    with pytest.raises(ConflictError):
        await event_service.join_event(ALICE, "CLOUD101")
    with pytest.raises(NotFoundError):
        await event_service.join_event(BOB, "NOPE")

    await event_service.update_event(event.id, {"active": False})
    with pytest.raises(NotFoundError):
        await event_service.join_event(BOB, "CLOUD101")

    question_set = await make_question_set(db, [("Cloud", [question.id])], title="Past")
    await make_event(
        event_service,
        question_set.id,
        code="PAST",
        eventDate=(utcnow() - timedelta(days=1)).isoformat(),
        duration=60,
    )
    with pytest.raises(ValidationError):
        await event_service.join_event(BOB, "PAST")


@pytest.mark.asyncio
async def test_display_name_falls_back_to_email(db, event_service, cloud_event):
    event, _ = cloud_event
    await event_service.join_event(Identity(user_id="carol", email="carol@example.com"), "CLOUD101")

    participants = {p.user_id: p for p in await db.get_participants(event.id)}
    assert participants["carol"].display_name == "carol"


@pytest.mark.asyncio
async def test_participant_view_hides_answers(event_service, evaluator, cloud_event):
    event, question = cloud_event
    await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")

    view = await event_service.get_event(event.id, ALICE)

    assert view["score"] == 100
    assert view["answeredQuestions"] == [question.id]
    assert "participants" not in view
    [embedded] = view["questionSet"]["categories"][0]["questions"]
    assert embedded["answered"] is True
    assert "answer" not in embedded
    assert "solution" not in embedded
    assert "hint" not in embedded


@pytest.mark.asyncio
async def test_admin_view_is_complete(event_service, cloud_event):
    event, _ = cloud_event

    view = await event_service.get_event(event.id, ADMIN)

    embedded = view["questionSet"]["categories"][0]["questions"][0]
    assert embedded["answer"] == "Wiz"
    assert embedded["solution"]["url"] == "https://example.com/solution"
    assert [p["user"] for p in view["participants"]] == ["alice"]


@pytest.mark.asyncio
async def test_non_participant_cannot_view(event_service, cloud_event):
    event, _ = cloud_event
    with pytest.raises(ForbiddenError):
        await event_service.get_event(event.id, BOB)
    with pytest.raises(ForbiddenError):
        await event_service.list_answers(event.id, BOB)


@pytest.mark.asyncio
async def test_category_visibility(event_service, cloud_event):
    event, _ = cloud_event

    await event_service.set_category_visibility(event.id, "Cloud", False)
    view = await event_service.get_event(event.id, ALICE)
    assert view["questionSet"]["categories"] == []

    board = await event_service.get_admin_board(event.id)
    assert board["categories"][0]["isVisible"] is False

    with pytest.raises(NotFoundError):
        await event_service.set_category_visibility(event.id, "Nope", True)


@pytest.mark.asyncio
async def test_answer_override_is_per_event(db, event_service, evaluator, cloud_event):
    event, question = cloud_event
    question_set = await make_question_set(db, [("Cloud", [question.id])], title="Copy")
    other = await make_event(event_service, question_set.id, code="OTHER")
    await event_service.join_event(ALICE, "OTHER")

    await event_service.override_answer(event.id, question.id, "Wiz Cloud")

    old = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")
    assert old.correct is False
    new = await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "wiz cloud")
    assert new.correct is True

    untouched = await evaluator.submit_answer(other.id, ALICE.user_id, question.id, "Wiz")
    assert untouched.correct is True
    assert (await db.get_question(question.id)).answer == "Wiz"


@pytest.mark.asyncio
async def test_list_answers_scoping(event_service, evaluator, cloud_event):
    event, question = cloud_event
    await event_service.join_event(BOB, "CLOUD101")
    await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "nope")
    await evaluator.submit_answer(event.id, BOB.user_id, question.id, "Wiz")

    assert len(await event_service.list_answers(event.id, ADMIN)) == 2
    assert [r.user_id for r in await event_service.list_answers(event.id, ADMIN, "bob")] == ["bob"]
    assert [r.user_id for r in await event_service.list_answers(event.id, ALICE)] == ["alice"]
    with pytest.raises(ForbiddenError):
        await event_service.list_answers(event.id, ALICE, user_id="bob")


@pytest.mark.asyncio
async def test_leaderboard_orders_by_score(db, event_service, evaluator, cloud_event):
    event, question = cloud_event
    await event_service.join_event(BOB, "CLOUD101")
    await evaluator.submit_answer(event.id, BOB.user_id, question.id, "Wiz")

    leaderboard = await event_service.get_leaderboard(event.id, ADMIN)

    assert [(e["user"], e["score"], e["solved"]) for e in leaderboard] == [
        ("bob", 100, 1),
        ("alice", 0, 0),
    ]


@pytest.mark.asyncio
async def test_delete_event_cascades(db, event_service, evaluator, cloud_event):
    event, question = cloud_event
    await evaluator.submit_answer(event.id, ALICE.user_id, question.id, "Wiz")

    await event_service.delete_event(event.id)

    with pytest.raises(NotFoundError):
        await db.get_event(event.id)
    assert await db.list_answers(event.id) == []
    assert await db.get_participants(event.id) == []


@pytest.mark.asyncio
async def test_question_set_in_use_cannot_be_deleted(question_set_service, cloud_event):
    event, _ = cloud_event
    with pytest.raises(ConflictError):
        await question_set_service.delete_question_set(event.question_set_ref)


@pytest.mark.asyncio
async def test_leaderboard_limit_never_exceeds_cap(config, event_service, cloud_event):
    event, _ = cloud_event
    config.config["ui"]["max_leaderboard_entries"] = 1
    await event_service.join_event(BOB, "CLOUD101")

    assert len(await event_service.get_leaderboard(event.id, ADMIN, -1)) == 1
    assert len(await event_service.get_leaderboard(event.id, ADMIN, 0)) == 1
    assert len(await event_service.get_leaderboard(event.id, ADMIN, 50)) == 1
