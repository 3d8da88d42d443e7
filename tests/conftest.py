"""
Shared fixtures: a fresh SQLite database per test, the services wired the
way EventSystem wires them, and a seeded "Cloud101" event.
"""

from datetime import timedelta

import pytest

from ctf_events.config import EventConfig
from ctf_events.database import DatabaseManager
from ctf_events.events import EventService
from ctf_events.models import Category, Hint, Identity, Solution, utcnow
from ctf_events.propagation import SnapshotPropagator
from ctf_events.questions import QuestionService, QuestionSetService
from ctf_events.scoring import AnswerEvaluator

ADMIN = Identity(user_id="admin-1", role="admin", email="admin@example.com")
ALICE = Identity(
    user_id="alice",
    email="alice@example.com",
    first_name="Alice",
    last_name="Smith",
    organization="Acme",
)
BOB = Identity(user_id="bob", email="bob@example.com", display_name="Bobby")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CTF_NAME",
        "HINT_MISMATCH_POLICY",
        "AUDIT_REPEAT_ATTEMPTS",
        "LEADERBOARD_ENABLED",
        "HTML_PAGES_ENABLED",
        "SHOW_TIMESTAMPS",
        "MAX_LEADERBOARD_ENTRIES",
        "MAX_ANSWER_LENGTH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path):
    return EventConfig(str(tmp_path / "ctf_events.json"))


@pytest.fixture
async def db(tmp_path, config):
    manager = DatabaseManager(str(tmp_path / "events.db"), config)
    await manager.init_db()
    return manager


@pytest.fixture
def propagator(db):
    return SnapshotPropagator(db)


@pytest.fixture
def question_service(db, config, propagator):
    return QuestionService(db, config, propagator)


@pytest.fixture
def question_set_service(db, propagator):
    return QuestionSetService(db, propagator)


@pytest.fixture
def event_service(db, config):
    return EventService(db, config)


@pytest.fixture
def evaluator(db, config):
    return AnswerEvaluator(db, config)


async def make_question(db, title="Cloud101", answer="Wiz", points=100, **overrides):
    """Insert a catalog question with sensible defaults."""
    values = dict(
        title=title,
        description=f"{title} description",
        points=points,
        difficulty="medium",
        product="Wiz Cloud",
        answer=answer,
        hint=Hint(text="think security", point_reduction=10, reduction_type="percentage"),
        solution=Solution(description="Read the docs", url="https://example.com/solution"),
    )
    values.update(overrides)
    return await db.create_question(**values)


async def make_question_set(db, categories, title="Cloud Basics"):
    """
    Insert a question set.

    @param categories: List of (name, [question ids]) pairs
    """
    return await db.create_question_set(
        title=title,
        description=f"{title} set",
        categories=[Category(name=name, questions=list(ids)) for name, ids in categories],
    )


async def make_event(event_service, question_set_id, code="CLOUD101", **overrides):
    body = {
        "name": f"Event {code}",
        "description": "Quarterly CTF",
        "questionSet": question_set_id,
        "eventCode": code,
        "eventDate": (utcnow() - timedelta(minutes=5)).isoformat(),
        "duration": 120,
    }
    body.update(overrides)
    return await event_service.create_event(ADMIN, body)


@pytest.fixture
async def cloud_event(db, event_service):
    """
    One event with a single "Cloud" category holding Cloud101 (answer "Wiz",
    100 points, 10% hint). Alice has joined.
    """
    question = await make_question(db)
    question_set = await make_question_set(db, [("Cloud", [question.id])])
    event = await make_event(event_service, question_set.id)
    await event_service.join_event(ALICE, "CLOUD101")
    return event, question
