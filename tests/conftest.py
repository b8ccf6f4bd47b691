import os
import random
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from database import Base, build_engine, get_db  # noqa: E402
import models  # noqa: E402,F401
from core.game_controller import GameController  # noqa: E402
from core.session_registry import SessionRegistry  # noqa: E402
from services.question_bank import get_question  # noqa: E402

SESSION_ID = "room1"

SIMPLE_QUESTIONS = [
    {
        "text": "What is 2 + 2?",
        "options": ["3", "4", "5"],
        "correct_index": 1,
        "explanation": "Basic arithmetic.",
    },
    {
        "text": "Which city is the capital of France?",
        "options": ["Paris", "Rome"],
        "correct_index": 0,
    },
    {
        "text": "Which is the largest planet?",
        "options": ["Mars", "Venus", "Jupiter", "Earth"],
        "correct_index": 2,
        "image_ref": "planets.png",
    },
]


@pytest.fixture
def engine():
    engine = build_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def quiz(db):
    """A session holding SIMPLE_QUESTIONS (shuffled with a fixed seed), no players."""
    SessionRegistry.ensure_session(db, SESSION_ID)
    GameController.update_questions(db, SESSION_ID, SIMPLE_QUESTIONS, random.Random(7))
    return SESSION_ID


@pytest.fixture
def join_players(db, quiz):
    def _join(*nicknames):
        ids = {}
        for nickname in nicknames:
            player, _ = GameController.join(db, quiz, nickname)
            ids[nickname] = player.id
        return ids

    return _join


@pytest.fixture
def answer_indexes(db):
    """(correct, wrong) answer index of a question after shuffling."""
    def _indexes(session_id, question_index):
        question = get_question(db, session_id, question_index)
        correct = question.correct_index
        return correct, (correct + 1) % len(question.options)

    return _indexes


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
