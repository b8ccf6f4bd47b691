import pytest

from core.exceptions import SessionNotFound, ValidationError
from core.session_registry import SessionRegistry
from core.game_controller import GameController
from models import Buzzer, GameState, Player, Question
from services.board_service import DEFAULT_NOTES, get_notes
from services.question_bank import DEFAULT_QUESTIONS, get_question_count


def test_ensure_session_is_idempotent(db):
    assert SessionRegistry.ensure_session(db, "room1", default_questions=DEFAULT_QUESTIONS) is True
    assert SessionRegistry.ensure_session(db, "room1", default_questions=DEFAULT_QUESTIONS) is False

    assert get_question_count(db, "room1") == len(DEFAULT_QUESTIONS)
    assert get_notes(db, "room1")["content"] == DEFAULT_NOTES
    assert db.query(GameState).filter(GameState.session_id == "room1").count() == 1


def test_ensure_session_rejects_bad_ids(db):
    with pytest.raises(ValidationError):
        SessionRegistry.ensure_session(db, "")
    with pytest.raises(ValidationError):
        SessionRegistry.ensure_session(db, "x" * 65)


def test_create_session_generates_id(db):
    created = SessionRegistry.create_session(db, "Friday quiz")

    assert created.id.startswith("session_")
    assert created.name == "Friday quiz"
    assert SessionRegistry.switch_session(db, created.id) is True
    assert SessionRegistry.switch_session(db, "session_missing") is False

    with pytest.raises(ValidationError):
        SessionRegistry.create_session(db, "   ")


def test_list_sessions_newest_first(db):
    first = SessionRegistry.create_session(db, "First")
    second = SessionRegistry.create_session(db, "Second")

    ids = [s.id for s in SessionRegistry.list_sessions(db)]
    assert set(ids) == {first.id, second.id}
    created = {s.id: s.created_at for s in SessionRegistry.list_sessions(db)}
    assert created[ids[0]] >= created[ids[1]]


def test_sessions_are_isolated(db):
    SessionRegistry.ensure_session(db, "a", default_questions=DEFAULT_QUESTIONS)
    SessionRegistry.ensure_session(db, "b", default_questions=DEFAULT_QUESTIONS)
    GameController.join(db, "a", "Ana")
    GameController.start(db, "a")

    assert db.query(Player).filter(Player.session_id == "b").count() == 0
    assert db.get(GameState, "b").game_started is False
    # the same nickname can exist in two sessions
    _, existing = GameController.join(db, "b", "Ana")
    assert existing is False


def test_delete_session_cascades(db):
    SessionRegistry.ensure_session(db, "room1", default_questions=DEFAULT_QUESTIONS)
    player, _ = GameController.join(db, "room1", "Ana")
    GameController.start(db, "room1")
    GameController.buzz(db, "room1", player.id, 0)

    SessionRegistry.delete_session(db, "room1")

    assert SessionRegistry.switch_session(db, "room1") is False
    for model in (GameState, Player, Question, Buzzer):
        assert db.query(model).filter(model.session_id == "room1").count() == 0
    with pytest.raises(SessionNotFound):
        SessionRegistry.delete_session(db, "room1")
