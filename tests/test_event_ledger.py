import pytest

from core.exceptions import (
    AlreadyBuzzed,
    InvalidPhase,
    QuestionNotFound,
    UnknownPlayer,
    ValidationError,
)
from core.game_controller import GameController
from models import Answer
from services import event_ledger
from services.state_service import get_game_state


@pytest.fixture
def players(db, join_players):
    ids = join_players("Ana", "Bo", "Cy")
    GameController.start(db, "room1")
    return ids


def test_buzzers_ordered_and_unique(db, players):
    GameController.buzz(db, "room1", players["Bo"], 0)
    GameController.buzz(db, "room1", players["Ana"], 0)

    with pytest.raises(AlreadyBuzzed):
        GameController.buzz(db, "room1", players["Bo"], 0)

    buzzers = event_ledger.get_buzzers(db, "room1", 0)
    assert [b["nickname"] for b in buzzers] == ["Bo", "Ana"]
    assert buzzers[0]["timestamp"] <= buzzers[1]["timestamp"]
    assert get_game_state(db, "room1").first_buzzer_player_id == players["Bo"]


def test_buzz_outside_question_shown(db, players):
    GameController.show_options(db, "room1")

    with pytest.raises(InvalidPhase):
        GameController.buzz(db, "room1", players["Ana"], 0)
    assert event_ledger.get_buzzers(db, "room1", 0) == []


def test_buzz_after_buzzing_in_options_phase_is_still_invalid_phase(db, players):
    GameController.buzz(db, "room1", players["Ana"], 0)
    GameController.show_options(db, "room1")

    with pytest.raises(InvalidPhase):
        GameController.buzz(db, "room1", players["Ana"], 0)


def test_buzz_on_other_question(db, players):
    with pytest.raises(InvalidPhase):
        GameController.buzz(db, "room1", players["Ana"], 1)


def test_buzz_unknown_player(db, players):
    with pytest.raises(UnknownPlayer):
        GameController.buzz(db, "room1", "nobody", 0)


def test_answer_upsert_keeps_last_write(db, players, answer_indexes):
    GameController.show_options(db, "room1")
    correct, wrong = answer_indexes("room1", 0)

    answer, correct_text = GameController.submit_answer(db, "room1", players["Ana"], 0, wrong)
    assert answer.is_correct is False
    answer, _ = GameController.submit_answer(db, "room1", players["Ana"], 0, correct)
    assert answer.is_correct is True
    assert correct_text == "4"

    rows = db.query(Answer).filter(Answer.player_id == players["Ana"]).all()
    assert len(rows) == 1
    assert rows[0].answer_index == correct


def test_answer_phase_guards(db, players):
    with pytest.raises(InvalidPhase):
        GameController.submit_answer(db, "room1", players["Ana"], 0, 0)

    GameController.show_options(db, "room1")
    GameController.reveal(db, "room1")
    with pytest.raises(InvalidPhase):
        GameController.submit_answer(db, "room1", players["Ana"], 0, 0)

    assert event_ledger.get_answers(db, "room1", 0) == []


def test_answer_index_out_of_range(db, players):
    GameController.show_options(db, "room1")

    with pytest.raises(ValidationError):
        GameController.submit_answer(db, "room1", players["Ana"], 0, 3)


def test_answer_unknown_player(db, players):
    GameController.show_options(db, "room1")

    with pytest.raises(UnknownPlayer):
        GameController.submit_answer(db, "room1", "nobody", 0, 0)


def test_spoken_marks_are_idempotent(db, players):
    assert GameController.mark_spoken(db, "room1", players["Cy"], 0) is True
    assert GameController.mark_spoken(db, "room1", players["Cy"], 0) is False

    assert event_ledger.get_spoken_players(db, "room1", 0) == [players["Cy"]]


def test_spoken_needs_existing_question(db, players):
    with pytest.raises(QuestionNotFound):
        GameController.mark_spoken(db, "room1", players["Cy"], 9)


def test_clear_single_question_scope(db, players):
    GameController.buzz(db, "room1", players["Ana"], 0)
    GameController.mark_spoken(db, "room1", players["Bo"], 1)

    event_ledger.clear_for_question(db, "room1", 1)
    db.commit()

    assert len(event_ledger.get_buzzers(db, "room1", 0)) == 1
    assert event_ledger.get_spoken_players(db, "room1", 1) == []
