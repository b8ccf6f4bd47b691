import pytest

from core.exceptions import (
    AlreadyBuzzed,
    InvalidPhase,
    QuestionNotFound,
    SessionNotFound,
    UnknownPlayer,
    ValidationError,
    VersionConflict,
)
from core.game_controller import GameController
from core.session_registry import SessionRegistry
from models import GamePhase, Player
from services import event_ledger
from services.state_service import get_game_state, get_state_version


def _run_question(db, session_id):
    GameController.show_options(db, session_id)
    GameController.reveal(db, session_id)


def test_each_transition_bumps_version_once(db, quiz):
    initial = get_state_version(db, quiz)
    versions = [
        GameController.start(db, quiz),
        GameController.show_options(db, quiz),
        GameController.reveal(db, quiz),
        GameController.advance(db, quiz),
        GameController.show_options(db, quiz),
    ]

    assert versions == [initial + n for n in range(1, 6)]
    assert get_state_version(db, quiz) == initial + 5


def test_stale_advance_conflicts_without_mutation(db, quiz):
    GameController.start(db, quiz)
    seen = GameController.show_options(db, quiz)
    current = GameController.reveal(db, quiz)

    with pytest.raises(VersionConflict) as excinfo:
        GameController.advance(db, quiz, expected_version=seen)

    assert excinfo.value.current_version == current
    state = get_game_state(db, quiz)
    assert state.phase == GamePhase.REVEAL
    assert state.current_question_index == 0
    assert state.version == current

    assert GameController.advance(db, quiz, expected_version=current) == current + 1
    assert get_game_state(db, quiz).current_question_index == 1


def test_illegal_transitions_raise_and_keep_version(db, quiz):
    version = get_state_version(db, quiz)

    with pytest.raises(InvalidPhase):
        GameController.show_options(db, quiz)
    with pytest.raises(InvalidPhase):
        GameController.reveal(db, quiz)
    with pytest.raises(InvalidPhase):
        GameController.advance(db, quiz)

    GameController.start(db, quiz)
    with pytest.raises(InvalidPhase):
        GameController.start(db, quiz)
    with pytest.raises(InvalidPhase):
        GameController.reveal(db, quiz)

    assert get_state_version(db, quiz) == version + 1
    assert get_game_state(db, quiz).phase == GamePhase.QUESTION_SHOWN


def test_start_requires_questions(db):
    SessionRegistry.ensure_session(db, "empty")

    with pytest.raises(QuestionNotFound):
        GameController.start(db, "empty")
    assert get_game_state(db, "empty").phase == GamePhase.WAITING
    assert get_state_version(db, "empty") == 1


def test_commands_on_unknown_session(db):
    with pytest.raises(SessionNotFound):
        GameController.start(db, "nowhere")
    with pytest.raises(SessionNotFound):
        GameController.join(db, "nowhere", "Ana")


def test_last_advance_finishes_game(db, quiz):
    GameController.start(db, quiz)
    for index in range(3):
        assert get_game_state(db, quiz).current_question_index == index
        _run_question(db, quiz)
        GameController.advance(db, quiz)

    state = get_game_state(db, quiz)
    assert state.phase == GamePhase.FINISHED
    assert state.game_started is False

    # a finished game can be started again from the first question
    GameController.start(db, quiz)
    state = get_game_state(db, quiz)
    assert state.phase == GamePhase.QUESTION_SHOWN
    assert state.current_question_index == 0
    assert state.game_started is True


def test_advance_keeps_previous_question_events(db, join_players):
    ids = join_players("Ana")
    GameController.start(db, "room1")
    GameController.buzz(db, "room1", ids["Ana"], 0)
    _run_question(db, "room1")
    GameController.advance(db, "room1")

    assert len(event_ledger.get_buzzers(db, "room1", 0)) == 1
    state = get_game_state(db, "room1")
    assert state.first_buzzer_player_id is None
    assert state.buzz_locked is False


def test_start_clears_previous_game(db, join_players):
    ids = join_players("Ana")
    GameController.start(db, "room1")
    GameController.buzz(db, "room1", ids["Ana"], 0)
    GameController.soft_reset(db, "room1")
    GameController.start(db, "room1")

    assert event_ledger.get_buzzers(db, "room1", 0) == []


def test_soft_reset_keeps_players_and_questions(db, join_players, answer_indexes):
    ids = join_players("Ana", "Bo")
    GameController.start(db, "room1")
    GameController.buzz(db, "room1", ids["Ana"], 0)
    GameController.show_options(db, "room1")
    correct, _ = answer_indexes("room1", 0)
    GameController.submit_answer(db, "room1", ids["Bo"], 0, correct)
    GameController.mark_spoken(db, "room1", ids["Ana"], 0)
    before = get_state_version(db, "room1")

    version = GameController.soft_reset(db, "room1")

    assert version == before + 1
    state = get_game_state(db, "room1")
    assert state.phase == GamePhase.WAITING
    assert state.game_started is False
    assert state.current_question_index == 0
    assert state.first_buzzer_player_id is None
    assert event_ledger.get_buzzers(db, "room1", 0) == []
    assert event_ledger.get_all_answers(db, "room1") == []
    assert event_ledger.get_spoken_players(db, "room1", 0) == []
    assert db.query(Player).filter(Player.session_id == "room1").count() == 2


def test_full_reset_removes_players(db, join_players):
    join_players("Ana", "Bo")
    GameController.start(db, "room1")

    GameController.full_reset(db, "room1")

    assert db.query(Player).filter(Player.session_id == "room1").count() == 0
    assert get_game_state(db, "room1").phase == GamePhase.WAITING
    # the nickname is free again
    player, existing = GameController.join(db, "room1", "Ana")
    assert existing is False


def test_resets_accept_expected_version(db, quiz):
    version = get_state_version(db, quiz)

    with pytest.raises(VersionConflict):
        GameController.soft_reset(db, quiz, expected_version=version - 1)
    assert GameController.full_reset(db, quiz, expected_version=version) == version + 1


def test_buzz_lock(db, join_players):
    ids = join_players("Ana", "Bo")
    with pytest.raises(InvalidPhase):
        GameController.set_buzz_lock(db, "room1", True)

    GameController.start(db, "room1")
    GameController.set_buzz_lock(db, "room1", True)
    with pytest.raises(InvalidPhase):
        GameController.buzz(db, "room1", ids["Ana"], 0)

    GameController.set_buzz_lock(db, "room1", False)
    GameController.buzz(db, "room1", ids["Ana"], 0)
    assert get_game_state(db, "room1").first_buzzer_player_id == ids["Ana"]


def test_join_is_idempotent_by_nickname(db, quiz):
    first, existing = GameController.join(db, quiz, "  Ana  ")
    assert existing is False
    assert first.nickname == "Ana"

    again, existing = GameController.join(db, quiz, "Ana")
    assert existing is True
    assert again.id == first.id

    with pytest.raises(ValidationError):
        GameController.join(db, quiz, "   ")


def test_rejoin_reactivates_player(db, join_players):
    ids = join_players("Ana")
    GameController.set_player_active(db, "room1", ids["Ana"], False)
    GameController.start(db, "room1")

    with pytest.raises(UnknownPlayer):
        GameController.buzz(db, "room1", ids["Ana"], 0)

    player, existing = GameController.join(db, "room1", "Ana")
    assert existing is True
    assert player.active is True
    GameController.buzz(db, "room1", ids["Ana"], 0)

    with pytest.raises(AlreadyBuzzed):
        GameController.buzz(db, "room1", ids["Ana"], 0)


def test_set_player_active_unknown_player(db, quiz):
    with pytest.raises(UnknownPlayer):
        GameController.set_player_active(db, quiz, "missing", False)
