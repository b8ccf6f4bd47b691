from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from core.archive_manager import SessionArchiveManager
from core.exceptions import SavedSessionNotFound, SessionNotFound, ValidationError
from core.game_controller import GameController
from core.board_manager import ClassBoardManager
from core.session_registry import SessionRegistry
from database import Base, build_engine
from models import GamePhase, SavedSession
from services import archive_service, event_ledger
from services.archive_service import SessionExport, build_export
from services.board_service import get_messages, get_notes
from services.question_bank import get_questions
from services.snapshot_service import get_players
from services.state_service import get_game_state, get_state_version


def _question_rows(db, session_id):
    return [
        (q.text, list(q.options), q.correct_index, q.explanation, q.image_ref)
        for q in get_questions(db, session_id)
    ]


@pytest.fixture
def saved(db, join_players):
    join_players("Ana", "Bo", "Cy")
    ClassBoardManager.save_notes(db, "room1", "# Lesson 1")
    ClassBoardManager.send_message(db, "room1", "Welcome!", "success", 10)
    return SessionArchiveManager.save_session(db, "room1", name="Monday class")


def test_save_and_load_into_fresh_session(db, saved):
    SessionRegistry.ensure_session(db, "room2")

    result = SessionArchiveManager.load_session(db, saved.id, "room2")

    assert result["session_name"] == "Monday class"
    assert result["question_count"] == 3
    assert result["player_count"] == 3
    assert _question_rows(db, "room2") == _question_rows(db, "room1")
    assert [p.nickname for p in get_players(db, "room2")] == ["Ana", "Bo", "Cy"]
    assert get_notes(db, "room2")["content"] == "# Lesson 1"
    assert [m["text"] for m in get_messages(db, "room2")] == ["Welcome!"]


def test_restored_player_ids_are_regenerated_when_taken(db, saved):
    SessionRegistry.ensure_session(db, "room2")
    SessionArchiveManager.load_session(db, saved.id, "room2")

    original_ids = {p.id for p in get_players(db, "room1")}
    restored_ids = {p.id for p in get_players(db, "room2")}
    assert len(restored_ids) == 3
    assert original_ids.isdisjoint(restored_ids)


def test_load_into_source_session_keeps_ids(db, saved):
    original_ids = [p.id for p in get_players(db, "room1")]
    GameController.full_reset(db, "room1")

    SessionArchiveManager.load_session(db, saved.id, "room1")

    assert [p.id for p in get_players(db, "room1")] == original_ids


def test_load_clears_ledger_and_bumps_version(db, saved):
    players = {p.nickname: p.id for p in get_players(db, "room1")}
    GameController.start(db, "room1")
    GameController.buzz(db, "room1", players["Ana"], 0)
    before = get_state_version(db, "room1")

    result = SessionArchiveManager.load_session(db, saved.id, "room1")

    assert result["version"] == before + 1
    assert event_ledger.get_buzzers(db, "room1", 0) == []
    state = get_game_state(db, "room1")
    assert state.phase == GamePhase.WAITING
    assert state.first_buzzer_player_id is None


def test_export_round_trips_through_json(db, saved):
    export = build_export(db, "room1")

    assert SessionExport.model_validate_json(export.model_dump_json()) == export
    stored = SessionExport.model_validate_json(db.get(SavedSession, saved.id).session_data)
    assert [p.nickname for p in stored.players] == ["Ana", "Bo", "Cy"]
    assert stored.questions[0].original_correct_text == "4"


def test_list_and_delete_saves(db, saved):
    SessionArchiveManager.save_session(db, "room1", name="Second")
    listing = SessionArchiveManager.list_saved_sessions(db)

    assert {s["name"] for s in listing} == {"Monday class", "Second"}
    entry = next(s for s in listing if s["id"] == saved.id)
    assert entry["player_count"] == 3
    assert entry["question_count"] == 3

    SessionArchiveManager.delete_saved_session(db, saved.id)
    with pytest.raises(SavedSessionNotFound):
        SessionArchiveManager.delete_saved_session(db, saved.id)
    with pytest.raises(SavedSessionNotFound):
        SessionArchiveManager.load_session(db, saved.id, "room1")


def test_saving_with_same_id_overwrites(db, saved):
    SessionArchiveManager.save_session(db, "room1", name="Renamed", save_id=saved.id)

    assert db.query(SavedSession).count() == 1
    assert db.get(SavedSession, saved.id).name == "Renamed"


def test_load_into_unknown_session(db, saved):
    with pytest.raises(SessionNotFound):
        SessionArchiveManager.load_session(db, saved.id, "nowhere")


def test_corrupt_save_is_rejected_without_changes(db, saved):
    row = db.get(SavedSession, saved.id)
    row.session_data = '{"format_version": 1}'
    db.commit()
    before = _question_rows(db, "room1")

    with pytest.raises(ValidationError):
        SessionArchiveManager.load_session(db, saved.id, "room1")
    assert _question_rows(db, "room1") == before


def test_saves_survive_session_deletion(db, saved):
    SessionRegistry.delete_session(db, "room1")

    assert db.get(SavedSession, saved.id) is not None


def test_backup_skips_memory_database(db, saved):
    assert archive_service.backup_database(db, "unused") is None


def test_backup_copies_file_database(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'quiz.db'}")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine)()
    try:
        SessionRegistry.ensure_session(session, "room1")
        saved = SessionArchiveManager.save_session(
            session, "room1", name="Backed up", backup_dir=str(tmp_path / "backups")
        )
        saved_name = saved.name
        path = archive_service.backup_database(session, str(tmp_path / "backups"))
    finally:
        session.close()
        engine.dispose()

    assert saved_name == "Backed up"
    assert Path(path).exists()
    assert len(list((tmp_path / "backups").iterdir())) == 2
