import random
import threading
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from conftest import SIMPLE_QUESTIONS
from core.exceptions import AlreadyBuzzed, StorageBusy, VersionConflict
from core.game_controller import GameController
from core.session_registry import SessionRegistry
from database import Base, build_engine, get_db
from services import event_ledger
from services.state_service import get_game_state, get_state_version

WORKERS = 8


@pytest.fixture
def file_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}", busy_timeout=10.0)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def running_game(file_factory):
    db = file_factory()
    try:
        SessionRegistry.ensure_session(db, "race")
        GameController.update_questions(db, "race", SIMPLE_QUESTIONS, random.Random(3))
        player_ids = [
            GameController.join(db, "race", f"player{n}")[0].id for n in range(WORKERS)
        ]
        GameController.start(db, "race")
    finally:
        db.close()
    return player_ids


def _run_together(file_factory, jobs):
    """每個 job 在自己的執行緒和 session 裡執行，用 barrier 讓它們同時開始"""
    barrier = threading.Barrier(len(jobs))
    outcomes = [None] * len(jobs)

    def worker(slot, job):
        db = file_factory()
        try:
            barrier.wait()
            outcomes[slot] = job(db)
        except Exception as e:
            outcomes[slot] = e
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(n, job)) for n, job in enumerate(jobs)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes


def test_concurrent_buzzes_are_all_recorded_in_order(file_factory, running_game):
    jobs = [
        (lambda db, pid=pid: GameController.buzz(db, "race", pid, 0).player_id)
        for pid in running_game
    ]

    outcomes = _run_together(file_factory, jobs)

    assert sorted(outcomes) == sorted(running_game)
    db = file_factory()
    try:
        buzzers = event_ledger.get_buzzers(db, "race", 0)
        assert len(buzzers) == WORKERS
        timestamps = [b["timestamp"] for b in buzzers]
        assert timestamps == sorted(timestamps)
        assert get_game_state(db, "race").first_buzzer_player_id == buzzers[0]["player_id"]

        with pytest.raises(AlreadyBuzzed):
            GameController.buzz(db, "race", running_game[0], 0)
    finally:
        db.close()


def test_same_player_buzzing_concurrently_counts_once(file_factory, running_game):
    player_id = running_game[0]
    jobs = [(lambda db: GameController.buzz(db, "race", player_id, 0)) for _ in range(4)]

    outcomes = _run_together(file_factory, jobs)

    errors = [o for o in outcomes if isinstance(o, Exception)]
    assert len(errors) == 3
    assert all(isinstance(e, AlreadyBuzzed) for e in errors)
    db = file_factory()
    try:
        assert len(event_ledger.get_buzzers(db, "race", 0)) == 1
    finally:
        db.close()


def test_only_one_advance_wins_per_version(file_factory, running_game):
    db = file_factory()
    try:
        GameController.show_options(db, "race")
        GameController.reveal(db, "race")
        expected = get_state_version(db, "race")
    finally:
        db.close()

    jobs = [
        (lambda db: GameController.advance(db, "race", expected_version=expected))
        for _ in range(4)
    ]
    outcomes = _run_together(file_factory, jobs)

    winners = [o for o in outcomes if isinstance(o, int)]
    conflicts = [o for o in outcomes if isinstance(o, VersionConflict)]
    assert winners == [expected + 1]
    assert len(conflicts) == 3
    assert all(c.current_version == expected + 1 for c in conflicts)

    db = file_factory()
    try:
        assert get_game_state(db, "race").current_question_index == 1
    finally:
        db.close()


def test_concurrent_answers_keep_one_row_per_player(file_factory, running_game):
    db = file_factory()
    try:
        GameController.show_options(db, "race")
    finally:
        db.close()

    jobs = [
        (lambda db, pid=pid: GameController.submit_answer(db, "race", pid, 0, 0)[0].player_id)
        for pid in running_game
    ]
    jobs += [(lambda db: GameController.submit_answer(db, "race", running_game[0], 0, 1)[0].player_id)]

    outcomes = _run_together(file_factory, jobs)

    assert not [o for o in outcomes if isinstance(o, Exception)]
    db = file_factory()
    try:
        answers = event_ledger.get_answers(db, "race", 0)
        assert sorted(a["player_id"] for a in answers) == sorted(running_game)
    finally:
        db.close()


@pytest.fixture
def held_write_lock(tmp_path, running_game):
    """另一條連線持有寫鎖（BEGIN IMMEDIATE），測試結束才釋放"""
    holder = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    raw = holder.raw_connection()
    raw.cursor().execute("BEGIN IMMEDIATE")
    try:
        yield
    finally:
        raw.rollback()
        raw.close()
        holder.dispose()


@pytest.fixture
def impatient_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}", busy_timeout=0.5)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def test_lock_wait_expiry_raises_storage_busy(impatient_factory, running_game, held_write_lock):
    db = impatient_factory()
    try:
        began = time.monotonic()
        with pytest.raises(StorageBusy):
            GameController.buzz(db, "race", running_game[0], 0)
        assert time.monotonic() - began < 3.0

        assert event_ledger.get_buzzers(db, "race", 0) == []
    finally:
        db.close()


def test_lock_wait_expiry_is_reported_as_503(impatient_factory, running_game, held_write_lock):
    from main import app

    def override_get_db():
        session = impatient_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        response = TestClient(app).post(
            "/api/sessions/race/buzz",
            json={"player_id": running_game[0], "question_index": 0},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json()["reason"] == "storage_busy"
