"""
Game API Endpoints（主持人）

所有階段轉換都回傳新的 version；
body 可以帶 expected_version，版本不符時回傳 409 與 current_version。
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Callable, Optional
import logging

from database import get_db
from schemas import BuzzLockIn, TransitionIn, TransitionOut
from core.game_controller import GameController
from core.exceptions import QuizGameException
from api.deps import ensured_session
from api.errors import game_error_response

router = APIRouter(prefix="/api/sessions", tags=["game"])
logger = logging.getLogger(__name__)


def _run_transition(
    operation: Callable,
    db: Session,
    session_id: str,
    body: Optional[TransitionIn]
):
    expected_version = body.expected_version if body else None
    try:
        version = operation(db, session_id, expected_version=expected_version)
        return TransitionOut(version=version)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to {operation.__name__} for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/game/start", response_model=TransitionOut)
def start_game(
    body: Optional[TransitionIn] = None,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    開始遊戲：waiting / finished -> question_shown（第 0 題）
    """
    return _run_transition(GameController.start, db, session_id, body)


@router.post("/{session_id}/game/show-options", response_model=TransitionOut)
def show_options(
    body: Optional[TransitionIn] = None,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    return _run_transition(GameController.show_options, db, session_id, body)


@router.post("/{session_id}/game/reveal", response_model=TransitionOut)
def reveal(
    body: Optional[TransitionIn] = None,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    return _run_transition(GameController.reveal, db, session_id, body)


@router.post("/{session_id}/game/next", response_model=TransitionOut)
def next_question(
    body: Optional[TransitionIn] = None,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    下一題：reveal -> 下一題，或最後一題之後 -> finished

    建議帶 expected_version：重送或兩個主持人同時按下時，只有一個會成功
    """
    return _run_transition(GameController.advance, db, session_id, body)


@router.post("/{session_id}/game/soft-reset", response_model=TransitionOut)
def soft_reset(
    body: Optional[TransitionIn] = None,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    軟重置：保留玩家與題庫，清除所有搶答與作答
    """
    return _run_transition(GameController.soft_reset, db, session_id, body)


@router.post("/{session_id}/game/full-reset", response_model=TransitionOut)
def full_reset(
    body: Optional[TransitionIn] = None,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    完全重置：同軟重置，另外刪除所有玩家
    """
    return _run_transition(GameController.full_reset, db, session_id, body)


@router.post("/{session_id}/game/buzz-lock", response_model=TransitionOut)
def set_buzz_lock(
    body: BuzzLockIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    鎖定 / 解鎖搶答鈴（只在 question_shown）
    """
    try:
        version = GameController.set_buzz_lock(
            db, session_id, body.locked, expected_version=body.expected_version
        )
        return TransitionOut(version=version)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to set buzz lock for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
