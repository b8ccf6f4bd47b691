"""
State API Endpoints - 短輪詢

前端（主持人與玩家）定期呼叫 GET /state，
比對 version 決定要不要重畫畫面。所有 endpoint 都是純讀取。
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from core.exceptions import QuizGameException
from services.snapshot_service import get_answer_stats, get_results, get_snapshot
from api.deps import ensured_session
from api.errors import game_error_response

router = APIRouter(prefix="/api/sessions", tags=["state"])
logger = logging.getLogger(__name__)


@router.get("/{session_id}/state")
def get_game_state(session_id: str = Depends(ensured_session), db: Session = Depends(get_db)):
    """
    完整快照

    返回：
        - game_state: phase / current_question_index / first_buzzer / buzz_locked / version
        - current_question: 依階段遮蔽的題目
        - buzzers / answers / spoken_players: 目前題目
        - players: 加入順序
    """
    try:
        return get_snapshot(db, session_id)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to get state for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{session_id}/answers/{question_index}/stats")
def answer_stats(
    question_index: int,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    單題作答統計（主持人）
    """
    try:
        return get_answer_stats(db, session_id, question_index)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to get answer stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{session_id}/results")
def results(session_id: str = Depends(ensured_session), db: Session = Depends(get_db)):
    try:
        return get_results(db, session_id)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to get results for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
