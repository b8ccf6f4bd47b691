"""
共用的 FastAPI dependencies
"""
from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import Settings, get_db, get_settings
from core.exceptions import QuizGameException
from core.session_registry import SessionRegistry
from services.question_bank import DEFAULT_QUESTIONS
from api.errors import game_error_body

logger = logging.getLogger(__name__)


def ensured_session(
    session_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
) -> str:
    """
    第一次引用某個場次 ID 時自動建立（預設狀態、筆記，以及可選的預設題庫）

    返回：
        session_id（給 endpoint 直接使用）
    """
    default_questions = DEFAULT_QUESTIONS if settings.seed_default_questions else None
    try:
        SessionRegistry.ensure_session(db, session_id, default_questions=default_questions)
    except QuizGameException as e:
        raise HTTPException(status_code=e.status_code, detail=game_error_body(e))
    except Exception as e:
        logger.error(f"Failed to ensure session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
    return session_id
