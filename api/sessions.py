"""
Session API Endpoints

職責：
1. 建立 / 列出 / 檢查 / 刪除場次
2. 存檔、載入存檔、列出與刪除存檔
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from database import Settings, get_db, get_settings
from schemas import CreateSessionIn, LoadSessionOut, SaveSessionIn, SavedSessionOut, SessionOut
from core.archive_manager import SessionArchiveManager
from core.session_registry import SessionRegistry
from core.exceptions import QuizGameException
from services.question_bank import DEFAULT_QUESTIONS
from api.deps import ensured_session
from api.errors import game_error_response

router = APIRouter(prefix="/api", tags=["sessions"])
logger = logging.getLogger(__name__)


@router.post("/sessions", response_model=SessionOut)
def create_session(
    session_data: CreateSessionIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    建立新場次（自動產生 ID）
    """
    try:
        default_questions = DEFAULT_QUESTIONS if settings.seed_default_questions else None
        quiz_session = SessionRegistry.create_session(db, session_data.name, default_questions)
        return SessionOut.model_validate(quiz_session)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to create session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/sessions", response_model=List[SessionOut])
def list_sessions(db: Session = Depends(get_db)):
    try:
        return [SessionOut.model_validate(s) for s in SessionRegistry.list_sessions(db)]

    except Exception as e:
        logger.error(f"Failed to list sessions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/sessions/{session_id}/exists")
def session_exists(session_id: str, db: Session = Depends(get_db)):
    """
    切換場次前的檢查（伺服器端不保存「目前場次」，切換完全由前端決定）
    """
    try:
        return {"session_id": session_id, "exists": SessionRegistry.switch_session(db, session_id)}

    except Exception as e:
        logger.error(f"Failed to check session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, db: Session = Depends(get_db)):
    """
    刪除場次，連同玩家、題庫、狀態與所有事件（存檔不受影響）
    """
    try:
        SessionRegistry.delete_session(db, session_id)
        return {"success": True}

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to delete session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


# ============ 存檔 ============

@router.post("/sessions/{session_id}/saves", response_model=SavedSessionOut)
def save_session(
    save_data: Optional[SaveSessionIn] = None,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    存檔（題庫、玩家、筆記、訊息、遊戲狀態）

    有設定 backup_dir 時，存檔後另外備份整個資料庫檔案
    """
    save_data = save_data or SaveSessionIn()
    try:
        saved = SessionArchiveManager.save_session(
            db,
            session_id,
            name=save_data.name,
            save_id=save_data.save_id,
            backup_dir=settings.backup_dir
        )
        return SavedSessionOut.model_validate(saved)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to save session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/sessions/{session_id}/saves/{save_id}/load", response_model=LoadSessionOut)
def load_session(
    save_id: str,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    把存檔載入到這個場次（會取代目前的題庫、玩家、筆記與訊息）
    """
    try:
        return LoadSessionOut(**SessionArchiveManager.load_session(db, save_id, session_id))

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to load {save_id} into session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/saves")
def list_saves(db: Session = Depends(get_db)):
    try:
        return SessionArchiveManager.list_saved_sessions(db)

    except Exception as e:
        logger.error(f"Failed to list saved sessions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/saves/{save_id}")
def delete_save(save_id: str, db: Session = Depends(get_db)):
    try:
        SessionArchiveManager.delete_saved_session(db, save_id)
        return {"success": True}

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to delete saved session {save_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
