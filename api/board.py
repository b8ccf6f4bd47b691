"""
Board API Endpoints：課堂筆記與廣播訊息
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List
import logging

from database import Settings, get_db, get_settings
from schemas import MessageIn, MessageOut, NotesIn, NotesOut
from core.board_manager import ClassBoardManager
from core.exceptions import QuizGameException
from services.board_service import get_messages, get_notes, message_to_dict
from api.deps import ensured_session
from api.errors import game_error_response

router = APIRouter(prefix="/api/sessions", tags=["board"])
logger = logging.getLogger(__name__)


@router.get("/{session_id}/notes", response_model=NotesOut)
def read_notes(session_id: str = Depends(ensured_session), db: Session = Depends(get_db)):
    try:
        return NotesOut(**get_notes(db, session_id))

    except Exception as e:
        logger.error(f"Failed to read notes for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/{session_id}/notes", response_model=NotesOut)
def write_notes(
    notes_data: NotesIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    儲存筆記（markdown 原文，不在伺服器端轉換）
    """
    try:
        return NotesOut(**ClassBoardManager.save_notes(db, session_id, notes_data.content))

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to save notes for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{session_id}/messages", response_model=List[MessageOut])
def read_messages(
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    最新的訊息在前
    """
    try:
        return get_messages(db, session_id, settings.message_history_limit)

    except Exception as e:
        logger.error(f"Failed to read messages for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/messages", response_model=MessageOut)
def post_message(
    message_data: MessageIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    try:
        message = ClassBoardManager.send_message(
            db,
            session_id,
            message_data.text,
            message_data.type.value,
            settings.message_history_limit
        )
        return message_to_dict(message)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to send message to session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
