"""
Class Board Manager：筆記與廣播訊息的 transaction 邊界
"""
from sqlalchemy.orm import Session
from typing import Any, Dict
import logging

from models import Message
from services import board_service
from database import transactional

logger = logging.getLogger(__name__)


class ClassBoardManager:
    """筆記 / 訊息管理器"""

    @staticmethod
    @transactional
    def save_notes(db: Session, session_id: str, content: str) -> Dict[str, Any]:
        notes = board_service.save_notes(db, session_id, content)
        logger.info(f"Saved notes for session {session_id} ({len(content)} chars)")
        return notes

    @staticmethod
    @transactional
    def send_message(
        db: Session,
        session_id: str,
        text: str,
        message_type: str,
        limit: int
    ) -> Message:
        """
        發送廣播訊息，只保留最新的 limit 則

        異常：
            ValidationError: 空白訊息或未知的訊息類型
        """
        message = board_service.send_message(db, session_id, text, message_type, limit)
        logger.info(f"Message ({message.type.value}) sent to session {session_id}")
        return message
