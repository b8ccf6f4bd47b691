"""
Session Registry：管理 QuizSession 的完整生命週期

職責：
1. 建立場次（含預設狀態、筆記、題庫）
2. 確保場次存在（第一次被引用時自動建立，冪等）
3. 查詢 / 切換 / 列出 / 刪除場次

Linus 原則：
- 沒有「目前場次」這種隱藏狀態：每個呼叫都明確帶 session_id
- 場次之間完全隔離：所有子資料都以 session_id 為範圍
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional, Sequence
import logging

from models import QuizSession
from core.exceptions import SessionNotFound, ValidationError
from services.naming_service import generate_session_id, default_session_name
from services.state_service import initialize_game_state
from services.board_service import initialize_notes
from services.question_bank import replace_all
from database import transactional

logger = logging.getLogger(__name__)


class SessionRegistry:
    """QuizSession 生命週期管理器"""

    @staticmethod
    def _initialize(
        db: Session,
        session_id: str,
        name: str,
        default_questions: Optional[Sequence[Dict[str, Any]]] = None
    ) -> QuizSession:
        quiz_session = QuizSession(id=session_id, name=name, is_active=True)
        db.add(quiz_session)
        db.flush()

        initialize_game_state(db, session_id)
        initialize_notes(db, session_id)
        if default_questions:
            replace_all(db, session_id, default_questions)

        return quiz_session

    @staticmethod
    @transactional
    def create_session(
        db: Session,
        name: str,
        default_questions: Optional[Sequence[Dict[str, Any]]] = None
    ) -> QuizSession:
        """
        建立新場次

        流程：
        1. 生成唯一的場次 ID
        2. 建立 QuizSession、GameState（version=1）、預設筆記
        3. 如有提供，寫入預設題庫

        參數：
            db: SQLAlchemy Session
            name: 顯示名稱
            default_questions: 預設題庫（None 表示空題庫）

        返回：
            QuizSession

        注意：
            - 使用 @transactional，自動處理 commit/rollback
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Session name cannot be empty")

        session_id = generate_session_id()
        while db.query(QuizSession).filter(QuizSession.id == session_id).first():
            session_id = generate_session_id()
            logger.warning(f"Session id collision detected, regenerating: {session_id}")

        quiz_session = SessionRegistry._initialize(db, session_id, name, default_questions)
        logger.info(f"Created session {session_id} ({name})")
        return quiz_session

    @staticmethod
    def ensure_session(
        db: Session,
        session_id: str,
        name: Optional[str] = None,
        default_questions: Optional[Sequence[Dict[str, Any]]] = None
    ) -> bool:
        """
        確保場次存在（冪等）

        場次不存在時以預設值初始化；兩個請求同時第一次引用同一個 ID 時，
        主鍵約束只讓一個成功，另一個視為已存在。

        返回：
            True 如果這次新建了場次，False 如果早已存在
        """
        if not session_id or len(session_id) > 64:
            raise ValidationError("Invalid session id")

        if db.query(QuizSession.id).filter(QuizSession.id == session_id).first():
            return False

        try:
            SessionRegistry._initialize(db, session_id, name or default_session_name(), default_questions)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Session {session_id} was created concurrently")
            return False
        except Exception:
            db.rollback()
            raise

        logger.info(f"Initialized session {session_id} on first reference")
        return True

    @staticmethod
    def switch_session(db: Session, session_id: str) -> bool:
        """
        只檢查場次是否存在（伺服器端不保存「目前場次」）
        """
        return db.query(QuizSession.id).filter(QuizSession.id == session_id).first() is not None

    @staticmethod
    def get_session(db: Session, session_id: str) -> QuizSession:
        """
        異常：
            SessionNotFound: 場次不存在
        """
        quiz_session = db.query(QuizSession).filter(QuizSession.id == session_id).first()
        if not quiz_session:
            raise SessionNotFound(session_id)
        return quiz_session

    @staticmethod
    def list_sessions(db: Session) -> List[QuizSession]:
        """
        列出所有 active 場次（新的在前）
        """
        return db.query(QuizSession).filter(
            QuizSession.is_active == True  # noqa: E712
        ).order_by(QuizSession.created_at.desc()).all()

    @staticmethod
    @transactional
    def delete_session(db: Session, session_id: str) -> None:
        """
        刪除場次，cascade 刪除玩家、題目、狀態與所有事件

        異常：
            SessionNotFound: 場次不存在
        """
        quiz_session = SessionRegistry.get_session(db, session_id)
        db.delete(quiz_session)
        logger.info(f"Deleted session {session_id}")
