"""
Session Archive Manager：存檔 / 載入 / 刪除存檔的 transaction 邊界

存檔與載入的內容邏輯在 services/archive_service.py，
這裡只負責 commit / rollback，以及存檔成功後的資料庫備份。
"""
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
import logging

from models import SavedSession
from services import archive_service
from database import transactional

logger = logging.getLogger(__name__)


class SessionArchiveManager:
    """存檔生命週期管理器"""

    @staticmethod
    @transactional
    def _save(db: Session, session_id: str, name: Optional[str], save_id: Optional[str]) -> SavedSession:
        return archive_service.save_session(db, session_id, name, save_id)

    @staticmethod
    def save_session(
        db: Session,
        session_id: str,
        name: Optional[str] = None,
        save_id: Optional[str] = None,
        backup_dir: Optional[str] = None
    ) -> SavedSession:
        """
        存檔，成功後（有設定 backup_dir 時）備份資料庫檔案

        備份失敗不影響已經 commit 的存檔，只記錄錯誤
        """
        saved = SessionArchiveManager._save(db, session_id, name, save_id)

        if backup_dir:
            try:
                archive_service.backup_database(db, backup_dir)
            except Exception as e:
                logger.error(f"Database backup after saving {saved.id} failed: {e}", exc_info=True)

        return saved

    @staticmethod
    def list_saved_sessions(db: Session) -> List[Dict[str, Any]]:
        return archive_service.list_saved_sessions(db)

    @staticmethod
    @transactional
    def load_session(db: Session, save_id: str, target_session_id: str) -> Dict[str, Any]:
        """
        把存檔載入到目標場次（全有或全無）

        異常：
            SavedSessionNotFound / SessionNotFound / ValidationError / CriticalIntegrityError
        """
        return archive_service.load_session(db, save_id, target_session_id)

    @staticmethod
    @transactional
    def delete_saved_session(db: Session, save_id: str) -> None:
        archive_service.delete_saved_session(db, save_id)
