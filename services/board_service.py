"""
Class Board Service

職責：
1. 課堂筆記：每個場次一份 markdown 原文（伺服器端不轉換）
2. 廣播訊息：主持人發給玩家的短訊息，每個場次只保留最新的 limit 則

只做 flush，不 commit（交由外層 @transactional 處理）
"""
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from models import Message, MessageType, Note, utcnow
from core.exceptions import ValidationError

DEFAULT_NOTES = (
    "# Class Notes\n"
    "*Start adding your notes here...*\n\n"
    "## Useful Links\n"
    "- [Cybersecurity Basics](https://www.cisa.gov/cybersecurity)\n"
    "- [Phishing Examples](https://www.us-cert.gov/ncas/tips/ST04-014)"
)

MESSAGE_MAX_LENGTH = 500


def initialize_notes(db: Session, session_id: str, content: str = DEFAULT_NOTES) -> None:
    db.add(Note(session_id=session_id, content=content, updated_at=utcnow()))
    db.flush()


def get_notes(db: Session, session_id: str) -> Dict[str, Any]:
    note = db.query(Note).filter(Note.session_id == session_id).first()
    if not note:
        return {"content": "", "updated_at": None}
    return {"content": note.content, "updated_at": note.updated_at}


def save_notes(db: Session, session_id: str, content: str) -> Dict[str, Any]:
    """
    儲存筆記（整份覆寫，沒有筆記列時建立）
    """
    if not isinstance(content, str):
        raise ValidationError("Notes content must be text")

    note = db.query(Note).filter(Note.session_id == session_id).first()
    if note is None:
        note = Note(session_id=session_id)
        db.add(note)
    note.content = content
    note.updated_at = utcnow()
    db.flush()
    return {"content": note.content, "updated_at": note.updated_at}


def send_message(
    db: Session,
    session_id: str,
    text: str,
    message_type: str = MessageType.INFO.value,
    limit: int = 10
) -> Message:
    """
    發送廣播訊息，並把歷史裁到最新的 limit 則

    參數：
        message_type: info / success / warning / error

    異常：
        ValidationError: 空白訊息、超過長度上限，或未知的訊息類型
    """
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message text cannot be empty")
    if len(text) > MESSAGE_MAX_LENGTH:
        raise ValidationError(f"Message text is longer than {MESSAGE_MAX_LENGTH} characters")
    try:
        kind = MessageType(message_type)
    except ValueError:
        raise ValidationError(f"Unknown message type: {message_type!r}")

    message = Message(session_id=session_id, text=text, type=kind, created_at=utcnow())
    db.add(message)
    db.flush()

    keep_ids = [
        message_id for (message_id,) in db.query(Message.id)
        .filter(Message.session_id == session_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .all()
    ]
    db.query(Message).filter(
        Message.session_id == session_id,
        Message.id.notin_(keep_ids)
    ).delete(synchronize_session=False)
    db.flush()
    return message


def get_messages(db: Session, session_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    messages = db.query(Message).filter(
        Message.session_id == session_id
    ).order_by(Message.created_at.desc(), Message.id.desc()).limit(limit).all()
    return [message_to_dict(m) for m in messages]


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "text": message.text,
        "type": message.type.value,
        "created_at": message.created_at,
    }
