"""
存檔服務：把場次序列化成 SessionExport 存起來，之後可以載入到任何場次

存檔內容：
- game_state（不含 version：載入時由目標場次自己遞增）
- questions（原樣保存，含 correct_index 與稽核欄位；載入時不重新洗牌）
- players（加入順序）
- notes / messages

不保存事件帳本（搶答、作答、口頭標記）：載入後從乾淨的帳本開始。

只做 flush，不 commit（交由外層 @transactional 處理）
"""
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from models import GamePhase, Message, MessageType, Player, Question, QuizSession, SavedSession, utcnow
from core.exceptions import SavedSessionNotFound, SessionNotFound, ValidationError
from core.locks import with_game_state_lock
from services import event_ledger
from services.board_service import get_notes, save_notes
from services.naming_service import generate_player_id, generate_save_id
from services.question_bank import get_questions, restore_questions
from services.snapshot_service import get_players
from services.state_service import bump_state_version, get_game_state

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1


# ============ Export format ============

class ExportGameState(BaseModel):
    game_started: bool = False
    current_question_index: int = Field(default=0, ge=0)
    phase: GamePhase = GamePhase.WAITING
    buzz_locked: bool = False
    version: int = Field(default=1, ge=1, description="存檔當下的版本，僅供參考")


class ExportQuestion(BaseModel):
    text: str
    options: List[str]
    correct_index: int
    image_ref: str = ""
    explanation: str = ""
    original_correct_text: str = ""
    shuffle_verified: bool = True


class ExportPlayer(BaseModel):
    id: str
    nickname: str
    joined_at: datetime
    active: bool = True


class ExportMessage(BaseModel):
    text: str
    type: MessageType = MessageType.INFO
    created_at: datetime


class SessionExport(BaseModel):
    format_version: int = EXPORT_FORMAT_VERSION
    session_id: str
    session_name: str
    game_state: ExportGameState
    questions: List[ExportQuestion] = Field(default_factory=list)
    players: List[ExportPlayer] = Field(default_factory=list)
    notes: str = ""
    messages: List[ExportMessage] = Field(default_factory=list)


# ============ Save ============

def build_export(db: Session, session_id: str) -> SessionExport:
    """
    把場次目前的內容轉成 SessionExport

    異常：
        SessionNotFound: 場次不存在
    """
    quiz_session = db.query(QuizSession).filter(QuizSession.id == session_id).first()
    if not quiz_session:
        raise SessionNotFound(session_id)
    state = get_game_state(db, session_id)

    messages = db.query(Message).filter(
        Message.session_id == session_id
    ).order_by(Message.created_at, Message.id).all()

    return SessionExport(
        session_id=session_id,
        session_name=quiz_session.name,
        game_state=ExportGameState(
            game_started=state.game_started,
            current_question_index=state.current_question_index,
            phase=state.phase,
            buzz_locked=state.buzz_locked,
            version=state.version,
        ),
        questions=[
            ExportQuestion(
                text=q.text,
                options=list(q.options),
                correct_index=q.correct_index,
                image_ref=q.image_ref,
                explanation=q.explanation,
                original_correct_text=q.original_correct_text,
                shuffle_verified=q.shuffle_verified,
            )
            for q in get_questions(db, session_id)
        ],
        players=[
            ExportPlayer(id=p.id, nickname=p.nickname, joined_at=p.joined_at, active=p.active)
            for p in get_players(db, session_id)
        ],
        notes=get_notes(db, session_id)["content"],
        messages=[
            ExportMessage(text=m.text, type=m.type, created_at=m.created_at)
            for m in messages
        ],
    )


def save_session(
    db: Session,
    session_id: str,
    name: Optional[str] = None,
    save_id: Optional[str] = None
) -> SavedSession:
    """
    存檔（同一個 save_id 再存一次會覆蓋）

    參數：
        session_id: 來源場次
        name: 存檔名稱，預設 "Session YYYY-MM-DD HH:MM"
        save_id: 指定存檔 ID，預設自動產生
    """
    export = build_export(db, session_id)
    name = (name or "").strip() or "Session " + utcnow().strftime("%Y-%m-%d %H:%M")

    saved = None
    if save_id:
        saved = db.query(SavedSession).filter(SavedSession.id == save_id).first()
    if saved is None:
        saved = SavedSession(id=save_id or generate_save_id())
        db.add(saved)

    saved.name = name
    saved.source_session_id = session_id
    saved.session_data = export.model_dump_json()
    saved.created_at = utcnow()
    db.flush()

    logger.info(
        f"Saved session {session_id} as {saved.id} ({name}): "
        f"{len(export.questions)} questions, {len(export.players)} players"
    )
    return saved


def parse_export(saved: SavedSession) -> SessionExport:
    try:
        return SessionExport.model_validate_json(saved.session_data)
    except PydanticValidationError as e:
        raise ValidationError(f"Saved session {saved.id} is not a valid export: {e.error_count()} errors")


def list_saved_sessions(db: Session) -> List[Dict[str, Any]]:
    """
    列出所有存檔（新的在前），附上玩家數與題數
    """
    rows = db.query(SavedSession).order_by(SavedSession.created_at.desc()).all()
    result = []
    for saved in rows:
        try:
            export = parse_export(saved)
        except ValidationError:
            logger.warning(f"Skipping unreadable saved session {saved.id}")
            continue
        result.append({
            "id": saved.id,
            "name": saved.name,
            "source_session_id": saved.source_session_id,
            "created_at": saved.created_at,
            "player_count": len(export.players),
            "question_count": len(export.questions),
        })
    return result


def get_saved_session(db: Session, save_id: str) -> SavedSession:
    saved = db.query(SavedSession).filter(SavedSession.id == save_id).first()
    if not saved:
        raise SavedSessionNotFound(save_id)
    return saved


# ============ Load ============

def _restore_players(db: Session, session_id: str, players: List[ExportPlayer]) -> Dict[str, str]:
    """
    依原順序寫回玩家；原 ID 沒被其他場次佔用就沿用，否則重新產生

    返回：
        {存檔中的 ID: 寫入的 ID}
    """
    db.query(Player).filter(Player.session_id == session_id).delete(synchronize_session=False)
    db.flush()

    id_map = {}
    for exported in players:
        player_id = exported.id
        if player_id in id_map.values() or \
                db.query(Player.id).filter(Player.id == player_id).first():
            player_id = generate_player_id()
            logger.info(f"Player id {exported.id} is taken, restored as {player_id}")

        db.add(Player(
            id=player_id,
            session_id=session_id,
            nickname=exported.nickname,
            joined_at=exported.joined_at,
            active=exported.active,
        ))
        db.flush()
        id_map[exported.id] = player_id
    return id_map


def _restore_messages(db: Session, session_id: str, messages: List[ExportMessage]) -> None:
    db.query(Message).filter(Message.session_id == session_id).delete(synchronize_session=False)
    for exported in messages:
        db.add(Message(
            session_id=session_id,
            text=exported.text,
            type=exported.type,
            created_at=exported.created_at,
        ))
    db.flush()


def load_session(db: Session, save_id: str, target_session_id: str) -> Dict[str, Any]:
    """
    把存檔載入到目標場次（整個操作在呼叫者的 transaction 內，全有或全無）

    流程：
    1. 解析存檔（格式不對就拋出 ValidationError，不動任何東西）
    2. 遞增目標場次的 version（同時取得寫鎖）
    3. 清空帳本
    4. 題庫原樣寫回（不重新洗牌）
    5. 玩家依原順序寫回
    6. 筆記、訊息、遊戲狀態欄位

    返回：
        {session_name, version, question_count, player_count}

    異常：
        SavedSessionNotFound / SessionNotFound / ValidationError / CriticalIntegrityError
    """
    saved = get_saved_session(db, save_id)
    export = parse_export(saved)

    version = bump_state_version(db, target_session_id, reason=f"load {save_id}")
    state = with_game_state_lock(target_session_id, db).first()

    event_ledger.clear_for_question(db, target_session_id)

    if export.questions:
        restore_questions(db, target_session_id, [q.model_dump() for q in export.questions])
    else:
        db.query(Question).filter(Question.session_id == target_session_id).delete(
            synchronize_session=False
        )
        db.flush()

    _restore_players(db, target_session_id, export.players)
    save_notes(db, target_session_id, export.notes)
    _restore_messages(db, target_session_id, export.messages)

    exported_state = export.game_state
    if export.questions and exported_state.current_question_index < len(export.questions):
        state.game_started = exported_state.game_started and exported_state.phase != GamePhase.FINISHED
        state.current_question_index = exported_state.current_question_index
        state.phase = exported_state.phase
    else:
        state.game_started = False
        state.current_question_index = 0
        state.phase = GamePhase.WAITING
    state.first_buzzer_player_id = None
    state.buzz_locked = exported_state.buzz_locked
    state.last_updated_at = utcnow()
    db.flush()

    logger.info(
        f"Loaded saved session {save_id} ({saved.name}) into {target_session_id}, "
        f"version -> {version}"
    )
    return {
        "session_name": saved.name,
        "version": version,
        "question_count": len(export.questions),
        "player_count": len(export.players),
    }


def delete_saved_session(db: Session, save_id: str) -> None:
    saved = get_saved_session(db, save_id)
    db.delete(saved)
    db.flush()
    logger.info(f"Deleted saved session {save_id}")


# ============ Backup ============

def backup_database(db: Session, backup_dir: str) -> Optional[str]:
    """
    用 SQLite 的 VACUUM INTO 複製整個資料庫檔案

    只支援檔案型 SQLite；其他資料庫（或記憶體資料庫）直接跳過並回傳 None。
    VACUUM 不能在 transaction 內執行，所以開一條獨立連線，
    呼叫者必須先 commit。
    """
    engine = db.get_bind()
    url = engine.url
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        logger.info(f"Skipping backup for non-file database {url.get_backend_name()}")
        return None

    os.makedirs(backup_dir, exist_ok=True)
    path = os.path.join(backup_dir, f"quiz_{utcnow().strftime('%Y-%m-%d_%H-%M-%S_%f')}.db")

    with engine.connect() as connection:
        connection.exec_driver_sql("VACUUM INTO ?", (path,))

    logger.info(f"Database backed up to {path}")
    return path
