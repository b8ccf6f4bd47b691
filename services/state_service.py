"""
遊戲狀態服務：每個場次的 GameState 讀寫與版本控制

- GameState 是強型別的一列（不是字串 key/value），phase 必須是 GamePhase 之一
- version 只能透過 bump_state_version 遞增，每次成功的階段轉換遞增一次
- 樂觀鎖：呼叫者可帶 expected_version，版本不符就拋出 VersionConflict

只做 flush，不 commit（交由外層 @transactional 處理）
"""
import logging
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import GameState, GamePhase, utcnow
from core.exceptions import SessionNotFound, ValidationError, VersionConflict

logger = logging.getLogger(__name__)

# 可透過 set_state_value 單獨修改的欄位（version 不在其中）
STATE_FIELDS = {
    "game_started": bool,
    "current_question_index": int,
    "phase": GamePhase,
    "first_buzzer_player_id": str,
    "buzz_locked": bool,
}


def parse_phase(value: Any) -> GamePhase:
    """
    把外部輸入轉成 GamePhase，無法辨識就立刻失敗（不默默回到預設值）
    """
    if isinstance(value, GamePhase):
        return value
    try:
        return GamePhase(value)
    except ValueError:
        raise ValidationError(f"Unknown phase: {value!r}")


def initialize_game_state(db: Session, session_id: str) -> GameState:
    """
    為新場次寫入預設狀態（phase=waiting, version=1）
    """
    state = GameState(
        session_id=session_id,
        game_started=False,
        current_question_index=0,
        phase=GamePhase.WAITING,
        first_buzzer_player_id=None,
        buzz_locked=False,
        last_updated_at=utcnow(),
        version=1
    )
    db.add(state)
    db.flush()
    return state


def get_game_state(db: Session, session_id: str) -> GameState:
    """
    取得場次的 GameState

    異常：
        SessionNotFound: 場次不存在（或尚未初始化）
    """
    state = db.query(GameState).filter(GameState.session_id == session_id).first()
    if not state:
        raise SessionNotFound(session_id)
    return state


def get_state_value(db: Session, session_id: str, key: str) -> Any:
    if key != "version" and key not in STATE_FIELDS:
        raise ValidationError(f"Unknown game state key: {key!r}")
    return getattr(get_game_state(db, session_id), key)


def set_state_value(db: Session, session_id: str, key: str, value: Any) -> None:
    """
    單一欄位的原子寫入

    檢查：
        - phase 必須是合法列舉值；設成 finished 時 game_started 一併設為 False
        - current_question_index 不可為負數
        - phase 已是 finished 時不能把 game_started 設為 True

    注意：
        - 不會遞增 version（那是 bump_state_version 的工作）

    異常：
        ValidationError: key 不可寫，或值違反上述規則
        SessionNotFound: 場次不存在
    """
    if key not in STATE_FIELDS:
        raise ValidationError(f"Unknown or read-only game state key: {key!r}")

    if key == "phase":
        value = parse_phase(value)
    elif value is not None and (
        not isinstance(value, STATE_FIELDS[key])
        or (STATE_FIELDS[key] is int and isinstance(value, bool))
    ):
        raise ValidationError(f"Invalid value for {key}: {value!r}")

    if key == "current_question_index" and (value is None or value < 0):
        raise ValidationError(f"Question index must be >= 0, got {value!r}")

    if key == "game_started" and value:
        phase = db.query(GameState.phase).filter(GameState.session_id == session_id).scalar()
        if phase is None:
            raise SessionNotFound(session_id)
        if phase == GamePhase.FINISHED:
            raise ValidationError("Cannot mark a finished game as started")

    values = {key: value, "last_updated_at": utcnow()}
    if key == "phase" and value == GamePhase.FINISHED:
        values["game_started"] = False

    result = db.execute(
        update(GameState)
        .where(GameState.session_id == session_id)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise SessionNotFound(session_id)
    db.flush()


def get_state_version(db: Session, session_id: str) -> int:
    version = db.query(GameState.version).filter(GameState.session_id == session_id).scalar()
    if version is None:
        raise SessionNotFound(session_id)
    return version


def bump_state_version(
    db: Session,
    session_id: str,
    expected_version: Optional[int] = None,
    reason: str = ""
) -> int:
    """
    遞增場次的 state version（唯一能讓 version 前進的地方）

    做法：
        單一 UPDATE ... SET version = version + 1 WHERE session_id = ? [AND version = ?]
        比對與遞增在同一個語句內完成，兩個請求不可能同時以同一個版本成功

    參數：
        db: SQLAlchemy Session
        session_id: 場次 ID
        expected_version: 呼叫者看到的版本；None 表示不檢查
        reason: 寫進 log 的原因

    返回：
        新的版本號

    異常：
        VersionConflict: expected_version 與目前版本不符
        SessionNotFound: 場次不存在
    """
    db.flush()
    stmt = update(GameState).where(GameState.session_id == session_id)
    if expected_version is not None:
        stmt = stmt.where(GameState.version == expected_version)

    result = db.execute(
        stmt.values(version=GameState.version + 1, last_updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )

    if result.rowcount == 0:
        current = db.query(GameState.version).filter(GameState.session_id == session_id).scalar()
        if current is None:
            raise SessionNotFound(session_id)
        raise VersionConflict(expected_version, current)

    db.flush()
    new_version = get_state_version(db, session_id)
    logger.info(f"Session {session_id} state version -> {new_version} ({reason})")
    return new_version


def reset_game_state(db: Session, state: GameState) -> None:
    """
    回到 waiting 的預設值（version 不歸零，由呼叫者遞增）
    """
    state.game_started = False
    state.current_question_index = 0
    state.phase = GamePhase.WAITING
    state.first_buzzer_player_id = None
    state.buzz_locked = False
    state.last_updated_at = utcnow()
    db.flush()
