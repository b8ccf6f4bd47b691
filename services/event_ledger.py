"""
事件帳本：搶答（Buzzer）、作答（Answer）、口頭作答標記（SpokenMark）

每種事件以 (session_id, player_id, question_index) 為唯一鍵：
- Buzzer：只能插入一次，唯一性約束違反 = AlreadyBuzzed（搶答的防競態原語）
- Answer：upsert，選項公布期間可以改答案（最後一次寫入為準）
- SpokenMark：集合成員，重複插入無副作用

搶答順序由 time.monotonic_ns() 決定（在插入的 transaction 內讀取），
timestamp 相同時以自增 id（插入順序）決定。

限制：monotonic 時間只在同一台主機的各個 process 之間可比較；
多台主機同時服務同一個資料庫時，順序必須改由資料庫端產生的時間決定。

只做 flush，不 commit（交由外層 @transactional 處理）
"""
import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Answer, Buzzer, GamePhase, GameState, Player, SpokenMark, utcnow
from core.exceptions import (
    AlreadyBuzzed,
    ConcurrentInsert,
    InvalidPhase,
    SessionNotFound,
    UnknownPlayer,
    ValidationError,
)
from core.locks import with_game_state_share_lock
from services.state_service import get_game_state
from services.question_bank import get_question

logger = logging.getLogger(__name__)


def monotonic_timestamp() -> int:
    return time.monotonic_ns()


def _get_active_player(db: Session, session_id: str, player_id: str) -> Player:
    player = db.query(Player).filter(
        Player.session_id == session_id,
        Player.id == player_id
    ).first()
    if not player or not player.active:
        raise UnknownPlayer(player_id)
    return player


def _require_phase(state: GameState, phase: GamePhase, question_index: int) -> None:
    if state.phase != phase:
        raise InvalidPhase(
            f"Operation requires phase {phase.value}, current phase is {state.phase.value}",
            phase=state.phase
        )
    if question_index != state.current_question_index:
        raise InvalidPhase(
            f"Question {question_index} is not the current question "
            f"({state.current_question_index})",
            phase=state.phase
        )


def _confirm_phase(
    db: Session,
    session_id: str,
    phase: GamePhase,
    question_index: int,
    check_buzz_lock: bool = False
) -> None:
    """
    寫入後在同一個 transaction 內重新確認階段

    寫入之後已持有寫鎖（SQLite）或共享鎖（PostgreSQL），
    這裡讀到的是最新提交的階段；不符就拋出 InvalidPhase 讓外層 rollback
    """
    state = with_game_state_share_lock(session_id, db).first()
    if not state:
        raise SessionNotFound(session_id)
    _require_phase(state, phase, question_index)
    if check_buzz_lock and state.buzz_locked:
        raise InvalidPhase("Buzzers are locked", phase=state.phase)


# ============ Buzzer ============

def record_buzzer(db: Session, session_id: str, player_id: str, question_index: int) -> Buzzer:
    """
    記錄一次搶答

    前置條件：
    - phase 必須是 question_shown，且 question_index 是目前題目
    - 搶答鈴未被主持人鎖定
    - 玩家存在且為 active

    流程：
    1. 驗證階段與玩家
    2. 讀取 monotonic 時間並插入（唯一性約束由資料庫保證）
    3. 在同一個 transaction 內從帳本重新算出 first_buzzer_player_id
       （依 (timestamp, id) 排序的第一筆，和 get_buzzers 的順序一致）

    異常：
        InvalidPhase / UnknownPlayer / AlreadyBuzzed

    注意：
        IntegrityError 發生後 session 需要 rollback，交給外層 @transactional
    """
    state = get_game_state(db, session_id)
    _require_phase(state, GamePhase.QUESTION_SHOWN, question_index)
    if state.buzz_locked:
        raise InvalidPhase("Buzzers are locked", phase=state.phase)

    _get_active_player(db, session_id, player_id)

    buzzer = Buzzer(
        session_id=session_id,
        player_id=player_id,
        question_index=question_index,
        timestamp=monotonic_timestamp()
    )
    db.add(buzzer)
    try:
        db.flush()
    except IntegrityError:
        raise AlreadyBuzzed(player_id, question_index)

    _confirm_phase(db, session_id, GamePhase.QUESTION_SHOWN, question_index, check_buzz_lock=True)

    first = (
        select(Buzzer.player_id)
        .where(Buzzer.session_id == session_id, Buzzer.question_index == question_index)
        .order_by(Buzzer.timestamp, Buzzer.id)
        .limit(1)
        .scalar_subquery()
    )
    db.execute(
        update(GameState)
        .where(GameState.session_id == session_id)
        .values(first_buzzer_player_id=first, last_updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.flush()
    return buzzer


def get_buzzers(db: Session, session_id: str, question_index: int) -> List[Dict[str, Any]]:
    rows = (
        db.query(Buzzer, Player.nickname)
        .join(Player, Buzzer.player_id == Player.id)
        .filter(Buzzer.session_id == session_id, Buzzer.question_index == question_index)
        .order_by(Buzzer.timestamp, Buzzer.id)
        .all()
    )
    return [
        {
            "player_id": buzzer.player_id,
            "nickname": nickname,
            "question_index": buzzer.question_index,
            "timestamp": buzzer.timestamp,
        }
        for buzzer, nickname in rows
    ]


# ============ Answer ============

def record_answer(
    db: Session,
    session_id: str,
    player_id: str,
    question_index: int,
    answer_index: int
) -> Answer:
    """
    記錄（或覆寫）玩家的答案

    前置條件：
    - phase 必須是 options_shown，且 question_index 是目前題目
    - 題目存在，answer_index 在選項範圍內
    - 玩家存在且為 active

    is_correct 在寫入當下依題目的 correct_index 重新計算

    異常：
        InvalidPhase / QuestionNotFound / UnknownPlayer / ValidationError
    """
    state = get_game_state(db, session_id)
    _require_phase(state, GamePhase.OPTIONS_SHOWN, question_index)

    question = get_question(db, session_id, question_index)
    if isinstance(answer_index, bool) or not isinstance(answer_index, int) \
            or not 0 <= answer_index < len(question.options):
        raise ValidationError(f"Answer index {answer_index} is out of range")

    _get_active_player(db, session_id, player_id)

    is_correct = answer_index == question.correct_index
    values = {
        "answer_index": answer_index,
        "is_correct": is_correct,
        "timestamp": monotonic_timestamp(),
    }

    answer = _find_answer(db, session_id, player_id, question_index)
    if answer is None:
        answer = Answer(
            session_id=session_id,
            player_id=player_id,
            question_index=question_index,
            **values
        )
        db.add(answer)
        try:
            db.flush()
        except IntegrityError:
            # 同一玩家的兩個請求同時插入：資料庫只接受一個，重跑後這一個改走 update
            raise ConcurrentInsert(f"Answer for player {player_id} on question {question_index}")
    else:
        for key, value in values.items():
            setattr(answer, key, value)
        db.flush()

    _confirm_phase(db, session_id, GamePhase.OPTIONS_SHOWN, question_index)
    return answer


def _find_answer(db: Session, session_id: str, player_id: str, question_index: int) -> Optional[Answer]:
    return db.query(Answer).filter(
        Answer.session_id == session_id,
        Answer.player_id == player_id,
        Answer.question_index == question_index
    ).first()


def get_answers(db: Session, session_id: str, question_index: int) -> List[Dict[str, Any]]:
    answers = db.query(Answer).filter(
        Answer.session_id == session_id,
        Answer.question_index == question_index
    ).order_by(Answer.timestamp, Answer.id).all()
    return [answer_to_dict(a) for a in answers]


def get_all_answers(db: Session, session_id: str) -> List[Dict[str, Any]]:
    answers = db.query(Answer).filter(
        Answer.session_id == session_id
    ).order_by(Answer.question_index, Answer.timestamp, Answer.id).all()
    return [answer_to_dict(a) for a in answers]


def get_player_answers(db: Session, session_id: str, player_id: str) -> List[Answer]:
    return db.query(Answer).filter(
        Answer.session_id == session_id,
        Answer.player_id == player_id
    ).order_by(Answer.question_index).all()


def answer_to_dict(answer: Answer) -> Dict[str, Any]:
    return {
        "player_id": answer.player_id,
        "question_index": answer.question_index,
        "answer_index": answer.answer_index,
        "is_correct": answer.is_correct,
        "timestamp": answer.timestamp,
    }


# ============ Spoken ============

def mark_spoken(db: Session, session_id: str, player_id: str, question_index: int) -> bool:
    """
    標記玩家已口頭作答（冪等）

    返回：
        True 如果是新標記，False 如果早就標記過
    """
    get_question(db, session_id, question_index)
    _get_active_player(db, session_id, player_id)

    existing = db.query(SpokenMark).filter(
        SpokenMark.session_id == session_id,
        SpokenMark.player_id == player_id,
        SpokenMark.question_index == question_index
    ).first()
    if existing:
        return False

    db.add(SpokenMark(session_id=session_id, player_id=player_id, question_index=question_index))
    try:
        db.flush()
    except IntegrityError:
        # 另一個請求先寫入了同樣的標記，重跑後會走 existing 分支
        raise ConcurrentInsert(f"Spoken mark for player {player_id} on question {question_index}")
    return True


def get_spoken_players(db: Session, session_id: str, question_index: int) -> List[str]:
    rows = db.query(SpokenMark.player_id).filter(
        SpokenMark.session_id == session_id,
        SpokenMark.question_index == question_index
    ).order_by(SpokenMark.id).all()
    return [player_id for (player_id,) in rows]


# ============ Clearing ============

def clear_for_question(db: Session, session_id: str, question_index: Optional[int] = None) -> None:
    """
    清除帳本資料

    參數：
        question_index: 指定題目；None 表示清除整個場次

    用途：
        只由 GameController（階段轉換、重置）與存檔載入呼叫
    """
    for model in (Buzzer, Answer, SpokenMark):
        query = db.query(model).filter(model.session_id == session_id)
        if question_index is not None:
            query = query.filter(model.question_index == question_index)
        query.delete(synchronize_session=False)
    db.flush()
