"""
Game Controller：管理一個場次的遊戲流程

職責：
1. 主持人指令：start / show_options / reveal / advance / soft_reset / full_reset / set_buzz_lock
   以及 update_questions（遊戲進行中不能換題庫）
2. 玩家指令：join / buzz / submit_answer / mark_spoken
3. 每個指令都是一個 transaction（@transactional）

每個階段轉換的固定步驟：
1. 遞增 version（可帶 expected_version 做樂觀鎖），同時取得寫鎖
2. 鎖定並重新讀取 GameState（with_game_state_lock）
3. 透過 GameStateMachine 檢查指令是否合法
4. 清除對應範圍的帳本資料
5. 寫入新階段

Linus 原則：
- 消除特殊情況：所有轉換走同一個 _transition 流程
- 正確性來自資料庫（唯一性約束 + 版本比對），不是 process 內的鎖
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
import logging
import random

from models import Answer, Buzzer, GamePhase, GameState, Player
from core.state_machine import GameCommand, GameStateMachine
from core.locks import with_game_state_lock, with_player_lock
from core.exceptions import (
    ConcurrentInsert,
    InvalidPhase,
    QuestionNotFound,
    SessionNotFound,
    UnknownPlayer,
)
from services import event_ledger
from services.state_service import bump_state_version, reset_game_state
from services.question_bank import get_question, get_question_count, replace_all
from services.naming_service import generate_player_id, normalize_nickname
from database import transactional

logger = logging.getLogger(__name__)


def _retry_once_on_concurrent_insert(operation: Callable, *args):
    """
    唯一鍵被同時插入時，輸的一方整個 transaction 重跑一次
    （第二次會看到既有資料並走 update / existing 分支）
    """
    try:
        return operation(*args)
    except ConcurrentInsert:
        logger.info(f"Retrying {operation.__name__} after concurrent insert")
        return operation(*args)


class GameController:
    """場次遊戲流程控制器"""

    # ============ 主持人指令 ============

    @staticmethod
    def _lock_state(db: Session, session_id: str) -> GameState:
        state = with_game_state_lock(session_id, db).first()
        if not state:
            raise SessionNotFound(session_id)
        return state

    @staticmethod
    def _transition(
        db: Session,
        session_id: str,
        command: str,
        expected_version: Optional[int]
    ) -> Tuple[GameState, int]:
        # 先寫（遞增 version）再讀：寫鎖從第一個語句就拿到，
        # 之後讀到的階段不會被其他轉換改掉；階段不合法時整個 rollback
        version = bump_state_version(db, session_id, expected_version, reason=command)
        state = GameController._lock_state(db, session_id)
        GameStateMachine.check(command, state)
        return state, version

    @staticmethod
    @transactional
    def start(db: Session, session_id: str, expected_version: Optional[int] = None) -> int:
        """
        開始遊戲（waiting / finished -> question_shown，第 0 題）

        前置條件：
        1. 場次存在
        2. 題庫至少一題

        效果：
        - 清除整個場次的帳本（新的一局）

        返回：
            新的 version

        異常：
            SessionNotFound / InvalidPhase / QuestionNotFound / VersionConflict
        """
        state, version = GameController._transition(db, session_id, GameCommand.START, expected_version)

        if get_question_count(db, session_id) == 0:
            raise QuestionNotFound(0)

        event_ledger.clear_for_question(db, session_id)
        GameStateMachine.enter(db, state, GamePhase.QUESTION_SHOWN, question_index=0)

        logger.info(f"Game started for session {session_id}")
        return version

    @staticmethod
    @transactional
    def show_options(db: Session, session_id: str, expected_version: Optional[int] = None) -> int:
        """
        顯示選項（question_shown -> options_shown）

        不清除帳本：這一題的搶答紀錄保留給主持人參考
        """
        state, version = GameController._transition(
            db, session_id, GameCommand.SHOW_OPTIONS, expected_version
        )
        GameStateMachine.enter(db, state, GamePhase.OPTIONS_SHOWN)
        return version

    @staticmethod
    @transactional
    def reveal(db: Session, session_id: str, expected_version: Optional[int] = None) -> int:
        """
        公布答案（options_shown -> reveal）
        """
        state, version = GameController._transition(db, session_id, GameCommand.REVEAL, expected_version)
        GameStateMachine.enter(db, state, GamePhase.REVEAL)
        return version

    @staticmethod
    @transactional
    def advance(db: Session, session_id: str, expected_version: Optional[int] = None) -> int:
        """
        下一題（reveal -> 下一題的 question_shown，或 reveal -> finished）

        樂觀鎖：
            expected_version 與目前版本不符時拋出 VersionConflict，狀態完全不變
            （防止兩個主持人或重送的請求跳過兩題）

        效果：
        - 只清除新題目的帳本範圍
        - 最後一題之後進入 finished，game_started=False
        """
        state, version = GameController._transition(db, session_id, GameCommand.ADVANCE, expected_version)

        next_index = state.current_question_index + 1
        if next_index < get_question_count(db, session_id):
            event_ledger.clear_for_question(db, session_id, next_index)
            GameStateMachine.enter(db, state, GamePhase.QUESTION_SHOWN, question_index=next_index)
        else:
            GameStateMachine.enter(db, state, GamePhase.FINISHED)
            logger.info(f"Game finished for session {session_id}")

        return version

    @staticmethod
    @transactional
    def soft_reset(db: Session, session_id: str, expected_version: Optional[int] = None) -> int:
        """
        軟重置：任何階段 -> waiting

        保留玩家與題庫，清除所有事件
        """
        state, version = GameController._transition(
            db, session_id, GameCommand.SOFT_RESET, expected_version
        )
        event_ledger.clear_for_question(db, session_id)
        reset_game_state(db, state)
        logger.info(f"Soft reset for session {session_id}")
        return version

    @staticmethod
    @transactional
    def full_reset(db: Session, session_id: str, expected_version: Optional[int] = None) -> int:
        """
        完全重置：任何階段 -> waiting，另外刪除所有玩家

        題庫保留；version 繼續遞增（不歸零）
        """
        state, version = GameController._transition(
            db, session_id, GameCommand.FULL_RESET, expected_version
        )
        event_ledger.clear_for_question(db, session_id)
        db.query(Player).filter(Player.session_id == session_id).delete(synchronize_session=False)
        reset_game_state(db, state)
        logger.info(f"Full reset for session {session_id}")
        return version

    @staticmethod
    @transactional
    def set_buzz_lock(
        db: Session,
        session_id: str,
        locked: bool,
        expected_version: Optional[int] = None
    ) -> int:
        """
        主持人鎖定 / 解鎖搶答鈴（只在 question_shown 有意義）
        """
        state, version = GameController._transition(db, session_id, GameCommand.BUZZ_LOCK, expected_version)
        state.buzz_locked = bool(locked)
        db.flush()
        logger.info(f"Buzzers {'locked' if locked else 'unlocked'} for session {session_id}")
        return version

    @staticmethod
    @transactional
    def update_questions(
        db: Session,
        session_id: str,
        questions: Sequence[Dict[str, Any]],
        rng: Optional[random.Random] = None
    ) -> Tuple[int, int]:
        """
        整批替換題庫（只在遊戲沒有進行時允許）

        流程：
        1. 遞增 version（取得寫鎖，輪詢端看到版本變動會重新載入題目數）
        2. 檢查 game_started
        3. replace_all：驗證、洗牌、刪除後重新寫入

        返回：
            (題數, 新的 version)

        異常：
            InvalidPhase: 遊戲進行中
            ValidationError: 題目格式不合法（舊題庫保持不變）
            CriticalIntegrityError: 洗牌後無法確認正確答案
        """
        version = bump_state_version(db, session_id, reason="update_questions")
        state = GameController._lock_state(db, session_id)
        if state.game_started:
            raise InvalidPhase(
                f"Cannot replace questions while a game is running (phase {state.phase.value})",
                phase=state.phase
            )

        count = replace_all(db, session_id, questions, rng)
        return count, version

    # ============ 玩家指令 ============

    @staticmethod
    @transactional
    def _join(db: Session, session_id: str, nickname: str) -> Tuple[Player, bool]:
        existing = db.query(Player).filter(
            Player.session_id == session_id,
            Player.nickname == nickname
        ).first()
        if existing:
            if not existing.active:
                existing.active = True
                db.flush()
            return existing, True

        player = Player(id=generate_player_id(), session_id=session_id, nickname=nickname)
        db.add(player)
        try:
            db.flush()
        except IntegrityError:
            raise ConcurrentInsert(f"Player {nickname!r} in session {session_id}")
        return player, False

    @staticmethod
    def join(db: Session, session_id: str, nickname: str) -> Tuple[Player, bool]:
        """
        玩家加入（暱稱在場次內唯一）

        同一個暱稱再次加入時回傳既有玩家（冪等重新加入），不報錯；
        兩個同暱稱的請求同時到達時，唯一性約束只讓一個插入成功，
        另一個重跑後取得既有玩家。

        返回：
            (Player, existing)
        """
        nickname = normalize_nickname(nickname)
        if not db.query(GameState.session_id).filter(GameState.session_id == session_id).first():
            raise SessionNotFound(session_id)

        player, existing = _retry_once_on_concurrent_insert(GameController._join, db, session_id, nickname)
        logger.info(
            f"Player {player.id} ({player.nickname}) {'rejoined' if existing else 'joined'} "
            f"session {session_id}"
        )
        return player, existing

    @staticmethod
    @transactional
    def set_player_active(db: Session, session_id: str, player_id: str, active: bool) -> Player:
        """
        啟用 / 停用玩家（停用的玩家不計入作答統計，也不能搶答或作答）
        """
        player = with_player_lock(session_id, player_id, db).first()
        if not player:
            raise UnknownPlayer(player_id)
        player.active = bool(active)
        db.flush()
        return player

    @staticmethod
    @transactional
    def buzz(db: Session, session_id: str, player_id: str, question_index: int) -> Buzzer:
        """
        搶答（只在 question_shown 接受）

        異常：
            InvalidPhase / UnknownPlayer / AlreadyBuzzed / StorageBusy
        """
        buzzer = event_ledger.record_buzzer(db, session_id, player_id, question_index)
        logger.info(f"Player {player_id} buzzed on question {question_index} (session {session_id})")
        return buzzer

    @staticmethod
    @transactional
    def _submit_answer(
        db: Session,
        session_id: str,
        player_id: str,
        question_index: int,
        answer_index: int
    ) -> Tuple[Answer, str]:
        answer = event_ledger.record_answer(db, session_id, player_id, question_index, answer_index)
        question = get_question(db, session_id, question_index)
        return answer, question.correct_text

    @staticmethod
    def submit_answer(
        db: Session,
        session_id: str,
        player_id: str,
        question_index: int,
        answer_index: int
    ) -> Tuple[Answer, str]:
        """
        作答（只在 options_shown 接受，公布前可以改答案）

        返回：
            (Answer, 正確選項文字)

        異常：
            InvalidPhase / QuestionNotFound / UnknownPlayer / ValidationError
        """
        return _retry_once_on_concurrent_insert(
            GameController._submit_answer, db, session_id, player_id, question_index, answer_index
        )

    @staticmethod
    @transactional
    def _mark_spoken(db: Session, session_id: str, player_id: str, question_index: int) -> bool:
        return event_ledger.mark_spoken(db, session_id, player_id, question_index)

    @staticmethod
    def mark_spoken(db: Session, session_id: str, player_id: str, question_index: int) -> bool:
        """
        標記玩家已口頭作答（冪等，任何階段皆可）
        """
        return _retry_once_on_concurrent_insert(
            GameController._mark_spoken, db, session_id, player_id, question_index
        )
