"""
狀態機：集中管理所有階段轉換

waiting -> question_shown -> options_shown -> reveal -> (下一題的 question_shown | finished)

任何階段都可以 soft_reset / full_reset 回到 waiting。

Linus 原則：
- 消除特殊情況：所有階段變更都查同一張表
- 資料結構優先：合法轉換寫成資料，不寫成一堆 if
"""
import logging
from typing import Dict, FrozenSet

from sqlalchemy.orm import Session

from models import GameState, GamePhase, utcnow
from core.exceptions import InvalidPhase

logger = logging.getLogger(__name__)

_ANY_PHASE = frozenset(GamePhase)


class GameCommand:
    START = "start"
    SHOW_OPTIONS = "show_options"
    REVEAL = "reveal"
    ADVANCE = "advance"
    SOFT_RESET = "soft_reset"
    FULL_RESET = "full_reset"
    BUZZ_LOCK = "buzz_lock"


class GameStateMachine:
    """場次階段狀態機"""

    # 每個指令允許的來源階段
    ALLOWED: Dict[str, FrozenSet[GamePhase]] = {
        GameCommand.START: frozenset({GamePhase.WAITING, GamePhase.FINISHED}),
        GameCommand.SHOW_OPTIONS: frozenset({GamePhase.QUESTION_SHOWN}),
        GameCommand.REVEAL: frozenset({GamePhase.OPTIONS_SHOWN}),
        GameCommand.ADVANCE: frozenset({GamePhase.REVEAL}),
        GameCommand.SOFT_RESET: _ANY_PHASE,
        GameCommand.FULL_RESET: _ANY_PHASE,
        GameCommand.BUZZ_LOCK: frozenset({GamePhase.QUESTION_SHOWN}),
    }

    @classmethod
    def can(cls, command: str, phase: GamePhase) -> bool:
        return phase in cls.ALLOWED[command]

    @classmethod
    def check(cls, command: str, state: GameState) -> None:
        """
        檢查指令在目前階段是否合法

        異常：
            InvalidPhase: 不合法（不會默默忽略，讓呼叫者可以提示使用者）
        """
        if not cls.can(command, state.phase):
            allowed = ", ".join(sorted(p.value for p in cls.ALLOWED[command]))
            raise InvalidPhase(
                f"Cannot {command} in phase {state.phase.value} (allowed from: {allowed})",
                phase=state.phase
            )

    @staticmethod
    def enter(
        db: Session,
        state: GameState,
        phase: GamePhase,
        question_index: int = None
    ) -> GameState:
        """
        寫入新階段

        - question_index 有給時切換題目，並清掉 first_buzzer / buzz_locked
        - 進入 FINISHED 時 game_started 一律設為 False
        - 不遞增 version（由呼叫者呼叫 bump_state_version）
        """
        old_phase = state.phase
        state.phase = phase

        if question_index is not None:
            state.current_question_index = question_index
            state.first_buzzer_player_id = None
            state.buzz_locked = False

        if phase == GamePhase.FINISHED:
            state.game_started = False
        elif phase != GamePhase.WAITING:
            state.game_started = True

        state.last_updated_at = utcnow()
        db.flush()

        logger.info(
            f"Session {state.session_id} phase {old_phase.value} -> {phase.value} "
            f"(question {state.current_question_index})"
        )
        return state
