"""
Player API Endpoints

職責：
1. 玩家加入場次（暱稱唯一，重複加入回傳既有玩家）
2. 搶答 / 作答 / 口頭作答標記
3. 啟用 / 停用玩家
4. 結束畫面的個人總結
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    AnswerIn,
    AnswerOut,
    BuzzIn,
    BuzzOut,
    JoinIn,
    JoinOut,
    PlayerActiveIn,
    PlayerOut,
    SpokenIn,
    SpokenOut,
)
from core.game_controller import GameController
from core.exceptions import QuizGameException
from services.summary_service import get_player_summary
from api.deps import ensured_session
from api.errors import game_error_response

router = APIRouter(prefix="/api/sessions", tags=["players"])
logger = logging.getLogger(__name__)


@router.post("/{session_id}/join", response_model=JoinOut)
def join_game(
    player_data: JoinIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    加入場次（玩家 endpoint）

    流程：
    1. 整理暱稱（去空白、長度上限）
    2. 同暱稱已存在 -> 回傳既有玩家（existing=true），停用中的玩家會重新啟用
    3. 否則建立新玩家
    """
    try:
        player, existing = GameController.join(db, session_id, player_data.nickname)
        return JoinOut(player_id=player.id, nickname=player.nickname, existing=existing)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to join session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/buzz", response_model=BuzzOut)
def buzz(
    buzz_data: BuzzIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    搶答（只在 question_shown 接受）

    每位玩家每題只能按一次；第二次回傳 reason=already_buzzed。
    搶答順序由伺服器端的 monotonic 時間決定，不是請求到達順序。
    """
    try:
        buzzer = GameController.buzz(db, session_id, buzz_data.player_id, buzz_data.question_index)
        return BuzzOut(nickname=buzzer.player.nickname)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to record buzz: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/answer", response_model=AnswerOut)
def submit_answer(
    answer_data: AnswerIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    作答（只在 options_shown 接受，公布前可以改答案）
    """
    try:
        answer, correct_text = GameController.submit_answer(
            db,
            session_id,
            answer_data.player_id,
            answer_data.question_index,
            answer_data.answer_index
        )
        return AnswerOut(is_correct=answer.is_correct, correct_answer_text=correct_text)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to submit answer: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/spoken", response_model=SpokenOut)
def mark_spoken(
    spoken_data: SpokenIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    標記玩家已口頭作答（冪等）
    """
    try:
        newly_marked = GameController.mark_spoken(
            db, session_id, spoken_data.player_id, spoken_data.question_index
        )
        return SpokenOut(newly_marked=newly_marked)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to mark spoken: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/players/{player_id}/active", response_model=PlayerOut)
def set_player_active(
    player_id: str,
    active_data: PlayerActiveIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    啟用 / 停用玩家（主持人 endpoint）

    停用的玩家不能搶答、作答，也不計入 all_answered
    """
    try:
        player = GameController.set_player_active(db, session_id, player_id, active_data.active)
        return PlayerOut.model_validate(player)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to update player {player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{session_id}/players/{player_id}/summary")
def player_summary(
    player_id: str,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    個人總結（結束畫面）

    返回：
        total_questions / answered_count / correct_count / incorrect_count /
        unanswered（題目 index 列表）/ breakdown（每題一筆）
    """
    try:
        return get_player_summary(db, session_id, player_id)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to build summary for player {player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
