"""
Player Summary Service

職責：
1. 組出單一玩家的結束畫面總結（每一題都有一筆 breakdown）
2. 以題庫重新計算 is_correct，和儲存值不一致時記 WARNING 並以重算結果為準

只讀取，不寫入
"""
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from models import Player
from core.exceptions import UnknownPlayer
from services.event_ledger import get_player_answers
from services.question_bank import get_questions

logger = logging.getLogger(__name__)


def get_player_summary(db: Session, session_id: str, player_id: str) -> Dict[str, Any]:
    """
    取得玩家的作答總結

    返回：
        total_questions / answered_count / correct_count / incorrect_count
        unanswered: 沒有作答的題目 index 列表
        breakdown: 每一題一筆（0..N-1），沒作答的題目 player_answer_text 為 None

    異常：
        UnknownPlayer: 玩家不存在

    注意：
        儲存的 is_correct 只是稽核欄位，這裡一律依題庫重新計算
    """
    player = db.query(Player).filter(
        Player.session_id == session_id,
        Player.id == player_id
    ).first()
    if not player:
        raise UnknownPlayer(player_id)

    questions = get_questions(db, session_id)
    answers = {a.question_index: a for a in get_player_answers(db, session_id, player_id)}

    correct_count = 0
    incorrect_count = 0
    unanswered: List[int] = []
    breakdown: List[Dict[str, Any]] = []

    for question in questions:
        index = question.position
        entry: Dict[str, Any] = {
            "question_index": index,
            "question": question.text,
            "player_answer_index": None,
            "player_answer_text": None,
            "correct_answer_text": question.correct_text,
            "is_correct": False,
            "explanation": question.explanation,
        }

        answer = answers.get(index)
        if answer is None:
            unanswered.append(index)
            breakdown.append(entry)
            continue

        is_correct = answer.answer_index == question.correct_index
        if is_correct != answer.is_correct:
            logger.warning(
                f"Stored is_correct={answer.is_correct} for player {player_id} on question "
                f"{index} disagrees with the question bank, using {is_correct}"
            )

        if 0 <= answer.answer_index < len(question.options):
            entry["player_answer_text"] = question.options[answer.answer_index]
        entry["player_answer_index"] = answer.answer_index
        entry["is_correct"] = is_correct

        if is_correct:
            correct_count += 1
        else:
            incorrect_count += 1
        breakdown.append(entry)

    return {
        "player_id": player.id,
        "nickname": player.nickname,
        "total_questions": len(questions),
        "answered_count": correct_count + incorrect_count,
        "correct_count": correct_count,
        "incorrect_count": incorrect_count,
        "unanswered": unanswered,
        "breakdown": breakdown,
    }
