"""
快照服務：組合短輪詢用的完整狀態

純讀取，不寫入任何東西。
管理端與玩家端讀同一份快照，差別只在前端顯示什麼：
- question_shown 之前看不到選項
- reveal 之前看不到正確答案與每個答案的對錯

SQLite 的讀取不在同一個 transaction 內，組合途中 version 變了就重讀，
確保回傳的各部分來自同一個版本。
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models import GamePhase, GameState, Player, Question
from services import event_ledger
from services.question_bank import get_question, get_question_count, get_questions
from services.state_service import get_game_state, get_state_version

logger = logging.getLogger(__name__)

SNAPSHOT_READ_ATTEMPTS = 3

_OPTIONS_VISIBLE = {GamePhase.OPTIONS_SHOWN, GamePhase.REVEAL, GamePhase.FINISHED}
_ANSWER_VISIBLE = {GamePhase.REVEAL, GamePhase.FINISHED}


def state_to_dict(state: GameState) -> Dict[str, Any]:
    return {
        "game_started": state.game_started,
        "current_question_index": state.current_question_index,
        "phase": state.phase.value,
        "first_buzzer_player_id": state.first_buzzer_player_id,
        "buzz_locked": state.buzz_locked,
        "last_updated_at": state.last_updated_at,
        "version": state.version,
    }


def player_to_dict(player: Player) -> Dict[str, Any]:
    return {
        "id": player.id,
        "nickname": player.nickname,
        "joined_at": player.joined_at,
        "active": player.active,
    }


def get_players(db: Session, session_id: str, active_only: bool = False) -> List[Player]:
    query = db.query(Player).filter(Player.session_id == session_id)
    if active_only:
        query = query.filter(Player.active == True)  # noqa: E712
    return query.order_by(Player.row_id).all()


def public_question(question: Question, phase: GamePhase) -> Dict[str, Any]:
    """
    依階段遮蔽題目內容

    - question_shown：只有題目文字與選項數量
    - options_shown：加上選項
    - reveal / finished：加上 correct_index 與解說
    """
    view = {
        "index": question.position,
        "text": question.text,
        "image_ref": question.image_ref,
        "option_count": len(question.options),
        "options": None,
        "correct_index": None,
        "explanation": None,
    }
    if phase in _OPTIONS_VISIBLE:
        view["options"] = list(question.options)
    if phase in _ANSWER_VISIBLE:
        view["correct_index"] = question.correct_index
        view["explanation"] = question.explanation
    return view


def _assemble(db: Session, session_id: str) -> Dict[str, Any]:
    state = get_game_state(db, session_id)
    db.refresh(state)
    phase = state.phase
    index = state.current_question_index

    current_question = None
    if phase != GamePhase.WAITING:
        question = db.query(Question).filter(
            Question.session_id == session_id,
            Question.position == index
        ).first()
        if question:
            current_question = public_question(question, phase)

    answers = event_ledger.get_answers(db, session_id, index)
    if phase not in _ANSWER_VISIBLE:
        for answer in answers:
            answer.pop("is_correct")

    return {
        "session_id": session_id,
        "game_state": state_to_dict(state),
        "version": state.version,
        "total_questions": get_question_count(db, session_id),
        "current_question": current_question,
        "buzzers": event_ledger.get_buzzers(db, session_id, index),
        "answers": answers,
        "spoken_players": event_ledger.get_spoken_players(db, session_id, index),
        "players": [player_to_dict(p) for p in get_players(db, session_id)],
    }


def get_snapshot(db: Session, session_id: str) -> Dict[str, Any]:
    """
    取得場次的完整快照（短輪詢主要 endpoint）

    返回：
        game_state / version / total_questions / current_question /
        buzzers / answers / spoken_players（目前題目）/ players（加入順序）

    異常：
        SessionNotFound: 場次不存在
    """
    snapshot = None
    for _ in range(SNAPSHOT_READ_ATTEMPTS):
        snapshot = _assemble(db, session_id)
        if get_state_version(db, session_id) == snapshot["version"]:
            return snapshot
    logger.info(f"Snapshot for session {session_id} kept changing, returning last read")
    return snapshot


def get_answer_stats(db: Session, session_id: str, question_index: int) -> Dict[str, Any]:
    """
    單題作答統計（管理端）

    all_answered 只有在 active 玩家數 > 0 且每個 active 玩家都有答案時為 True

    異常：
        QuestionNotFound: 題目不存在
    """
    get_question(db, session_id, question_index)

    players = get_players(db, session_id)
    names = {p.id: p.nickname for p in players}
    active_ids = [p.id for p in players if p.active]

    answered_ids = []
    for answer in event_ledger.get_answers(db, session_id, question_index):
        if answer["player_id"] not in answered_ids:
            answered_ids.append(answer["player_id"])
    not_answered_ids = [pid for pid in active_ids if pid not in answered_ids]

    return {
        "question_index": question_index,
        "answered_count": len(answered_ids),
        "active_player_count": len(active_ids),
        "all_answered": len(active_ids) > 0 and not not_answered_ids,
        "answered_player_ids": answered_ids,
        "answered_names": [names.get(pid, pid) for pid in answered_ids],
        "not_answered_player_ids": not_answered_ids,
        "not_answered_names": [names.get(pid, pid) for pid in not_answered_ids],
    }


def get_results(db: Session, session_id: str) -> Dict[str, Any]:
    """
    整個場次的作答結果（管理端結果分頁）

    每位玩家的每題答案，以及答對題數；答案對錯以題庫重新計算
    """
    # 場次不存在時拋出 SessionNotFound
    get_state_version(db, session_id)

    questions = get_questions(db, session_id)
    by_index = {q.position: q for q in questions}
    players = get_players(db, session_id)

    answers_by_player: Dict[str, Dict[int, Optional[int]]] = {p.id: {} for p in players}
    for answer in event_ledger.get_all_answers(db, session_id):
        if answer["player_id"] in answers_by_player:
            answers_by_player[answer["player_id"]][answer["question_index"]] = answer["answer_index"]

    rows = []
    for player in players:
        answered = answers_by_player[player.id]
        cells = []
        correct_count = 0
        for question in questions:
            answer_index = answered.get(question.position)
            is_correct = answer_index is not None and answer_index == question.correct_index
            correct_count += int(is_correct)
            cells.append({
                "question_index": question.position,
                "answer_index": answer_index,
                "is_correct": is_correct,
            })
        rows.append({
            "player_id": player.id,
            "nickname": player.nickname,
            "active": player.active,
            "answers": cells,
            "correct_count": correct_count,
            "answered_count": sum(1 for qi in answered if qi in by_index),
        })

    return {
        "questions": [
            {
                "index": q.position,
                "text": q.text,
                "correct_index": q.correct_index,
                "correct_text": q.correct_text,
            }
            for q in questions
        ],
        "players": rows,
    }
