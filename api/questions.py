"""
Question API Endpoints（主持人）

PUT 是整批替換：任何一題不合法就整批拒絕（422），舊題庫不變；
遊戲進行中拒絕（409）。
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import QuestionsIn, QuestionsOut
from core.game_controller import GameController
from core.exceptions import QuizGameException
from services.question_bank import get_questions, question_to_dict
from api.deps import ensured_session
from api.errors import game_error_response

router = APIRouter(prefix="/api/sessions", tags=["questions"])
logger = logging.getLogger(__name__)


@router.get("/{session_id}/questions")
def list_questions(session_id: str = Depends(ensured_session), db: Session = Depends(get_db)):
    try:
        questions = [question_to_dict(q) for q in get_questions(db, session_id)]
        return {"questions": questions, "count": len(questions)}

    except Exception as e:
        logger.error(f"Failed to list questions for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/{session_id}/questions", response_model=QuestionsOut)
def update_questions(
    questions_data: QuestionsIn,
    session_id: str = Depends(ensured_session),
    db: Session = Depends(get_db)
):
    """
    整批替換題庫

    每題的選項會重新洗牌，correct_index 跟著對應到正確選項的新位置
    """
    try:
        questions = [q.model_dump() for q in questions_data.questions]
        count, version = GameController.update_questions(db, session_id, questions)
        logger.info(f"Updated {count} questions for session {session_id}")
        return QuestionsOut(count=count, version=version)

    except QuizGameException as e:
        return game_error_response(e)
    except Exception as e:
        logger.error(f"Failed to update questions for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
