"""
題庫服務：每個場次的有序題目列表

規則：
1. replace_all 是全有或全無：任何一題不合法就整批拒絕，舊題庫保持不變
2. 寫入前每題的選項各自洗牌，correct_index 重新對應到原本正確選項的新位置
3. 洗牌後用原本正確選項的文字做驗證，絕不允許寫入錯誤的答案索引

只做 flush，不 commit（交由外層 @transactional 處理）
"""
import logging
import random
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from models import Question
from core.exceptions import CriticalIntegrityError, QuestionNotFound, ValidationError

logger = logging.getLogger(__name__)


DEFAULT_QUESTIONS: List[Dict[str, Any]] = [
    {
        "text": "What is phishing?\n\n"
                "This is a common cyber attack that targets users through deceptive communication.",
        "options": [
            "Deceptive emails or sites that try to steal information like logins.",
            "A legitimate way to catch fish online.",
            "Fishing for real tuna with enterprise-grade hooks.",
        ],
        "correct_index": 0,
        "explanation": "Phishing is a cybersecurity attack where criminals send fake emails or "
                       "create fake websites to trick people into giving away sensitive information.",
    },
    {
        "text": "What is multi-factor authentication (MFA)?",
        "options": [
            "An extra login factor (e.g., app code, key) to protect accounts.",
            "Asking a colleague to say 'please' twice before logging in.",
        ],
        "correct_index": 0,
        "explanation": "MFA adds extra security layers beyond just a password. Even if someone "
                       "steals your password, they still need the second factor.",
    },
    {
        "text": "What should you do if you receive a suspicious email?\n\n"
                "The email claims to be from your bank and asks you to click a link urgently.",
        "options": [
            "Click the link to check if it's real.",
            "Reply with your account details.",
            "Delete the email or report it to IT.",
            "Forward it to all your colleagues.",
        ],
        "correct_index": 2,
        "explanation": "Never click suspicious links or reply with personal info. "
                       "Report it to IT or delete it.",
    },
]


def validate_questions(questions: Sequence[Dict[str, Any]]) -> None:
    """
    驗證整份題庫（任何一題不合法就拋出 ValidationError）

    每題需要：
    - text：非空字串
    - options：至少 2 個字串
    - correct_index：整數，0 <= correct_index < len(options)
    """
    if not questions:
        raise ValidationError("Question list cannot be empty")

    for index, q in enumerate(questions):
        text = q.get("text")
        options = q.get("options")
        correct = q.get("correct_index")

        if not isinstance(text, str) or not text.strip():
            raise ValidationError(f"Question at index {index} has no text")
        if not isinstance(options, (list, tuple)) or len(options) < 2:
            raise ValidationError(f"Question at index {index} must have at least 2 options")
        if not all(isinstance(option, str) for option in options):
            raise ValidationError(f"Question at index {index} has non-text options")
        if isinstance(correct, bool) or not isinstance(correct, int) \
                or correct < 0 or correct >= len(options):
            raise ValidationError(f"Invalid correct answer index at question {index}")


def shuffle_options(
    options: Sequence[str],
    correct_index: int,
    rng: Optional[random.Random] = None
) -> Tuple[List[str], int, bool]:
    """
    洗牌並重新對應正確答案

    流程：
    1. 記下原本正確選項的文字
    2. 對原始索引做均勻洗牌，追蹤原正確索引的新位置
    3. 用文字驗證新位置；不符就改用第一個完全相同文字的位置
    4. 找不到相同文字：CriticalIntegrityError

    返回：
        (洗牌後的選項, 新的 correct_index, 第一次驗證是否直接通過)
    """
    rng = rng or random
    correct_text = options[correct_index]

    order = list(range(len(options)))
    rng.shuffle(order)

    shuffled = [options[i] for i in order]
    new_index = order.index(correct_index) if correct_index in order else -1

    verified = new_index >= 0 and shuffled[new_index] == correct_text
    if not verified:
        matches = [i for i, option in enumerate(shuffled) if option == correct_text]
        if not matches:
            raise CriticalIntegrityError(
                f"Could not maintain correct answer integrity for option {correct_text[:50]!r}"
            )
        logger.warning(
            f"Shuffle verification fell back to text match for option {correct_text[:50]!r}"
        )
        new_index = matches[0]

    return shuffled, new_index, verified


def replace_all(
    db: Session,
    session_id: str,
    questions: Sequence[Dict[str, Any]],
    rng: Optional[random.Random] = None
) -> int:
    """
    整批替換場次題庫

    參數：
        db: SQLAlchemy Session
        session_id: 場次 ID
        questions: 依順序排列的題目 dict（text, options, correct_index, image_ref, explanation）
        rng: 洗牌用的亂數來源（測試可注入固定種子）

    返回：
        寫入的題數

    異常：
        ValidationError: 題目格式不合法（不會寫入任何東西）
        CriticalIntegrityError: 洗牌後無法確認正確答案（外層 rollback）
    """
    validate_questions(questions)

    # 先全部洗牌完成再動資料庫，任何一題失敗都不會留下部分結果
    prepared = []
    for position, q in enumerate(questions):
        options = list(q["options"])
        correct_text = options[q["correct_index"]]
        shuffled, new_index, verified = shuffle_options(options, q["correct_index"], rng)

        prepared.append(Question(
            session_id=session_id,
            position=position,
            text=q["text"],
            options=shuffled,
            correct_index=new_index,
            image_ref=q.get("image_ref") or "",
            explanation=q.get("explanation") or "",
            original_correct_text=correct_text,
            shuffle_verified=verified
        ))

    db.query(Question).filter(Question.session_id == session_id).delete(synchronize_session=False)
    db.flush()
    db.add_all(prepared)
    db.flush()

    logger.info(f"Replaced question bank for session {session_id} with {len(prepared)} questions")
    return len(prepared)


def restore_questions(db: Session, session_id: str, questions: Sequence[Dict[str, Any]]) -> int:
    """
    原樣寫回題目（不洗牌），用於載入存檔

    correct_index 仍會重新驗證，並用 original_correct_text 做稽核
    """
    validate_questions(questions)

    db.query(Question).filter(Question.session_id == session_id).delete(synchronize_session=False)
    db.flush()

    for position, q in enumerate(questions):
        options = list(q["options"])
        correct_text = options[q["correct_index"]]
        original = q.get("original_correct_text") or correct_text
        if original != correct_text:
            raise CriticalIntegrityError(
                f"Saved correct answer does not match its audit text at question {position}"
            )
        db.add(Question(
            session_id=session_id,
            position=position,
            text=q["text"],
            options=options,
            correct_index=q["correct_index"],
            image_ref=q.get("image_ref") or "",
            explanation=q.get("explanation") or "",
            original_correct_text=original,
            shuffle_verified=bool(q.get("shuffle_verified", True))
        ))

    db.flush()
    return len(questions)


def get_questions(db: Session, session_id: str) -> List[Question]:
    return db.query(Question).filter(
        Question.session_id == session_id
    ).order_by(Question.position).all()


def get_question(db: Session, session_id: str, question_index: int) -> Question:
    """
    取得指定位置的題目

    異常：
        QuestionNotFound: 該位置沒有題目
    """
    question = db.query(Question).filter(
        Question.session_id == session_id,
        Question.position == question_index
    ).first()
    if not question:
        raise QuestionNotFound(question_index)
    return question


def get_question_count(db: Session, session_id: str) -> int:
    return db.query(Question).filter(Question.session_id == session_id).count()


def question_to_dict(question: Question) -> Dict[str, Any]:
    return {
        "index": question.position,
        "text": question.text,
        "options": list(question.options),
        "correct_index": question.correct_index,
        "image_ref": question.image_ref,
        "explanation": question.explanation,
        "original_correct_text": question.original_correct_text,
        "shuffle_verified": question.shuffle_verified,
    }
