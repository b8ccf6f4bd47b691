"""
API 請求 / 回應模型（Pydantic）
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models import MessageType


# ============ Player ============

class JoinIn(BaseModel):
    nickname: str = Field(..., min_length=1, max_length=100)


class JoinOut(BaseModel):
    success: bool = True
    player_id: str
    nickname: str
    existing: bool


class BuzzIn(BaseModel):
    player_id: str
    question_index: int = Field(..., ge=0)


class BuzzOut(BaseModel):
    success: bool = True
    nickname: str


class AnswerIn(BaseModel):
    player_id: str
    question_index: int = Field(..., ge=0)
    answer_index: int = Field(..., ge=0)


class AnswerOut(BaseModel):
    success: bool = True
    is_correct: bool
    correct_answer_text: str


class SpokenIn(BaseModel):
    player_id: str
    question_index: int = Field(..., ge=0)


class SpokenOut(BaseModel):
    success: bool = True
    newly_marked: bool


class PlayerActiveIn(BaseModel):
    active: bool


class PlayerOut(BaseModel):
    id: str
    nickname: str
    joined_at: datetime
    active: bool

    model_config = {"from_attributes": True}


# ============ Game ============

class TransitionIn(BaseModel):
    expected_version: Optional[int] = Field(default=None, ge=1)


class BuzzLockIn(TransitionIn):
    locked: bool = True


class TransitionOut(BaseModel):
    success: bool = True
    version: int


# ============ Questions ============

class QuestionIn(BaseModel):
    text: str
    options: List[str]
    correct_index: int
    image_ref: str = ""
    explanation: str = ""


class QuestionsIn(BaseModel):
    questions: List[QuestionIn]


class QuestionsOut(BaseModel):
    success: bool = True
    count: int
    version: int


# ============ Board ============

class NotesIn(BaseModel):
    content: str


class NotesOut(BaseModel):
    content: str
    updated_at: Optional[datetime] = None


class MessageIn(BaseModel):
    text: str
    type: MessageType = MessageType.INFO


class MessageOut(BaseModel):
    id: int
    text: str
    type: MessageType
    created_at: datetime


# ============ Sessions ============

class CreateSessionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class SessionOut(BaseModel):
    id: str
    name: str
    created_at: datetime
    is_active: bool

    model_config = {"from_attributes": True}


class SaveSessionIn(BaseModel):
    name: Optional[str] = None
    save_id: Optional[str] = None


class SavedSessionOut(BaseModel):
    id: str
    name: str
    source_session_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class LoadSessionOut(BaseModel):
    success: bool = True
    session_name: str
    version: int
    question_count: int
    player_count: int
