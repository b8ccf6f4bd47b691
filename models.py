"""
資料庫模型

所有資料都屬於某個 QuizSession（場次），刪除場次會 cascade 刪除底下所有資料。
SavedSession 是唯一的例外：存檔獨立於場次存在。
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow():
    return datetime.now(timezone.utc)


class GamePhase(str, enum.Enum):
    WAITING = "waiting"
    QUESTION_SHOWN = "question_shown"
    OPTIONS_SHOWN = "options_shown"
    REVEAL = "reveal"
    FINISHED = "finished"


class MessageType(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class QuizSession(Base):
    __tablename__ = "quiz_sessions"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    game_state = relationship(
        "GameState", uselist=False, back_populates="session",
        cascade="all, delete-orphan", passive_deletes=True
    )
    players = relationship(
        "Player", back_populates="session", order_by="Player.row_id",
        cascade="all, delete-orphan", passive_deletes=True
    )
    questions = relationship(
        "Question", back_populates="session", order_by="Question.position",
        cascade="all, delete-orphan", passive_deletes=True
    )
    buzzers = relationship("Buzzer", cascade="all, delete-orphan", passive_deletes=True)
    answers = relationship("Answer", cascade="all, delete-orphan", passive_deletes=True)
    spoken_marks = relationship("SpokenMark", cascade="all, delete-orphan", passive_deletes=True)
    note = relationship("Note", uselist=False, cascade="all, delete-orphan", passive_deletes=True)
    messages = relationship("Message", cascade="all, delete-orphan", passive_deletes=True)


class GameState(Base):
    """
    每個場次一列的遊戲狀態

    不變量：
    - phase == FINISHED 時 game_started 必為 False
    - version 只增不減（只能透過 bump_state_version 遞增）
    """
    __tablename__ = "game_states"

    session_id = Column(
        String(64), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    game_started = Column(Boolean, default=False, nullable=False)
    current_question_index = Column(Integer, default=0, nullable=False)
    phase = Column(
        Enum(GamePhase, values_callable=lambda e: [m.value for m in e], native_enum=False,
             validate_strings=True),
        default=GamePhase.WAITING,
        nullable=False
    )
    first_buzzer_player_id = Column(String(64), nullable=True)
    buzz_locked = Column(Boolean, default=False, nullable=False)
    last_updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    version = Column(Integer, default=1, nullable=False)

    session = relationship("QuizSession", back_populates="game_state")


class Player(Base):
    __tablename__ = "players"
    __table_args__ = (
        UniqueConstraint("session_id", "nickname", name="uq_player_nickname"),
    )

    # row_id 決定加入順序；id 是對外的不透明識別碼
    row_id = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False)
    session_id = Column(
        String(64), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    nickname = Column(String(100), nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    session = relationship("QuizSession", back_populates="players")


class Question(Base):
    """
    題目

    original_correct_text / shuffle_verified 是寫入時推導的稽核欄位，
    讀取時仍以 options[correct_index] 為準。
    """
    __tablename__ = "questions"
    __table_args__ = (
        UniqueConstraint("session_id", "position", name="uq_question_position"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(64), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)
    correct_index = Column(Integer, nullable=False)
    image_ref = Column(String(500), default="", nullable=False)
    explanation = Column(Text, default="", nullable=False)
    original_correct_text = Column(Text, default="", nullable=False)
    shuffle_verified = Column(Boolean, default=False, nullable=False)

    session = relationship("QuizSession", back_populates="questions")

    @property
    def correct_text(self):
        return self.options[self.correct_index]


class Buzzer(Base):
    __tablename__ = "buzzers"
    __table_args__ = (
        UniqueConstraint("session_id", "player_id", "question_index", name="uq_buzzer_event"),
        Index("idx_buzzers_session", "session_id", "question_index"),
    )

    # id 同時是 timestamp 相同時的插入順序
    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(64), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False
    )
    player_id = Column(
        String(64), ForeignKey("players.id", ondelete="CASCADE"), nullable=False
    )
    question_index = Column(Integer, nullable=False)
    timestamp = Column(BigInteger, nullable=False)

    player = relationship("Player")


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (
        UniqueConstraint("session_id", "player_id", "question_index", name="uq_answer_event"),
        Index("idx_answers_session", "session_id", "question_index"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(64), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False
    )
    player_id = Column(
        String(64), ForeignKey("players.id", ondelete="CASCADE"), nullable=False
    )
    question_index = Column(Integer, nullable=False)
    answer_index = Column(Integer, nullable=False)
    # 寫入時推導，保留作稽核
    is_correct = Column(Boolean, nullable=False)
    timestamp = Column(BigInteger, nullable=False)

    player = relationship("Player")


class SpokenMark(Base):
    __tablename__ = "spoken_marks"
    __table_args__ = (
        UniqueConstraint("session_id", "player_id", "question_index", name="uq_spoken_mark"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(64), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False
    )
    player_id = Column(
        String(64), ForeignKey("players.id", ondelete="CASCADE"), nullable=False
    )
    question_index = Column(Integer, nullable=False)


class Note(Base):
    __tablename__ = "notes"

    session_id = Column(
        String(64), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    content = Column(Text, default="", nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(64), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text = Column(Text, nullable=False)
    type = Column(
        Enum(MessageType, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=MessageType.INFO,
        nullable=False
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SavedSession(Base):
    __tablename__ = "saved_sessions"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    source_session_id = Column(String(64), nullable=True)
    session_data = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
