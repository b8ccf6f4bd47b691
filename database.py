from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import Optional
import logging

from core.exceptions import QuizGameException, StorageBusy

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./quiz_game.db"
    db_busy_timeout_seconds: float = 5.0
    default_session_id: str = "default"
    seed_default_questions: bool = True
    message_history_limit: int = 10
    backup_dir: Optional[str] = None
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def build_engine(database_url: str, busy_timeout: float = None, **kwargs):
    """
    建立 Engine，並依資料庫種類設定鎖等待上限

    SQLite：
    - check_same_thread=False：FastAPI 的 threadpool 會跨執行緒使用連線
    - timeout / busy_timeout：寫鎖最多等待 busy_timeout 秒，逾時拋出 OperationalError
    - WAL：讀者不會擋住寫者

    PostgreSQL：
    - lock_timeout：行鎖等待上限
    """
    if busy_timeout is None:
        busy_timeout = settings.db_busy_timeout_seconds

    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        connect_args = {"check_same_thread": False, "timeout": busy_timeout}
    elif database_url.startswith("postgresql"):
        connect_args = {"options": f"-c lock_timeout={int(busy_timeout * 1000)}"}
    else:
        connect_args = {}

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        **kwargs
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            if ":memory:" not in database_url:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout * 1000)}")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _is_lock_timeout(error: OperationalError) -> bool:
    message = str(error.orig).lower() if error.orig is not None else str(error).lower()
    return "locked" in message or "lock timeout" in message or "busy" in message


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def some_business_logic(db: Session, ...):
            # 所有 DB 操作都在一個 transaction 內
            player = Player(...)
            db.add(player)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 遊戲規則異常（QuizGameException）記 INFO，其餘記 ERROR
        - 鎖等待逾時轉成 StorageBusy
        - 異常會被重新拋出（讓上層處理）

    注意：
        - 第一個參數必須是 db: Session
        - 不要在函式內手動 commit（decorator 會處理）
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # 找出 db session（可能在 args 或 kwargs）
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except QuizGameException as e:
            logger.info(f"Transaction rejected in {func.__name__}: {e.reason} ({e})")
            db.rollback()
            raise
        except OperationalError as e:
            db.rollback()
            if _is_lock_timeout(e):
                logger.warning(f"Lock wait exceeded in {func.__name__}: {e.orig}")
                raise StorageBusy(f"Storage busy during {func.__name__}, retry later") from e
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            raise
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
