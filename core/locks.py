"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

- PostgreSQL：SELECT ... FOR UPDATE 行級鎖，等待上限由 lock_timeout 控制
- SQLite：FOR UPDATE 會被忽略，寫入本身由資料庫層序列化（busy_timeout 控制等待上限）

兩種情況下，最終的正確性都由 bump_state_version 的版本比對保證，
這裡的鎖只是讓同一場次的階段轉換排隊，而不是輪詢或鎖檔。
"""
from sqlalchemy.orm import Session, Query

from models import GameState, Player


def with_game_state_lock(session_id: str, db: Session) -> Query:
    """
    鎖定一個場次的 GameState（行級鎖）

    使用場景：
    - 階段轉換（start / show_options / reveal / advance / reset）
    - 需要確保 GameState 在整個 transaction 期間不被其他請求修改

    範例：
        state = with_game_state_lock(session_id, db).first()
        if not state:
            raise SessionNotFound(session_id)
        state.phase = GamePhase.REVEAL
        bump_state_version(db, session_id)

    參數：
        session_id: 場次 ID
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待（上限為 lock_timeout）
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(GameState).filter(
        GameState.session_id == session_id
    ).populate_existing().with_for_update(nowait=False)


def with_game_state_share_lock(session_id: str, db: Session) -> Query:
    """
    以共享鎖讀取 GameState（FOR SHARE）

    使用場景：
    - 玩家事件寫入後重新確認階段：階段轉換必須等這個 transaction 結束

    參數：
        session_id: 場次 ID
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 取得結果）
    """
    return db.query(GameState).filter(
        GameState.session_id == session_id
    ).populate_existing().with_for_update(read=True, nowait=False)


def with_player_lock(session_id: str, player_id: str, db: Session) -> Query:
    """
    鎖定一個玩家（行級鎖）

    使用場景：
    - 修改玩家的 active 狀態

    參數：
        session_id: 場次 ID
        player_id: 玩家 ID
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 取得結果）
    """
    return db.query(Player).filter(
        Player.session_id == session_id,
        Player.id == player_id
    ).with_for_update(nowait=False)
