"""
命名服務：生成場次 ID、玩家 ID、存檔 ID，以及整理玩家暱稱

純計算邏輯，不涉及狀態轉換
"""
import secrets
import string
from datetime import datetime, timezone

from core.exceptions import ValidationError

NICKNAME_MAX_LENGTH = 40


def generate_session_id() -> str:
    """
    生成不透明的場次 ID

    範例：session_3f9a1c2b7d4e

    注意：
    - 不檢查唯一性（由呼叫者負責）
    - 48 bits 隨機，碰撞機率極低
    """
    return f"session_{secrets.token_hex(6)}"


def generate_player_id() -> str:
    """
    生成不透明的玩家 ID（整個場次生命週期內不變）
    """
    return secrets.token_hex(8)


def generate_save_id() -> str:
    return f"save_{secrets.token_hex(6)}"


def default_session_name() -> str:
    """
    範例：Quiz Session 2026-10-18 14:05
    """
    return "Quiz Session " + datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M")


def normalize_nickname(nickname: str) -> str:
    """
    整理玩家暱稱

    邏輯：
    - 去掉前後空白，連續空白壓成一個
    - 移除不可列印字元
    - 長度上限 NICKNAME_MAX_LENGTH

    異常：
        ValidationError: 整理後為空字串
    """
    if not isinstance(nickname, str):
        raise ValidationError("Nickname must be text")

    printable = "".join(ch for ch in nickname if ch.isprintable() or ch in string.whitespace)
    cleaned = " ".join(printable.split())[:NICKNAME_MAX_LENGTH]
    if not cleaned:
        raise ValidationError("Nickname cannot be empty")
    return cleaned
