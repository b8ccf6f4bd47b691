"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

每個異常帶有：
- reason：給前端判斷用的機器可讀代碼（例如 already_buzzed）
- status_code：API 層回應時使用的 HTTP 狀態碼
"""


class QuizGameException(Exception):
    """所有遊戲異常的基類"""
    reason = "game_error"
    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.reason)


# ============ Phase 相關異常 ============

class InvalidPhase(QuizGameException):
    """目前階段不允許這個操作（可恢復，玩家稍後再試）"""
    reason = "invalid_phase"
    status_code = 409

    def __init__(self, message=None, phase=None):
        self.phase = phase
        super().__init__(message)


class VersionConflict(QuizGameException):
    """樂觀鎖版本不符：呼叫者必須重新讀取狀態後再試"""
    reason = "version_conflict"
    status_code = 409

    def __init__(self, expected_version, current_version):
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"State conflict detected: expected version {expected_version}, "
            f"current version is {current_version}"
        )


# ============ Event 相關異常 ============

class DuplicateEvent(QuizGameException):
    """違反唯一性約束（併發下的正常情況，不是 bug）"""
    reason = "duplicate_event"
    status_code = 409


class ConcurrentInsert(DuplicateEvent):
    """同一個唯一鍵被另一個請求搶先插入；整個 transaction 重跑一次即可"""
    reason = "concurrent_insert"


class AlreadyBuzzed(DuplicateEvent):
    """玩家在這一題已經按過搶答鈴"""
    reason = "already_buzzed"

    def __init__(self, player_id, question_index):
        self.player_id = player_id
        self.question_index = question_index
        super().__init__(f"Player {player_id} already buzzed on question {question_index}")


# ============ 參照相關異常 ============

class SessionNotFound(QuizGameException):
    """場次不存在"""
    reason = "session_not_found"
    status_code = 404

    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class UnknownPlayer(QuizGameException):
    """玩家不存在，或已被停用"""
    reason = "player_not_found"
    status_code = 404

    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} not found")


class QuestionNotFound(QuizGameException):
    """題目不存在"""
    reason = "question_not_found"
    status_code = 404

    def __init__(self, question_index):
        self.question_index = question_index
        super().__init__(f"Question {question_index} not found")


class SavedSessionNotFound(QuizGameException):
    """找不到存檔"""
    reason = "saved_session_not_found"
    status_code = 404

    def __init__(self, save_id):
        self.save_id = save_id
        super().__init__(f"Saved session {save_id} not found")


# ============ 驗證相關異常 ============

class ValidationError(QuizGameException):
    """輸入格式錯誤（題庫整批拒絕，不會部分寫入）"""
    reason = "validation_error"
    status_code = 422


class CriticalIntegrityError(QuizGameException):
    """洗牌後無法確認正確答案，整個操作必須中止"""
    reason = "critical_integrity_error"
    status_code = 500


# ============ 儲存層異常 ============

class StorageBusy(QuizGameException):
    """鎖等待逾時（暫時性錯誤，呼叫者可退避後重試）"""
    reason = "storage_busy"
    status_code = 503
