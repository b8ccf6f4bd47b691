"""
把遊戲異常轉成 API 回應

回應格式：
    {"success": false, "reason": "<機器可讀代碼>", "error": "<說明>"}
VersionConflict 另外帶 current_version，前端重新讀取後可以直接重試
"""
from fastapi.responses import JSONResponse

from core.exceptions import QuizGameException, VersionConflict


def game_error_body(exc: QuizGameException) -> dict:
    body = {"success": False, "reason": exc.reason, "error": str(exc)}
    if isinstance(exc, VersionConflict):
        body["current_version"] = exc.current_version
    return body


def game_error_response(exc: QuizGameException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=game_error_body(exc))
