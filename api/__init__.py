"""
HTTP API 層

每個 router 只負責：解析請求 -> 呼叫 core 的 Manager / Controller -> 組回應。
業務規則全部在 core 與 services。
"""
