"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理所有階段轉換
- Controller / Manager：場次、遊戲流程、存檔、筆記的 transaction 邊界
- Locks：並發控制工具
"""
