"""
服務層

這個 package 只做資料讀寫與計算（flush，不 commit），不負責 transaction：
- EventLedger：搶答 / 作答 / 口頭標記
- StateService：遊戲狀態與版本
- QuestionBank：題庫驗證與洗牌
- SnapshotService / SummaryService：輪詢快照與統計
- ArchiveService：存檔格式與載入
- BoardService：筆記與廣播訊息
- NamingService：ID 與暱稱
"""
