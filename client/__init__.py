"""
客戶端同步工具

每個客戶端都用同一套規則從伺服器推送的狀態推導畫面：
- StateView：兩條通道（快照 / 事件）合併成單一、依 version 前進的狀態
- SessionContext：明確的登入狀態，取代全域的「目前參與者」
- SyncClient：連線、重連與 intent 的 pending 狀態
"""
