"""
API 層

- participants：參與者註冊（最小介面）
- auction：出價、完整快照、導航、結果
- admin：拍賣控制台（需要 X-Admin-Token）
- websocket：事件通道（組隊 intent 與廣播）
"""
