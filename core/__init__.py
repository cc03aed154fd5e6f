"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理大廳狀態轉換
- TeamArbiter：組隊操作的唯一決策點
- AuctionEngine / AuctionClock：拍賣流程、出價與伺服器計時
- Sync / Broadcaster：commit 後的快照廣播
- Locks：並發控制工具
"""
