"""
服務層

這個 package 包含純讀取 / 純計算邏輯，不負責狀態轉換：
- SnapshotService：把資料列序列化成快照文件
- NavigationService：由狀態決定畫面
- ResultsService：最終排名
"""
