"""
StateView：客戶端的唯一權威狀態介面

伺服器透過兩條通道推送重疊的狀態：
- snapshot feed：`document` 訊息（settings/lobby、teams/{id}、auction/current、players/{id}）
- event channel：`teamsUpdated`、`snapshot`、`onlineParticipantsUpdate` 等事件

兩條通道只是 fan-in adapter（apply_snapshot / apply_event），消費端只看到
「每份文件一個 subscribe」。每份文件依 version 單調前進，舊的一律丟掉。

畫面上的出價只來自已確認的 auction/current 文件，不做任何本地預測。
"""
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from services.navigation_service import Navigation, resolve_screen

logger = logging.getLogger(__name__)

LOBBY_DOCUMENT = "settings/lobby"
AUCTION_DOCUMENT = "auction/current"
TEAM_PREFIX = "teams/"
PRESENCE_DOCUMENT = "presence/online"

Callback = Callable[[str, Optional[Dict[str, Any]]], None]


class StateView:

    def __init__(self):
        self._documents: Dict[str, Tuple[int, Optional[Dict[str, Any]]]] = {}
        self._subscribers: Dict[str, List[Callback]] = defaultdict(list)
        self.online: List[str] = []

    # ============ subscribe ============

    def subscribe(self, document: str, callback: Callback) -> Callable[[], None]:
        """
        訂閱一份文件；document 以 "/" 結尾時訂閱整個前綴（例如 "teams/"）

        callback(document, data)，data 為 None 代表文件被刪除。

        返回：
            取消訂閱的函式
        """
        self._subscribers[document].append(callback)

        def unsubscribe():
            if callback in self._subscribers.get(document, []):
                self._subscribers[document].remove(callback)

        return unsubscribe

    def _notify(self, document: str, data: Optional[Dict[str, Any]]) -> None:
        targets = list(self._subscribers.get(document, []))
        prefix = document[:document.find("/") + 1] if "/" in document else None
        if prefix and prefix != document:
            targets.extend(self._subscribers.get(prefix, []))
        for callback in targets:
            callback(document, data)

    # ============ fan-in adapters ============

    def apply_snapshot(self, message: Dict[str, Any]) -> bool:
        """snapshot feed adapter：處理 `document` 訊息"""
        payload = message["data"]
        return self._apply(payload["document"], payload["version"], payload["data"])

    def apply_event(self, message: Dict[str, Any]) -> bool:
        """
        event channel adapter

        - teamsUpdated：每個 team 都帶 version，逐一 upsert（刪除由 tombstone 處理）
        - snapshot：完整快照，逐份依 version 合併（不清空；清空只在 SyncClient 重連時做）
        - onlineParticipantsUpdate：線上名單（沒有版本，直接覆蓋）
        """
        event = message.get("event")
        data = message.get("data") or {}

        if event == "document":
            return self.apply_snapshot(message)
        if event == "snapshot":
            # 連線時的快照可能比已經收到的 document 舊，只能依 version 合併
            self.load(data)
            return True
        if event == "teamsUpdated":
            applied = False
            for team in data.get("teams", []):
                applied = self._apply(f"{TEAM_PREFIX}{team['id']}", team["version"], team) or applied
            return applied
        if event == "onlineParticipantsUpdate":
            self.online = list(data.get("enrollmentIds", []))
            self._notify(PRESENCE_DOCUMENT, {"enrollmentIds": self.online})
            return True
        return False

    def _apply(self, document: str, version: int, data: Optional[Dict[str, Any]]) -> bool:
        current = self._documents.get(document)
        if current is not None and version <= current[0]:
            logger.debug(f"Dropping stale {document} v{version} (have v{current[0]})")
            return False
        # tombstone 也保留 version，避免較舊的快照把已刪除的文件復活
        self._documents[document] = (version, data)
        self._notify(document, data)
        return True

    # ============ 重新同步 ============

    def reset(self) -> None:
        """重連時丟棄所有本地快取（訂閱保留）"""
        self._documents.clear()
        self.online = []

    def load(self, snapshot: Dict[str, Any]) -> None:
        """套用 GET /api/state 或 `snapshot` 事件的完整快照"""
        lobby = snapshot.get("lobby")
        if lobby:
            self._apply(LOBBY_DOCUMENT, lobby.get("version", 0), lobby)
        for team in snapshot.get("teams", []):
            self._apply(f"{TEAM_PREFIX}{team['id']}", team["version"], team)
        auction = snapshot.get("auction")
        if auction:
            self._apply(AUCTION_DOCUMENT, auction["version"], auction)
        if "onlineParticipants" in snapshot:
            self.online = list(snapshot["onlineParticipants"])

    def resync(self, snapshot: Dict[str, Any]) -> None:
        self.reset()
        self.load(snapshot)

    # ============ 讀取 ============

    def get(self, document: str) -> Optional[Dict[str, Any]]:
        entry = self._documents.get(document)
        return entry[1] if entry else None

    def version(self, document: str) -> int:
        entry = self._documents.get(document)
        return entry[0] if entry else -1

    def teams(self) -> List[Dict[str, Any]]:
        return [
            data for key, (_, data) in self._documents.items()
            if key.startswith(TEAM_PREFIX) and data is not None
        ]

    def team_of(self, enrollment_id: str) -> Optional[Dict[str, Any]]:
        return next((t for t in self.teams() if enrollment_id in t["members"]), None)

    @property
    def lobby_status(self) -> Optional[str]:
        lobby = self.get(LOBBY_DOCUMENT)
        return lobby["status"] if lobby else None

    @property
    def auction(self) -> Optional[Dict[str, Any]]:
        return self.get(AUCTION_DOCUMENT)

    @property
    def current_bid(self) -> Optional[int]:
        auction = self.auction
        return auction["currentBid"] if auction else None

    def navigation(self, role) -> Navigation:
        auction = self.auction
        return resolve_screen(self.lobby_status, auction["status"] if auction else None, role)
