"""
Broadcaster：把權威狀態推給所有連線中的客戶端

- publish() 可以從任何執行緒呼叫（業務邏輯在 threadpool 裡 commit），
  訊息經由 call_soon_threadsafe 放進 asyncio.Queue，由單一 worker 依序送出
- 同一份文件只會往前送：version 不比上次送出的新就丟掉，
  客戶端永遠不會在新快照之後收到舊快照
"""
import asyncio
import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Broadcaster:

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}
        self._versions: Dict[str, int] = {}
        self._versions_lock = threading.Lock()
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = self._loop.create_task(self._drain())

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
        self._loop = None
        # 下次啟動時以資料庫裡的 version 為準
        with self._versions_lock:
            self._versions.clear()

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self.connections[connection_id] = websocket
        logger.info(f"Client {connection_id} connected ({len(self.connections)} online)")
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        if self.connections.pop(connection_id, None) is not None:
            logger.info(f"Client {connection_id} disconnected ({len(self.connections)} online)")

    def is_stale(self, message: Dict[str, Any]) -> bool:
        """document 訊息的 version 不比上次送出的新 → 過期"""
        if message.get("event") != "document":
            return False
        data = message["data"]
        with self._versions_lock:
            last = self._versions.get(data["document"], -1)
            if data["version"] <= last:
                return True
            self._versions[data["document"]] = data["version"]
            return False

    def publish(self, messages: List[Dict[str, Any]]) -> None:
        """執行緒安全的廣播入口（sync.set_publisher 安裝的就是這個）"""
        fresh = [m for m in messages if not self.is_stale(m)]
        if self._loop is None or self._queue is None:
            logger.debug(f"Broadcaster not running, dropping {len(fresh)} messages")
            return
        for message in fresh:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)

    async def send(self, connection_id: str, message: Dict[str, Any]) -> None:
        websocket = self.connections.get(connection_id)
        if websocket is None:
            return
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Failed to send to {connection_id}: {e}")
            self.disconnect(connection_id)

    async def broadcast(self, message: Dict[str, Any]) -> None:
        for connection_id in list(self.connections):
            await self.send(connection_id, message)

    async def _drain(self) -> None:
        while True:
            message = await self._queue.get()
            await self.broadcast(message)


broadcaster = Broadcaster()
