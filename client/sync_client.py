"""
SyncClient：把傳輸層接到 StateView

- 連線（含重連）：丟棄本地快取，重新抓完整快照，再重新登記 REGISTER_USER
  （事件通道不保證補送斷線期間的事件）
- 送出 intent：fire-and-await，在收到 ack 之前一律是 PENDING，不預設成功
- 斷線：所有 PENDING 的 intent 以 ConnectivityError 失敗，由使用者決定是否重送
  （join 等操作在伺服器端是冪等的，重送安全）
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional
import logging

from core.exceptions import ConnectivityError
from client.session import SessionContext
from client.state_view import StateView
from services.navigation_service import Role

logger = logging.getLogger(__name__)

PENDING = "PENDING"
OK = "OK"
FAILED = "FAILED"


@dataclass
class PendingIntent:
    request_id: str
    event: str
    status: str = PENDING
    message: Optional[str] = None


class SyncClient:
    """
    transport 需要提供：
        send(message: dict) -> None
        fetch_snapshot() -> dict   （GET /api/state）
    """

    def __init__(self, transport, session: SessionContext, view: Optional[StateView] = None,
                 on_error: Optional[Callable[[str], None]] = None):
        self.transport = transport
        self.session = session
        self.view = view or StateView()
        self.on_error = on_error
        self.connected = False
        self.pending: Dict[str, PendingIntent] = {}

    def on_connect(self) -> None:
        self.connected = True
        self.view.resync(self.transport.fetch_snapshot())
        current = self.session.current
        if current and current.role == Role.PARTICIPANT:
            self.transport.send(self.session.intent("REGISTER_USER"))
        logger.info("Connected, state resynchronized")

    def on_disconnect(self) -> None:
        self.connected = False
        for intent in self.pending.values():
            intent.status = FAILED
            intent.message = "Connection lost"
        self.pending.clear()
        logger.warning("Disconnected from event channel")

    def send_intent(self, event: str, **data: Any) -> PendingIntent:
        if not self.connected:
            raise ConnectivityError("Event channel unreachable")
        message = self.session.intent(event, **data)
        intent = PendingIntent(request_id=message["requestId"], event=event)
        self.pending[intent.request_id] = intent
        self.transport.send(message)
        return intent

    def on_message(self, message: Dict[str, Any]) -> None:
        event = message.get("event")
        data = message.get("data") or {}

        if event == "ack":
            intent = self.pending.pop(data.get("requestId"), None)
            if intent is not None:
                intent.status = OK if data.get("ok") else FAILED
                intent.message = data.get("message")
            return

        if event in ("errorMessage", "socketError"):
            # 失敗的 intent 另外會收到 ack(ok=False)，這裡只負責通知使用者
            if self.on_error:
                self.on_error(data.get("message"))
            return

        self.view.apply_event(message)

    def navigation(self):
        return self.view.navigation(self.session.role)


def reconnect_delays(base: float = 0.5, cap: float = 10.0) -> Iterator[float]:
    """無限次重連的等待時間（指數退避，上限 cap 秒）"""
    delay = base
    while True:
        yield delay
        delay = min(cap, delay * 2)
