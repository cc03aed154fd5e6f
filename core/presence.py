"""
線上參與者名冊

REGISTER_USER 時登記，WebSocket 斷線時移除。同一位參與者可能開多個分頁，
所以用「連線數」計算，最後一條連線斷掉才算離線。

lock_lobby 用這份名冊判斷「線上但還沒分隊」的人數。
"""
import threading
from collections import Counter
from typing import List, Optional


class PresenceRegistry:

    def __init__(self):
        self._lock = threading.Lock()
        self._connections = {}
        self._counts = Counter()

    def register(self, connection_id: str, enrollment_id: str) -> bool:
        """
        登記連線所屬的參與者

        返回：
            True 如果線上名單因此改變
        """
        with self._lock:
            previous = self._connections.get(connection_id)
            if previous == enrollment_id:
                return False
            changed = self._release(previous)
            self._connections[connection_id] = enrollment_id
            self._counts[enrollment_id] += 1
            return changed or self._counts[enrollment_id] == 1

    def unregister(self, connection_id: str) -> bool:
        with self._lock:
            return self._release(self._connections.pop(connection_id, None))

    def _release(self, enrollment_id: Optional[str]) -> bool:
        if enrollment_id is None:
            return False
        self._counts[enrollment_id] -= 1
        if self._counts[enrollment_id] <= 0:
            del self._counts[enrollment_id]
            return True
        return False

    def online(self) -> List[str]:
        with self._lock:
            return sorted(self._counts)

    def clear(self) -> None:
        with self._lock:
            self._connections.clear()
            self._counts.clear()


presence = PresenceRegistry()
