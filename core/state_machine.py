"""
大廳 / 拍賣狀態機

集中管理 LobbySettings.status 的所有轉換，任何模組都不能直接改 status。

  OPEN → LOCKED → STARTING → LIVE ⇄ PAUSED → RESULTS
  LOCKED → OPEN（reopen）
  RESULTS → LOCKED（restart，受控的重置邊，只能由管理員明確觸發）
"""
import logging

from sqlalchemy.orm import Session

from models import LobbySettings, LobbyStatus, LOBBY_ID
from core.locks import with_lobby_lock
from core.exceptions import InvalidStateTransition
from core.sync import touch

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    LobbyStatus.OPEN: {LobbyStatus.LOCKED},
    LobbyStatus.LOCKED: {LobbyStatus.OPEN, LobbyStatus.STARTING},
    LobbyStatus.STARTING: {LobbyStatus.LIVE},
    LobbyStatus.LIVE: {LobbyStatus.PAUSED, LobbyStatus.RESULTS},
    LobbyStatus.PAUSED: {LobbyStatus.LIVE, LobbyStatus.RESULTS},
    LobbyStatus.RESULTS: {LobbyStatus.LOCKED},
}


def get_lobby(db: Session, lock: bool = False) -> LobbySettings:
    """
    取得大廳設定（不存在就建立，初始狀態 OPEN）

    參數：
        db: SQLAlchemy Session
        lock: 是否加行級鎖
    """
    query = with_lobby_lock(db) if lock else db.query(LobbySettings).filter(LobbySettings.id == LOBBY_ID)
    lobby = query.first()
    if lobby is None:
        lobby = LobbySettings(id=LOBBY_ID, status=LobbyStatus.OPEN, version=0)
        db.add(lobby)
        db.flush()
    return lobby


class LobbyStateMachine:
    """LobbySettings.status 的唯一入口"""

    @staticmethod
    def can_transition(current: LobbyStatus, target: LobbyStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(db: Session, target: LobbyStatus) -> LobbySettings:
        """
        轉換大廳狀態

        流程：
        1. 鎖定 LobbySettings
        2. 檢查轉換是否合法
        3. 更新 status 並標記文件變更（commit 時廣播 settings/lobby）

        注意：
            不負責 commit，呼叫端必須在 @transactional 內使用

        異常：
            InvalidStateTransition: 非法轉換
        """
        lobby = get_lobby(db, lock=True)
        current = lobby.status

        if not LobbyStateMachine.can_transition(current, target):
            raise InvalidStateTransition(
                f"Cannot transition lobby from {current.value} to {target.value}"
            )

        lobby.status = target
        touch(db, lobby)

        logger.info(f"Lobby status {current.value} -> {target.value}")
        return lobby

    @staticmethod
    def require(db: Session, *allowed: LobbyStatus) -> LobbySettings:
        """確認大廳目前在允許的狀態之一，否則拋出 InvalidStateTransition"""
        lobby = get_lobby(db)
        if lobby.status not in allowed:
            raise InvalidStateTransition(
                f"Operation not allowed while lobby is {lobby.status.value}"
            )
        return lobby
