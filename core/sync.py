"""
同步層：在 commit 時擷取變更，交給 publisher 廣播

流程：
1. 業務邏輯修改資料後呼叫 touch(db, obj)，version +1 並記錄「這份文件變了」
2. before_commit：flush 後把記錄的文件序列化成快照訊息（含衍生事件 teamsUpdated）
3. after_commit：把訊息交給 publisher（Broadcaster）
4. after_rollback：丟棄所有待送訊息

所以被拒絕或失敗的操作永遠不會被廣播，客戶端看到的一定是已經 commit 的狀態。
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from models import LobbySettings, Team
from services.snapshot_service import (
    document_key,
    serialize_document,
    teams_updated_payload,
)

logger = logging.getLogger(__name__)

_TOUCHED = "sync_touched"
_TOMBSTONES = "sync_tombstones"
_OUTBOX = "sync_outbox"

Message = Dict[str, Any]
Publisher = Callable[[List[Message]], None]

_publisher: Optional[Publisher] = None


def set_publisher(publisher: Optional[Publisher]) -> None:
    """安裝（或移除）commit 後接收訊息的 publisher"""
    global _publisher
    _publisher = publisher


def document_message(document: str, version: int, data: Optional[Dict[str, Any]]) -> Message:
    return {
        "event": "document",
        "data": {"document": document, "version": version, "data": data},
    }


def event_message(name: str, data: Dict[str, Any]) -> Message:
    return {"event": name, "data": data}


def touch(db: Session, *objs) -> None:
    """
    標記文件已變更（version +1），commit 時廣播

    參數：
        db: SQLAlchemy Session
        objs: LobbySettings / Team / AuctionState / CatalogueEntry
    """
    touched = db.info.setdefault(_TOUCHED, [])
    for obj in objs:
        obj.version = (obj.version or 0) + 1
        touched.append(obj)


def touch_deleted(db: Session, team: Team) -> None:
    """Team 被刪除時送出 tombstone（data=None）"""
    version = (team.version or 0) + 1
    db.info.setdefault(_TOMBSTONES, []).append(
        document_message(document_key(team), version, None)
    )


@event.listens_for(Session, "before_commit")
def _collect_changes(session: Session) -> None:
    touched = session.info.pop(_TOUCHED, None) or []
    tombstones = session.info.pop(_TOMBSTONES, None) or []
    if not touched and not tombstones:
        return

    session.flush()

    messages: List[Message] = []
    seen = set()
    teams_changed = bool(tombstones)
    for obj in touched:
        state = inspect(obj)
        if state.deleted or state.was_deleted or state.detached:
            continue
        key = document_key(obj)
        if key in seen:
            continue
        seen.add(key)
        messages.append(document_message(key, obj.version, serialize_document(obj)))
        if isinstance(obj, (Team, LobbySettings)):
            teams_changed = True

    messages.extend(tombstones)
    if teams_changed:
        messages.append(event_message("teamsUpdated", teams_updated_payload(session)))

    session.info[_OUTBOX] = messages


@event.listens_for(Session, "after_commit")
def _publish_changes(session: Session) -> None:
    messages = session.info.pop(_OUTBOX, None)
    if not messages:
        return
    if _publisher is None:
        logger.debug(f"No publisher installed, dropping {len(messages)} messages")
        return
    _publisher(messages)


@event.listens_for(Session, "after_rollback")
def _discard_changes(session: Session) -> None:
    for key in (_TOUCHED, _TOMBSTONES, _OUTBOX):
        session.info.pop(key, None)
