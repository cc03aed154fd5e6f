"""
WebSocket 事件通道

訊息格式：{"event": <名稱>, "data": {...}, "requestId": <可選>}

客戶端 -> 伺服器（intent）：
    REGISTER_USER, requestTeams, createTeam, joinTeam,
    adminLockTeams, adminReopenTeams, adminRemoveMember, adminUpdateTeam, adminDeleteTeam

伺服器 -> 客戶端：
    snapshot（連線時的完整快照）, document（快照 feed）, teamsUpdated,
    onlineParticipantsUpdate, ack, errorMessage, socketError

所有 intent 都在 threadpool 中交給 TeamArbiter，event loop 不會卡在 writer_lock 上。
狀態變更不在這裡回傳，而是 commit 後由 Broadcaster 廣播給每一個人（包括發送者）。
"""
import json
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
import logging

from database import get_db
from schemas import (
    CreateTeamIntent,
    DeleteTeamIntent,
    JoinTeamIntent,
    RegisterUserIntent,
    RemoveMemberIntent,
    UpdateTeamIntent,
)
from api.admin import is_admin_token
from core.broadcaster import broadcaster
from core.exceptions import AuctionError
from core.presence import presence
from core.sync import event_message
from core.team_arbiter import TeamArbiter
from services.snapshot_service import full_snapshot, teams_updated_payload

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


def _create_team(db: Session, data: Dict[str, Any]):
    intent = CreateTeamIntent(**data)
    TeamArbiter.create_team(db, intent.name, intent.maxSize, intent.creatorEnrollmentId)


def _join_team(db: Session, data: Dict[str, Any]):
    intent = JoinTeamIntent(**data)
    TeamArbiter.join_team(db, intent.teamId, intent.enrollment)


def _request_teams(db: Session, data: Dict[str, Any]):
    return event_message("teamsUpdated", teams_updated_payload(db))


def _lock_teams(db: Session, data: Dict[str, Any]):
    TeamArbiter.lock_lobby(db, presence.online())


def _reopen_teams(db: Session, data: Dict[str, Any]):
    TeamArbiter.reopen_lobby(db)


def _remove_member(db: Session, data: Dict[str, Any]):
    intent = RemoveMemberIntent(**data)
    TeamArbiter.remove_member(db, intent.teamId, intent.enrollmentNumber)


def _update_team(db: Session, data: Dict[str, Any]):
    intent = UpdateTeamIntent(**data)
    TeamArbiter.update_team(db, intent.teamId, intent.name, intent.maxSize)


def _delete_team(db: Session, data: Dict[str, Any]):
    intent = DeleteTeamIntent(**data)
    TeamArbiter.delete_team(db, intent.teamId)


INTENT_HANDLERS: Dict[str, Callable] = {
    "requestTeams": _request_teams,
    "createTeam": _create_team,
    "joinTeam": _join_team,
    "adminLockTeams": _lock_teams,
    "adminReopenTeams": _reopen_teams,
    "adminRemoveMember": _remove_member,
    "adminUpdateTeam": _update_team,
    "adminDeleteTeam": _delete_team,
}

ADMIN_ONLY = {name for name in INTENT_HANDLERS if name.startswith("admin")}


def _online_message() -> Dict[str, Any]:
    return event_message("onlineParticipantsUpdate", {"enrollmentIds": presence.online()})


async def _ack(connection_id: str, request_id: Optional[str], ok: bool, message: str = "ok"):
    if request_id is None:
        return
    await broadcaster.send(
        connection_id,
        event_message("ack", {"requestId": request_id, "ok": ok, "message": message})
    )


async def _reject(connection_id: str, request_id: Optional[str], message: str):
    await broadcaster.send(connection_id, event_message("errorMessage", {"message": message}))
    await _ack(connection_id, request_id, False, message)


async def _register(connection_id: str, enrollment: str) -> None:
    if presence.register(connection_id, enrollment):
        broadcaster.publish([_online_message()])
    logger.info(f"Connection {connection_id} registered as {enrollment}")


async def handle_message(connection_id: str, raw: str, is_admin: bool, db: Session) -> None:
    """
    處理一則客戶端訊息

    - 格式錯誤 / 未知事件：socketError
    - 權限不足、業務規則拒絕、欄位驗證失敗：errorMessage + ack(ok=False)
    - 成功：ack(ok=True)，狀態變更由 Broadcaster 另外廣播
    """
    try:
        message = json.loads(raw)
        event = message["event"]
    except (ValueError, KeyError, TypeError):
        await broadcaster.send(
            connection_id, event_message("socketError", {"message": "Malformed message"})
        )
        return

    data = message.get("data") or {}
    request_id = message.get("requestId")
    if isinstance(data, str):
        # adminDeleteTeam 舊版客戶端直接送 teamId 字串
        data = {"teamId": data}

    if event == "REGISTER_USER":
        try:
            intent = RegisterUserIntent(**data)
        except SchemaValidationError:
            await _reject(connection_id, request_id, "Enrollment number is required")
            return
        await _register(connection_id, intent.enrollment)
        await _ack(connection_id, request_id, True)
        return

    handler = INTENT_HANDLERS.get(event)
    if handler is None:
        await broadcaster.send(
            connection_id, event_message("socketError", {"message": f"Unknown event {event}"})
        )
        return

    if event in ADMIN_ONLY and not is_admin:
        await _reject(connection_id, request_id, "Admin privileges required")
        return

    try:
        reply = await run_in_threadpool(handler, db, data)
    except AuctionError as e:
        logger.info(f"Intent {event} from {connection_id} rejected: {e}")
        await _reject(connection_id, request_id, str(e))
        return
    except SchemaValidationError as e:
        await _reject(connection_id, request_id, f"Invalid {event} payload: {e.error_count()} errors")
        return
    except Exception as e:
        logger.error(f"Intent {event} failed: {e}", exc_info=True)
        db.rollback()
        await _reject(connection_id, request_id, "Internal error")
        return

    if reply is not None:
        await broadcaster.send(connection_id, reply)
    await _ack(connection_id, request_id, True)


@router.websocket("/ws")
async def event_channel(
    websocket: WebSocket,
    enrollment: Optional[str] = None,
    token: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """
    事件通道

    連線時先送出完整快照（重連的客戶端不依賴任何補送事件），
    query 帶 enrollment 時直接登記上線；帶 token 時具有管理員權限。
    """
    connection_id = await broadcaster.connect(websocket)
    is_admin = is_admin_token(token)
    try:
        snapshot = await run_in_threadpool(full_snapshot, db)
        snapshot["onlineParticipants"] = presence.online()
        await broadcaster.send(connection_id, event_message("snapshot", snapshot))
        if enrollment:
            await _register(connection_id, enrollment)

        while True:
            raw = await websocket.receive_text()
            await handle_message(connection_id, raw, is_admin, db)

    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(connection_id)
        if presence.unregister(connection_id):
            broadcaster.publish([_online_message()])
