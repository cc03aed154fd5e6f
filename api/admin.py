"""
Admin API Endpoints（拍賣控制台）

所有 endpoint 都需要 X-Admin-Token（靜態管理員憑證）。

職責：
1. 目錄：查詢 / 匯入物品
2. 生命週期：start / pause / resume / end / restart
3. 游標：select-player / select-next / change-phase / resolve-item
"""
import hmac
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db, settings
from models import Phase
from schemas import CatalogueLoad, ChangePhaseRequest, MessageResponse, SelectItemRequest
from core.auction_engine import AuctionEngine
from core.exceptions import AuctionError
from services.snapshot_service import item_document

logger = logging.getLogger(__name__)


def is_admin_token(token: Optional[str]) -> bool:
    return token is not None and hmac.compare_digest(token, settings.admin_token)


def require_admin(x_admin_token: Optional[str] = Header(None)):
    if not is_admin_token(x_admin_token):
        raise HTTPException(status_code=401, detail="Admin credentials required")


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _admin_action(db: Session, action: Callable, message: str, *args) -> MessageResponse:
    """執行管理員操作：業務異常轉成對應的 HTTP 狀態碼，其餘一律 500"""
    try:
        action(db, *args)
        logger.info(f"Admin action {action.__name__}: {message}")
        return MessageResponse(message=message)

    except AuctionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Admin action {action.__name__} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/players")
def list_players(phase: Optional[Phase] = Query(None), db: Session = Depends(get_db)):
    """
    依 phase 列出目錄物品

    返回：
        - players: 物品列表（含 status / wasSent）
        - next: 該 phase 佇列中下一個尚未送出的物品 id（沒有則為 None）
    """
    items = AuctionEngine.list_items(db, phase)
    queue = AuctionEngine.queue(db, phase) if phase is not None else []
    return {
        "players": [item_document(i) for i in items],
        "next": queue[0].id if queue else None,
    }


@router.post("/players", response_model=MessageResponse)
def load_players(payload: CatalogueLoad, db: Session = Depends(get_db)):
    """匯入 / 更新目錄物品"""
    entries = [p.model_dump() for p in payload.players]
    return _admin_action(
        db, AuctionEngine.load_catalogue, f"Loaded {len(entries)} items", entries
    )


@router.post("/start-auction", response_model=MessageResponse)
def start_auction(db: Session = Depends(get_db)):
    """
    開始拍賣（LOCKED -> STARTING -> LIVE）

    前置條件：大廳必須已鎖定
    """
    return _admin_action(db, AuctionEngine.start_auction, "Auction started")


@router.post("/pause-auction", response_model=MessageResponse)
def pause_auction(db: Session = Depends(get_db)):
    return _admin_action(db, AuctionEngine.pause, "Auction paused")


@router.post("/resume-auction", response_model=MessageResponse)
def resume_auction(db: Session = Depends(get_db)):
    return _admin_action(db, AuctionEngine.resume, "Auction resumed")


@router.post("/end-auction", response_model=MessageResponse)
def end_auction(db: Session = Depends(get_db)):
    """結束拍賣，所有客戶端會被導到結果頁"""
    return _admin_action(db, AuctionEngine.end_auction, "Auction ended")


@router.post("/restart-auction", response_model=MessageResponse)
def restart_auction(db: Session = Depends(get_db)):
    """重新開始（RESULTS -> LOCKED），重置目錄狀態與各隊 purse"""
    return _admin_action(db, AuctionEngine.restart, "Auction has been restarted")


@router.post("/select-player", response_model=MessageResponse)
def select_player(request: SelectItemRequest, db: Session = Depends(get_db)):
    return _admin_action(
        db, AuctionEngine.select_item, f"Item {request.playerId} sent to auction", request.playerId
    )


@router.post("/select-next", response_model=MessageResponse)
def select_next(db: Session = Depends(get_db)):
    return _admin_action(db, AuctionEngine.select_next_item, "Next item sent to auction")


@router.post("/change-phase", response_model=MessageResponse)
def change_phase(request: ChangePhaseRequest, db: Session = Depends(get_db)):
    return _admin_action(
        db, AuctionEngine.change_phase, f"Phase changed to {request.phase.value}", request.phase
    )


@router.post("/resolve-item", response_model=MessageResponse)
def resolve_item(db: Session = Depends(get_db)):
    """立即以目前出價結算在拍物品（不等計時結束）"""
    return _admin_action(db, AuctionEngine.resolve, "Current item resolved")
