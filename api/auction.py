"""
Auction API Endpoints（參與者端）

職責：
1. 出價
2. 完整快照（重連時用）
3. 導航：依目前狀態告訴客戶端該顯示哪個畫面
4. 最終排名
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import BidRequest, BidResponse, NavigationResponse, StateResponse
from core.auction_engine import AuctionEngine
from core.exceptions import AuctionError
from core.presence import presence
from services.navigation_service import resolve_screen
from services.results_service import get_standings
from services.snapshot_service import full_snapshot

router = APIRouter(prefix="/api", tags=["auction"])
logger = logging.getLogger(__name__)


@router.post("/auction/bid", response_model=BidResponse)
def submit_bid(bid: BidRequest, db: Session = Depends(get_db)):
    """
    出價（固定加價）

    前置條件：
    - 有物品在拍（ACTIVE）、拍賣沒有暫停、時間還沒到
    - 不是目前的最高出價者
    - purse >= currentBid + increment

    成功後 auction/current 會廣播給所有人；客戶端畫面以廣播為準，
    這裡的回應只是 ack。
    """
    try:
        state = AuctionEngine.submit_bid(db, bid.teamId, bid.expectedBid)
        return BidResponse(
            message=f"Bid accepted at {state.current_bid}",
            currentBid=state.current_bid,
            highestBidder=state.highest_bidder_team_id
        )

    except AuctionError as e:
        logger.info(f"Bid from team {bid.teamId} rejected: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to submit bid: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/state", response_model=StateResponse)
def get_state(db: Session = Depends(get_db)):
    """完整快照：lobby、teams、auction、線上名單"""
    snapshot = full_snapshot(db)
    snapshot["onlineParticipants"] = presence.online()
    return snapshot


@router.get("/navigation", response_model=NavigationResponse)
def get_navigation(role: str = Query("PARTICIPANT"), db: Session = Depends(get_db)):
    """
    依目前快照決定畫面

    參數：
        role: ANONYMOUS / PARTICIPANT / ADMIN
    """
    snapshot = full_snapshot(db)
    auction = snapshot["auction"]
    try:
        navigation = resolve_screen(
            snapshot["lobby"]["status"],
            auction["status"] if auction else None,
            role
        )
        return NavigationResponse(
            screen=navigation.screen.value,
            paused=navigation.paused,
            showResolution=navigation.show_resolution
        )

    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role {role}")


@router.get("/results")
def get_results(db: Session = Depends(get_db)):
    """最終排名（依購得物品的 importanceScore 總和）"""
    return {"standings": get_standings(db)}
