"""
快照序列化

把資料列轉成 snapshot feed 上的文件
（`settings/lobby`、`teams/{id}`、`auction/current`、`players/{id}`）。
每份文件都帶 version，客戶端用它丟掉過期的副本。
"""
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from models import (
    AuctionState,
    CatalogueEntry,
    LobbySettings,
    LobbyStatus,
    Team,
    LOBBY_ID,
    AUCTION_STATE_ID,
)

LOBBY_DOCUMENT = "settings/lobby"
AUCTION_DOCUMENT = "auction/current"
TEAM_PREFIX = "teams/"
ITEM_PREFIX = "players/"


def document_key(obj) -> str:
    if isinstance(obj, LobbySettings):
        return LOBBY_DOCUMENT
    if isinstance(obj, AuctionState):
        return AUCTION_DOCUMENT
    if isinstance(obj, Team):
        return f"{TEAM_PREFIX}{obj.id}"
    if isinstance(obj, CatalogueEntry):
        return f"{ITEM_PREFIX}{obj.id}"
    raise TypeError(f"{type(obj).__name__} is not a published document")


def lobby_document(lobby: LobbySettings) -> Dict[str, Any]:
    return {"status": lobby.status.value, "version": lobby.version}


def team_document(team: Team) -> Dict[str, Any]:
    return {
        "id": team.id,
        "name": team.name,
        "maxSize": team.max_size,
        "members": team.member_ids,
        "purse": team.purse,
        "boughtItems": [
            {
                "itemId": b.item_id,
                "name": b.name,
                "role": b.role,
                "kind": b.kind.value,
                "price": b.price,
            }
            for b in team.bought_items
        ],
        "version": team.version,
    }


def item_document(item: CatalogueEntry) -> Dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "kind": item.kind.value,
        "role": item.role,
        "phase": item.phase.value,
        "basePrice": item.base_price,
        "importanceScore": item.importance_score,
        "status": item.status.value,
        "wasSent": item.was_sent,
        "soldToTeamId": item.sold_to_team_id,
        "soldPrice": item.sold_price,
        "version": item.version,
    }


def auction_document(state: AuctionState) -> Dict[str, Any]:
    # bid 與 bidder 一律一起送出，客戶端不會看到只更新一半的出價
    bidder = state.highest_bidder
    return {
        "player": item_document(state.current_item) if state.current_item else None,
        "currentBid": state.current_bid,
        "highestBidder": bidder.id if bidder else None,
        "highestBidderName": bidder.name if bidder else None,
        "timer": state.timer_seconds,
        "status": state.status.value,
        "phase": state.phase.value,
        "lastSold": state.last_resolution,
        "version": state.version,
    }


def serialize_document(obj) -> Dict[str, Any]:
    if isinstance(obj, LobbySettings):
        return lobby_document(obj)
    if isinstance(obj, AuctionState):
        return auction_document(obj)
    if isinstance(obj, Team):
        return team_document(obj)
    if isinstance(obj, CatalogueEntry):
        return item_document(obj)
    raise TypeError(f"{type(obj).__name__} is not a published document")


def list_team_documents(db: Session) -> List[Dict[str, Any]]:
    teams = db.query(Team).order_by(Team.created_at, Team.id).all()
    return [team_document(t) for t in teams]


def teams_updated_payload(db: Session) -> Dict[str, Any]:
    """`teamsUpdated` 事件廣播的內容"""
    lobby = db.query(LobbySettings).filter(LobbySettings.id == LOBBY_ID).first()
    locked = lobby is not None and lobby.status != LobbyStatus.OPEN
    return {"teams": list_team_documents(db), "locked": locked}


def full_snapshot(db: Session) -> Dict[str, Any]:
    """
    （重新）連線的客戶端重建畫面所需的全部資料

    單例還不存在時回報初始狀態，第一次寫入前連線的客戶端也會停在大廳。
    """
    lobby = db.query(LobbySettings).filter(LobbySettings.id == LOBBY_ID).first()
    state = db.query(AuctionState).filter(AuctionState.id == AUCTION_STATE_ID).first()
    return {
        "lobby": lobby_document(lobby) if lobby else {"status": LobbyStatus.OPEN.value, "version": 0},
        "teams": list_team_documents(db),
        "auction": auction_document(state) if state else None,
    }
